from typing import Any, Optional

from database import QUESTIONS, TAGS, MongoStore
from errors import ActionResponse, NotFoundError, handle_error, success
from handlers import action, oid, serialize
from question_actions import populate_questions, search_filter
from security import Identity
from validations import GetTagQuestionsSchema, PaginatedSearchParams

TAG_SORTS = {
    "popular": [("questions", -1), ("name", 1)],
    "recent": [("created_at", -1)],
    "oldest": [("created_at", 1)],
    "name": [("name", 1)],
}


async def get_tags(store: MongoStore, params: Any, identity: Optional[Identity] = None) -> ActionResponse:
    try:
        ctx = await action(params, PaginatedSearchParams, identity)
        p = ctx.params
        skip = (p.page - 1) * p.pageSize
        filter_query = search_filter(p.query, ["name"])
        sort = TAG_SORTS.get(p.filter or "name", TAG_SORTS["name"])

        db = await store.connect()
        total = await db[TAGS].count_documents(filter_query)
        tags = await db[TAGS].find(filter_query).sort(sort).skip(skip).limit(p.pageSize).to_list(None)

        return success({"tags": serialize(tags), "isNext": total > skip + len(tags)})
    except Exception as error:
        return handle_error(error)


async def get_tag_questions(store: MongoStore, params: Any, identity: Optional[Identity] = None) -> ActionResponse:
    try:
        ctx = await action(params, GetTagQuestionsSchema, identity)
        p = ctx.params
        tag_id = oid(p.tagId, "tagId")
        skip = (p.page - 1) * p.pageSize

        db = await store.connect()
        tag = await db[TAGS].find_one({"_id": tag_id})
        if not tag:
            raise NotFoundError("Tag")

        filter_query = {"tags": tag_id, **search_filter(p.query, ["title"])}
        total = await db[QUESTIONS].count_documents(filter_query)
        questions = await db[QUESTIONS].find(filter_query).sort([("created_at", -1)]).skip(skip).limit(p.pageSize).to_list(None)
        questions = await populate_questions(db, questions)

        return success(
            {
                "tag": serialize(tag),
                "questions": serialize(questions),
                "isNext": total > skip + len(questions),
            }
        )
    except Exception as error:
        return handle_error(error)
