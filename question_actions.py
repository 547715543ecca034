"""Question actions.

Creating, editing and deleting a question touches the question, its tags'
usage counters and the tagquestion join rows. Each of these runs as one
transaction, so no partial tag or counter state is ever committed.
"""

import re
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import status
from pymongo import ReturnDocument

from database import ANSWERS, QUESTIONS, TAG_COLLATION, TAG_QUESTIONS, TAGS, USERS, VOTES, MongoStore, TransactionScope
from errors import ActionResponse, NotFoundError, UnauthorizedError, handle_error, success
from handlers import action, oid, serialize
from interaction_actions import record_interaction
from log import get_logger
from schemas import Question, TagQuestion, utcnow
from security import Identity
from validations import AskQuestionSchema, EditQuestionSchema, GetQuestionSchema, PaginatedSearchParams

logger = get_logger(__name__)


# Tag bookkeeping

def unique_tag_names(names: List[str]) -> List[str]:
    """Collapse names that differ only by case, keeping the first spelling."""
    seen: Dict[str, str] = {}
    for name in names:
        seen.setdefault(name.casefold(), name)
    return list(seen.values())


async def upsert_tag(scope: TransactionScope, name: str) -> Dict[str, Any]:
    """Find a tag by name ignoring case, or create it, and count one more use.

    A single atomic upsert, so concurrent requests naming the same new tag
    converge on one document.
    """
    now = utcnow()
    # The equality filter seeds `name` on insert, so the first spelling is kept
    return await scope[TAGS].find_one_and_update(
        {"name": name},
        {"$setOnInsert": {"created_at": now}, "$set": {"updated_at": now}, "$inc": {"questions": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
        collation=TAG_COLLATION,
        session=scope.session,
    )


async def attach_tags(scope: TransactionScope, question_id: ObjectId, names: List[str]) -> List[Dict[str, Any]]:
    tags: List[Dict[str, Any]] = []
    for name in unique_tag_names(names):
        tag = await upsert_tag(scope, name)
        if any(t["_id"] == tag["_id"] for t in tags):
            # Two spellings resolved to the same tag; count it once
            await scope[TAGS].update_one({"_id": tag["_id"]}, {"$inc": {"questions": -1}}, session=scope.session)
            continue
        tags.append(tag)

    if tags:
        rows = [TagQuestion(tag=t["_id"], question=question_id).model_dump() for t in tags]
        await scope[TAG_QUESTIONS].insert_many(rows, session=scope.session)
    return tags


async def detach_tags(scope: TransactionScope, question_id: ObjectId, tag_ids: List[ObjectId]) -> None:
    if not tag_ids:
        return
    result = await scope[TAGS].update_many(
        {"_id": {"$in": tag_ids}, "questions": {"$gt": 0}},
        {"$inc": {"questions": -1}, "$set": {"updated_at": utcnow()}},
        session=scope.session,
    )
    if result.modified_count < len(tag_ids):
        logger.warning(
            "tag_counter_drift",
            extra={
                "question": str(question_id),
                "tags": [str(t) for t in tag_ids],
                "decremented": result.modified_count,
            },
        )
    await scope[TAG_QUESTIONS].delete_many(
        {"question": question_id, "tag": {"$in": tag_ids}}, session=scope.session
    )


async def _load_own_question(scope: TransactionScope, question_id: ObjectId, identity: Identity, verb: str) -> Dict[str, Any]:
    question = await scope[QUESTIONS].find_one({"_id": question_id}, session=scope.session)
    if not question:
        raise NotFoundError("Question")
    if question["author"] != identity.oid:
        raise UnauthorizedError(f"You are not authorized to {verb} this question")
    return question


# Writes

async def create_question(store: MongoStore, params: Any, identity: Optional[Identity] = None) -> ActionResponse:
    try:
        ctx = await action(params, AskQuestionSchema, identity, authorize=True)
        author = ctx.identity.oid

        async with store.transaction() as scope:
            question = Question(title=ctx.params.title, content=ctx.params.content, author=author).model_dump()
            res = await scope[QUESTIONS].insert_one(question, session=scope.session)
            question["_id"] = res.inserted_id

            tags = await attach_tags(scope, question["_id"], ctx.params.tags)
            question["tags"] = [t["_id"] for t in tags]
            await scope[QUESTIONS].update_one(
                {"_id": question["_id"]}, {"$set": {"tags": question["tags"]}}, session=scope.session
            )
            await record_interaction(scope, author, "ask", question["_id"], "question")

        logger.info("Question created", extra={"question": str(question["_id"]), "tags": len(tags)})
        return success(serialize(question), status.HTTP_201_CREATED)
    except Exception as error:
        return handle_error(error)


async def edit_question(store: MongoStore, params: Any, identity: Optional[Identity] = None) -> ActionResponse:
    try:
        ctx = await action(params, EditQuestionSchema, identity, authorize=True)
        p = ctx.params
        question_id = oid(p.questionId, "questionId")

        async with store.transaction() as scope:
            question = await _load_own_question(scope, question_id, ctx.identity, "edit")

            current = await scope[TAGS].find({"_id": {"$in": question["tags"]}}, session=scope.session).to_list(None)
            requested = unique_tag_names(p.tags)
            requested_keys = {name.casefold() for name in requested}
            current_keys = {t["name"].casefold() for t in current}

            tags_to_add = [name for name in requested if name.casefold() not in current_keys]
            tags_to_remove = [t["_id"] for t in current if t["name"].casefold() not in requested_keys]

            tag_ids = list(question["tags"])
            if tags_to_add:
                added = await attach_tags(scope, question_id, tags_to_add)
                tag_ids.extend(t["_id"] for t in added if t["_id"] not in tag_ids)
            if tags_to_remove:
                await detach_tags(scope, question_id, tags_to_remove)
                tag_ids = [t for t in tag_ids if t not in tags_to_remove]

            changes: Dict[str, Any] = {}
            if question["title"] != p.title:
                changes["title"] = p.title
            if question["content"] != p.content:
                changes["content"] = p.content
            if tags_to_add or tags_to_remove:
                changes["tags"] = tag_ids

            if changes:
                changes["updated_at"] = utcnow()
                await scope[QUESTIONS].update_one({"_id": question_id}, {"$set": changes}, session=scope.session)
                question.update(changes)

        return success(serialize(question))
    except Exception as error:
        return handle_error(error)


async def delete_question(store: MongoStore, params: Any, identity: Optional[Identity] = None) -> ActionResponse:
    try:
        ctx = await action(params, GetQuestionSchema, identity, authorize=True)
        question_id = oid(ctx.params.questionId, "questionId")

        async with store.transaction() as scope:
            question = await _load_own_question(scope, question_id, ctx.identity, "delete")
            await detach_tags(scope, question_id, list(question["tags"]))

            answers = await scope[ANSWERS].find({"question": question_id}, session=scope.session).to_list(None)
            answer_ids = [a["_id"] for a in answers]
            await scope[VOTES].delete_many(
                {
                    "$or": [
                        {"actionType": "question", "actionId": question_id},
                        {"actionType": "answer", "actionId": {"$in": answer_ids}},
                    ]
                },
                session=scope.session,
            )
            await scope[ANSWERS].delete_many({"question": question_id}, session=scope.session)
            await scope[QUESTIONS].delete_one({"_id": question_id}, session=scope.session)

        logger.info("Question deleted", extra={"question": str(question_id), "answers": len(answer_ids)})
        return success({"id": str(question_id)})
    except Exception as error:
        return handle_error(error)


async def increment_views(store: MongoStore, params: Any, identity: Optional[Identity] = None) -> ActionResponse:
    try:
        ctx = await action(params, GetQuestionSchema, identity)
        question_id = oid(ctx.params.questionId, "questionId")

        async with store.transaction() as scope:
            question = await scope[QUESTIONS].find_one_and_update(
                {"_id": question_id},
                {"$inc": {"views": 1}},
                return_document=ReturnDocument.AFTER,
                session=scope.session,
            )
            if not question:
                raise NotFoundError("Question")
            if ctx.identity is not None:
                await record_interaction(scope, ctx.identity.oid, "view", question_id, "question")

        return success({"views": question["views"]})
    except Exception as error:
        return handle_error(error)


# Reads

async def populate_questions(db, questions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Replace tag ids with {_id, name} and author ids with {_id, name, image}."""
    tag_ids = {t for q in questions for t in q.get("tags", [])}
    author_ids = {q["author"] for q in questions}
    tags = {t["_id"]: {"_id": t["_id"], "name": t["name"]} for t in await db[TAGS].find({"_id": {"$in": list(tag_ids)}}).to_list(None)}
    authors = {
        u["_id"]: {"_id": u["_id"], "name": u["name"], "image": u.get("image")}
        for u in await db[USERS].find({"_id": {"$in": list(author_ids)}}).to_list(None)
    }
    populated = []
    for q in questions:
        q = dict(q)
        q["tags"] = [tags[t] for t in q.get("tags", []) if t in tags]
        q["author"] = authors.get(q["author"], {"_id": q["author"]})
        populated.append(q)
    return populated


def search_filter(query: Optional[str], fields: List[str]) -> Dict[str, Any]:
    if not query:
        return {}
    pattern = {"$regex": re.escape(query), "$options": "i"}
    return {"$or": [{f: pattern} for f in fields]}


QUESTION_SORTS = {
    "newest": [("created_at", -1)],
    "unanswered": [("created_at", -1)],
    "popular": [("upvotes", -1), ("created_at", -1)],
}


async def get_question(store: MongoStore, params: Any, identity: Optional[Identity] = None) -> ActionResponse:
    try:
        ctx = await action(params, GetQuestionSchema, identity)
        db = await store.connect()
        question = await db[QUESTIONS].find_one({"_id": oid(ctx.params.questionId, "questionId")})
        if not question:
            raise NotFoundError("Question")
        [question] = await populate_questions(db, [question])
        return success(serialize(question))
    except Exception as error:
        return handle_error(error)


async def get_questions(store: MongoStore, params: Any, identity: Optional[Identity] = None) -> ActionResponse:
    try:
        ctx = await action(params, PaginatedSearchParams, identity)
        p = ctx.params
        if p.filter == "recommended":
            return success({"questions": [], "isNext": False})

        skip = (p.page - 1) * p.pageSize
        filter_query = search_filter(p.query, ["title", "content"])
        if p.filter == "unanswered":
            filter_query["answers"] = 0
        sort = QUESTION_SORTS.get(p.filter or "newest", QUESTION_SORTS["newest"])

        db = await store.connect()
        total = await db[QUESTIONS].count_documents(filter_query)
        questions = await db[QUESTIONS].find(filter_query).sort(sort).skip(skip).limit(p.pageSize).to_list(None)
        questions = await populate_questions(db, questions)

        return success({"questions": serialize(questions), "isNext": total > skip + len(questions)})
    except Exception as error:
        return handle_error(error)
