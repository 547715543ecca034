from typing import Any, Optional

from fastapi import status

from database import ANSWERS, QUESTIONS, USERS, MongoStore
from errors import ActionResponse, NotFoundError, handle_error, success
from handlers import action, oid, serialize
from interaction_actions import record_interaction
from log import get_logger
from schemas import Answer
from security import Identity
from validations import CreateAnswerSchema, GetAnswersSchema

logger = get_logger(__name__)

ANSWER_SORTS = {
    "latest": [("created_at", -1)],
    "oldest": [("created_at", 1)],
    "popular": [("upvotes", -1), ("created_at", -1)],
}


async def create_answer(store: MongoStore, params: Any, identity: Optional[Identity] = None) -> ActionResponse:
    """Insert an answer and count it on its question, as one unit."""
    try:
        ctx = await action(params, CreateAnswerSchema, identity, authorize=True)
        question_id = oid(ctx.params.questionId, "questionId")
        author = ctx.identity.oid

        async with store.transaction() as scope:
            question = await scope[QUESTIONS].find_one({"_id": question_id}, session=scope.session)
            if not question:
                raise NotFoundError("Question")

            answer = Answer(author=author, question=question_id, content=ctx.params.content).model_dump()
            res = await scope[ANSWERS].insert_one(answer, session=scope.session)
            answer["_id"] = res.inserted_id

            await scope[QUESTIONS].update_one({"_id": question_id}, {"$inc": {"answers": 1}}, session=scope.session)
            await record_interaction(scope, author, "answer", answer["_id"], "answer")

        logger.info("Answer created", extra={"question": str(question_id), "answer": str(answer["_id"])})
        return success(serialize(answer), status.HTTP_201_CREATED)
    except Exception as error:
        return handle_error(error)


async def get_answers(store: MongoStore, params: Any, identity: Optional[Identity] = None) -> ActionResponse:
    try:
        ctx = await action(params, GetAnswersSchema, identity)
        p = ctx.params
        question_id = oid(p.questionId, "questionId")
        skip = (p.page - 1) * p.pageSize
        sort = ANSWER_SORTS.get(p.filter or "latest", ANSWER_SORTS["latest"])

        db = await store.connect()
        total = await db[ANSWERS].count_documents({"question": question_id})
        answers = await db[ANSWERS].find({"question": question_id}).sort(sort).skip(skip).limit(p.pageSize).to_list(None)

        authors = {
            u["_id"]: {"_id": u["_id"], "name": u["name"], "image": u.get("image")}
            for u in await db[USERS].find({"_id": {"$in": list({a["author"] for a in answers})}}).to_list(None)
        }
        for a in answers:
            a["author"] = authors.get(a["author"], {"_id": a["author"]})

        return success(
            {
                "answers": serialize(answers),
                "totalAnswers": total,
                "isNext": total > skip + len(answers),
            }
        )
    except Exception as error:
        return handle_error(error)
