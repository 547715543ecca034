"""Votes on questions and answers.

A vote is a toggle. Voting the same way twice removes the vote, and voting
the other way switches it. The target's upvotes/downvotes counters move
with the vote rows in the same transaction.
"""

from typing import Any, Optional

from database import ANSWERS, QUESTIONS, VOTES, MongoStore, TransactionScope
from errors import ActionResponse, NotFoundError, handle_error, success
from handlers import action, oid
from interaction_actions import record_interaction
from schemas import Vote, utcnow
from security import Identity
from validations import CreateVoteSchema, HasVotedSchema

TARGETS = {"question": QUESTIONS, "answer": ANSWERS}
COUNTERS = {"upvote": "upvotes", "downvote": "downvotes"}


async def _shift_counter(scope: TransactionScope, collection: str, target_id, vote_type: str, delta: int) -> None:
    field = COUNTERS[vote_type]
    query = {"_id": target_id}
    if delta < 0:
        query[field] = {"$gt": 0}
    await scope[collection].update_one(query, {"$inc": {field: delta}}, session=scope.session)


async def create_vote(store: MongoStore, params: Any, identity: Optional[Identity] = None) -> ActionResponse:
    try:
        ctx = await action(params, CreateVoteSchema, identity, authorize=True)
        p = ctx.params
        target_id = oid(p.targetId, "targetId")
        collection = TARGETS[p.targetType]
        author = ctx.identity.oid

        async with store.transaction() as scope:
            target = await scope[collection].find_one({"_id": target_id}, session=scope.session)
            if not target:
                raise NotFoundError(p.targetType.capitalize())

            key = {"author": author, "actionId": target_id, "actionType": p.targetType}
            existing = await scope[VOTES].find_one(key, session=scope.session)

            if existing is None:
                vote = Vote(author=author, actionId=target_id, actionType=p.targetType, voteType=p.voteType)
                await scope[VOTES].insert_one(vote.model_dump(), session=scope.session)
                await _shift_counter(scope, collection, target_id, p.voteType, 1)
                current = p.voteType
            elif existing["voteType"] == p.voteType:
                await scope[VOTES].delete_one({"_id": existing["_id"]}, session=scope.session)
                await _shift_counter(scope, collection, target_id, p.voteType, -1)
                current = None
            else:
                await scope[VOTES].update_one(
                    {"_id": existing["_id"]},
                    {"$set": {"voteType": p.voteType, "updated_at": utcnow()}},
                    session=scope.session,
                )
                await _shift_counter(scope, collection, target_id, existing["voteType"], -1)
                await _shift_counter(scope, collection, target_id, p.voteType, 1)
                current = p.voteType

            if current is not None:
                await record_interaction(scope, author, current, target_id, p.targetType)

        return success({"voteType": current})
    except Exception as error:
        return handle_error(error)


async def has_voted(store: MongoStore, params: Any, identity: Optional[Identity] = None) -> ActionResponse:
    try:
        ctx = await action(params, HasVotedSchema, identity, authorize=True)
        db = await store.connect()
        vote = await db[VOTES].find_one(
            {
                "author": ctx.identity.oid,
                "actionId": oid(ctx.params.targetId, "targetId"),
                "actionType": ctx.params.targetType,
            }
        )
        vote_type = vote["voteType"] if vote else None
        return success({"hasUpvoted": vote_type == "upvote", "hasDownvoted": vote_type == "downvote"})
    except Exception as error:
        return handle_error(error)
