from typing import Any

from fastapi import status
from pymongo import ReturnDocument

from database import USERS, MongoStore
from errors import ActionResponse, ForbiddenError, NotFoundError, handle_error, success
from handlers import action, oid, serialize
from schemas import User, utcnow
from validations import EmailLookupSchema, UserSchema, UserUpdateSchema


async def list_users(store: MongoStore) -> ActionResponse:
    try:
        db = await store.connect()
        users = await db[USERS].find({}).sort([("created_at", -1)]).to_list(None)
        return success(serialize(users))
    except Exception as error:
        return handle_error(error)


async def create_user(store: MongoStore, params: Any) -> ActionResponse:
    try:
        ctx = await action(params, UserSchema)
        db = await store.connect()
        if await db[USERS].find_one({"email": ctx.params.email}):
            raise ForbiddenError("User already exists.")
        if await db[USERS].find_one({"username": ctx.params.username}):
            raise ForbiddenError("Username already exists.")

        user = User(**ctx.params.model_dump(exclude_none=True)).model_dump()
        res = await db[USERS].insert_one(user)
        user["_id"] = res.inserted_id
        return success(serialize(user), status.HTTP_201_CREATED)
    except Exception as error:
        return handle_error(error)


async def get_user(store: MongoStore, user_id: str) -> ActionResponse:
    try:
        db = await store.connect()
        user = await db[USERS].find_one({"_id": oid(user_id)})
        if not user:
            raise NotFoundError("User")
        return success(serialize(user))
    except Exception as error:
        return handle_error(error)


async def get_user_by_email(store: MongoStore, params: Any) -> ActionResponse:
    try:
        ctx = await action(params, EmailLookupSchema)
        db = await store.connect()
        user = await db[USERS].find_one({"email": ctx.params.email})
        if not user:
            raise NotFoundError("User")
        return success(serialize(user))
    except Exception as error:
        return handle_error(error)


async def update_user(store: MongoStore, user_id: str, params: Any) -> ActionResponse:
    try:
        ctx = await action(params, UserUpdateSchema)
        changes = ctx.params.model_dump(exclude_unset=True)
        changes["updated_at"] = utcnow()

        db = await store.connect()
        user = await db[USERS].find_one_and_update(
            {"_id": oid(user_id)}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if not user:
            raise NotFoundError("User")
        return success(serialize(user))
    except Exception as error:
        return handle_error(error)


async def delete_user(store: MongoStore, user_id: str) -> ActionResponse:
    try:
        db = await store.connect()
        user = await db[USERS].find_one_and_delete({"_id": oid(user_id)})
        if not user:
            raise NotFoundError("User")
        return success(serialize(user))
    except Exception as error:
        return handle_error(error)
