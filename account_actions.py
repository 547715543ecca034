from typing import Any

from fastapi import status
from pymongo import ReturnDocument

from database import ACCOUNTS, USERS, MongoStore
from errors import ActionResponse, ForbiddenError, NotFoundError, handle_error, success
from handlers import action, oid, serialize
from schemas import Account, utcnow
from security import hash_password
from validations import AccountSchema, AccountUpdateSchema, ProviderLookupSchema


async def list_accounts(store: MongoStore) -> ActionResponse:
    try:
        db = await store.connect()
        accounts = await db[ACCOUNTS].find({}).sort([("created_at", -1)]).to_list(None)
        return success(serialize(accounts))
    except Exception as error:
        return handle_error(error)


async def create_account(store: MongoStore, params: Any) -> ActionResponse:
    try:
        ctx = await action(params, AccountSchema)
        p = ctx.params
        user_id = oid(p.userId, "userId")

        db = await store.connect()
        if not await db[USERS].find_one({"_id": user_id}):
            raise NotFoundError("User")
        if await db[ACCOUNTS].find_one({"provider": p.provider, "providerAccountId": p.providerAccountId}):
            raise ForbiddenError("An account with the same provider already exists.")

        account = Account(
            userId=user_id,
            name=p.name,
            image=p.image,
            password=hash_password(p.password) if p.password else None,
            provider=p.provider,
            providerAccountId=p.providerAccountId,
        ).model_dump()
        res = await db[ACCOUNTS].insert_one(account)
        account["_id"] = res.inserted_id
        return success(serialize(account), status.HTTP_201_CREATED)
    except Exception as error:
        return handle_error(error)


async def get_account(store: MongoStore, account_id: str) -> ActionResponse:
    try:
        db = await store.connect()
        account = await db[ACCOUNTS].find_one({"_id": oid(account_id)})
        if not account:
            raise NotFoundError("Account")
        return success(serialize(account))
    except Exception as error:
        return handle_error(error)


async def get_account_by_provider(store: MongoStore, params: Any) -> ActionResponse:
    try:
        ctx = await action(params, ProviderLookupSchema)
        db = await store.connect()
        account = await db[ACCOUNTS].find_one({"providerAccountId": ctx.params.providerAccountId})
        if not account:
            raise NotFoundError("Account")
        return success(serialize(account))
    except Exception as error:
        return handle_error(error)


async def update_account(store: MongoStore, account_id: str, params: Any) -> ActionResponse:
    try:
        ctx = await action(params, AccountUpdateSchema)
        changes = ctx.params.model_dump(exclude_unset=True)
        if changes.get("password"):
            changes["password"] = hash_password(changes["password"])
        changes["updated_at"] = utcnow()

        db = await store.connect()
        account = await db[ACCOUNTS].find_one_and_update(
            {"_id": oid(account_id)}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        if not account:
            raise NotFoundError("Account")
        return success(serialize(account))
    except Exception as error:
        return handle_error(error)


async def delete_account(store: MongoStore, account_id: str) -> ActionResponse:
    try:
        db = await store.connect()
        account = await db[ACCOUNTS].find_one_and_delete({"_id": oid(account_id)})
        if not account:
            raise NotFoundError("Account")
        return success(serialize(account))
    except Exception as error:
        return handle_error(error)
