"""Sign-up and sign-in.

A user is identified across providers by email. One user can collect several
accounts, one per (provider, providerAccountId).
"""

from typing import Any, Dict

from fastapi import status
from slugify import slugify

from database import ACCOUNTS, USERS, MongoStore
from errors import ActionResponse, ForbiddenError, NotFoundError, UnauthorizedError, handle_error, success
from handlers import action, serialize
from log import get_logger
from schemas import Account, User, utcnow
from security import create_access_token, hash_password, verify_password
from validations import SignInSchema, SignInWithOAuthSchema, SignUpSchema

logger = get_logger(__name__)

CREDENTIALS = "credentials"


def slugify_username(username: str) -> str:
    return slugify(username, lowercase=True)


async def sign_in_with_oauth(store: MongoStore, params: Any) -> ActionResponse:
    """Create or refresh the user behind an OAuth login and link the account.

    Only changed profile fields are written. An existing account is never
    modified.
    """
    try:
        ctx = await action(params, SignInWithOAuthSchema)
        provider = ctx.params.provider
        provider_account_id = ctx.params.providerAccountId
        profile = ctx.params.user
        username = slugify_username(profile.username)

        async with store.transaction() as scope:
            user = await scope[USERS].find_one({"email": profile.email}, session=scope.session)

            if user is None:
                if await scope[USERS].find_one({"username": username}, session=scope.session):
                    raise ForbiddenError("Username already exists")
                user = User(name=profile.name, username=username, email=profile.email, image=profile.image).model_dump()
                res = await scope[USERS].insert_one(user, session=scope.session)
                user["_id"] = res.inserted_id
                logger.info("User created from OAuth", extra={"provider": provider, "user": str(user["_id"])})
            else:
                updated: Dict[str, Any] = {}
                if user.get("name") != profile.name:
                    updated["name"] = profile.name
                if user.get("image") != profile.image:
                    updated["image"] = profile.image
                if updated:
                    updated["updated_at"] = utcnow()
                    await scope[USERS].update_one({"_id": user["_id"]}, {"$set": updated}, session=scope.session)

            account = await scope[ACCOUNTS].find_one(
                {"userId": user["_id"], "provider": provider, "providerAccountId": provider_account_id},
                session=scope.session,
            )
            if account is None:
                account = Account(
                    userId=user["_id"],
                    name=profile.name,
                    image=profile.image,
                    provider=provider,
                    providerAccountId=provider_account_id,
                ).model_dump()
                await scope[ACCOUNTS].insert_one(account, session=scope.session)

        return success()
    except Exception as error:
        return handle_error(error)


async def sign_up_with_credentials(store: MongoStore, params: Any) -> ActionResponse:
    try:
        ctx = await action(params, SignUpSchema)
        p = ctx.params
        hashed_password = hash_password(p.password)

        async with store.transaction() as scope:
            if await scope[USERS].find_one({"email": p.email}, session=scope.session):
                raise ForbiddenError("User already exists")
            if await scope[USERS].find_one({"username": p.username}, session=scope.session):
                raise ForbiddenError("Username already exists")

            user = User(name=p.name, username=p.username, email=p.email).model_dump()
            res = await scope[USERS].insert_one(user, session=scope.session)
            user["_id"] = res.inserted_id

            account = Account(
                userId=user["_id"],
                name=p.name,
                provider=CREDENTIALS,
                providerAccountId=p.email,
                password=hashed_password,
            ).model_dump()
            await scope[ACCOUNTS].insert_one(account, session=scope.session)

        token = create_access_token({"sub": str(user["_id"])})
        return success({"user": serialize(user), "access_token": token, "token_type": "bearer"}, status.HTTP_201_CREATED)
    except Exception as error:
        return handle_error(error)


async def sign_in_with_credentials(store: MongoStore, params: Any) -> ActionResponse:
    try:
        ctx = await action(params, SignInSchema)
        p = ctx.params
        db = await store.connect()

        user = await db[USERS].find_one({"email": p.email})
        if not user:
            raise NotFoundError("User")
        account = await db[ACCOUNTS].find_one({"provider": CREDENTIALS, "providerAccountId": p.email})
        if not account:
            raise NotFoundError("Account")
        if not verify_password(p.password, account.get("password")):
            raise UnauthorizedError("Password does not match")

        token = create_access_token({"sub": str(user["_id"])})
        return success({"user": serialize(user), "access_token": token, "token_type": "bearer"})
    except Exception as error:
        return handle_error(error)
