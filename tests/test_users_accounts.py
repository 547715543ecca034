import pytest
from bson import ObjectId

from account_actions import (
    create_account,
    delete_account,
    get_account,
    get_account_by_provider,
    list_accounts,
    update_account,
)
from user_actions import create_user, delete_user, get_user, get_user_by_email, list_users, update_user

NEW_USER = {"name": "Linus", "username": "linus", "email": "linus@example.com"}


@pytest.mark.asyncio
async def test_user_crud(store):
    created = await create_user(store, NEW_USER)
    assert created.status == 201
    user_id = created.data["id"]
    assert created.data["reputation"] == 0

    assert (await get_user(store, user_id)).data["email"] == "linus@example.com"
    assert (await get_user_by_email(store, {"email": "linus@example.com"})).data["id"] == user_id

    updated = await update_user(store, user_id, {"bio": "Kernel hacker"})
    assert updated.data["bio"] == "Kernel hacker"
    assert updated.data["name"] == "Linus"

    assert [u["id"] for u in (await list_users(store)).data] == [user_id]

    deleted = await delete_user(store, user_id)
    assert deleted.success
    assert (await get_user(store, user_id)).status == 404


@pytest.mark.asyncio
async def test_create_user_rejects_duplicates(store):
    await create_user(store, NEW_USER)

    same_email = await create_user(store, {**NEW_USER, "username": "other"})
    same_username = await create_user(store, {**NEW_USER, "email": "other@example.com"})

    assert same_email.status == 403
    assert same_username.status == 403


@pytest.mark.asyncio
async def test_user_lookups_validate_input(store):
    assert (await get_user(store, "bogus")).status == 400
    assert (await get_user_by_email(store, {"email": "not-an-email"})).status == 400
    assert (await update_user(store, str(ObjectId()), {"name": "Nobody"})).status == 404


@pytest.mark.asyncio
async def test_account_crud(store, author):
    params = {"userId": author.user_id, "name": author.name, "provider": "github", "providerAccountId": "gh-42"}
    created = await create_account(store, params)
    assert created.status == 201
    account_id = created.data["id"]

    assert (await get_account(store, account_id)).data["provider"] == "github"
    assert (await get_account_by_provider(store, {"providerAccountId": "gh-42"})).data["id"] == account_id
    assert len((await list_accounts(store)).data) == 1

    updated = await update_account(store, account_id, {"name": "Ada L."})
    assert updated.data["name"] == "Ada L."

    assert (await delete_account(store, account_id)).success
    assert (await get_account(store, account_id)).status == 404


@pytest.mark.asyncio
async def test_account_password_is_hashed_and_hidden(store, db, author):
    params = {
        "userId": author.user_id,
        "name": author.name,
        "provider": "credentials",
        "providerAccountId": author.email,
        "password": "Secret#123",
    }
    created = await create_account(store, params)

    assert "password" not in created.data
    stored = await db["account"].find_one({"_id": ObjectId(created.data["id"])})
    assert stored["password"].startswith("$2")


@pytest.mark.asyncio
async def test_create_account_rules(store, author):
    params = {"userId": author.user_id, "name": author.name, "provider": "github", "providerAccountId": "gh-42"}
    await create_account(store, params)

    duplicate = await create_account(store, params)
    assert duplicate.status == 403
    assert duplicate.error.message == "An account with the same provider already exists."

    orphan = await create_account(store, {**params, "userId": str(ObjectId()), "providerAccountId": "gh-43"})
    assert orphan.status == 404
    assert orphan.error.message == "User not found"


@pytest.mark.asyncio
async def test_update_account_rejects_weak_password(store, author):
    params = {"userId": author.user_id, "name": author.name, "provider": "github", "providerAccountId": "gh-42"}
    account_id = (await create_account(store, params)).data["id"]

    resp = await update_account(store, account_id, {"password": "weakpass"})

    assert resp.status == 400
    assert "password" in resp.error.details
