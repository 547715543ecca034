from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordRequestForm

import account_actions
import answer_actions
import auth_actions
import question_actions
import tag_actions
import user_actions
import vote_actions
from config import settings
from database import MongoStore
from errors import (
    RequestError,
    general_exception_handler,
    request_error_handler,
    to_json_response,
    validation_exception_handler,
)
from log import get_logger, setup_logging
from security import Identity, get_identity, get_store

logger = get_logger(__name__)

JsonBody = Dict[str, Any]

router = APIRouter()


# Auth Routes
@router.post("/auth/signin-with-oauth")
async def signin_with_oauth(payload: JsonBody = Body(...), store: MongoStore = Depends(get_store)):
    return to_json_response(await auth_actions.sign_in_with_oauth(store, payload))

@router.post("/auth/signup")
async def signup(payload: JsonBody = Body(...), store: MongoStore = Depends(get_store)):
    return to_json_response(await auth_actions.sign_up_with_credentials(store, payload))

@router.post("/auth/signin")
async def signin(payload: JsonBody = Body(...), store: MongoStore = Depends(get_store)):
    return to_json_response(await auth_actions.sign_in_with_credentials(store, payload))

@router.post("/auth/token")
async def token(form: OAuth2PasswordRequestForm = Depends(), store: MongoStore = Depends(get_store)):
    # OAuth2 password form for the docs "Authorize" button; answers the bare token body
    resp = await auth_actions.sign_in_with_credentials(store, {"email": form.username, "password": form.password})
    if not resp.success:
        return to_json_response(resp)
    return {"access_token": resp.data["access_token"], "token_type": resp.data["token_type"]}


# Users
@router.get("/users")
async def users_list(store: MongoStore = Depends(get_store)):
    return to_json_response(await user_actions.list_users(store))

@router.post("/users")
async def users_create(payload: JsonBody = Body(...), store: MongoStore = Depends(get_store)):
    return to_json_response(await user_actions.create_user(store, payload))

@router.post("/users/email")
async def users_by_email(payload: JsonBody = Body(...), store: MongoStore = Depends(get_store)):
    return to_json_response(await user_actions.get_user_by_email(store, payload))

@router.get("/users/{user_id}")
async def users_get(user_id: str, store: MongoStore = Depends(get_store)):
    return to_json_response(await user_actions.get_user(store, user_id))

@router.put("/users/{user_id}")
async def users_update(user_id: str, payload: JsonBody = Body(...), store: MongoStore = Depends(get_store)):
    return to_json_response(await user_actions.update_user(store, user_id, payload))

@router.delete("/users/{user_id}")
async def users_delete(user_id: str, store: MongoStore = Depends(get_store)):
    return to_json_response(await user_actions.delete_user(store, user_id))


# Accounts
@router.get("/accounts")
async def accounts_list(store: MongoStore = Depends(get_store)):
    return to_json_response(await account_actions.list_accounts(store))

@router.post("/accounts")
async def accounts_create(payload: JsonBody = Body(...), store: MongoStore = Depends(get_store)):
    return to_json_response(await account_actions.create_account(store, payload))

@router.post("/accounts/provider")
async def accounts_by_provider(payload: JsonBody = Body(...), store: MongoStore = Depends(get_store)):
    return to_json_response(await account_actions.get_account_by_provider(store, payload))

@router.get("/accounts/{account_id}")
async def accounts_get(account_id: str, store: MongoStore = Depends(get_store)):
    return to_json_response(await account_actions.get_account(store, account_id))

@router.put("/accounts/{account_id}")
async def accounts_update(account_id: str, payload: JsonBody = Body(...), store: MongoStore = Depends(get_store)):
    return to_json_response(await account_actions.update_account(store, account_id, payload))

@router.delete("/accounts/{account_id}")
async def accounts_delete(account_id: str, store: MongoStore = Depends(get_store)):
    return to_json_response(await account_actions.delete_account(store, account_id))


# Questions
@router.get("/questions")
async def questions_list(
    page: int = 1,
    pageSize: int = 10,
    query: Optional[str] = None,
    filter: Optional[str] = None,
    store: MongoStore = Depends(get_store),
):
    params = {"page": page, "pageSize": pageSize, "query": query, "filter": filter}
    return to_json_response(await question_actions.get_questions(store, params))

@router.post("/questions")
async def questions_create(
    payload: JsonBody = Body(...),
    store: MongoStore = Depends(get_store),
    identity: Optional[Identity] = Depends(get_identity),
):
    return to_json_response(await question_actions.create_question(store, payload, identity))

@router.get("/questions/{question_id}")
async def questions_get(question_id: str, store: MongoStore = Depends(get_store)):
    return to_json_response(await question_actions.get_question(store, {"questionId": question_id}))

@router.put("/questions/{question_id}")
async def questions_edit(
    question_id: str,
    payload: JsonBody = Body(...),
    store: MongoStore = Depends(get_store),
    identity: Optional[Identity] = Depends(get_identity),
):
    params = {**payload, "questionId": question_id}
    return to_json_response(await question_actions.edit_question(store, params, identity))

@router.delete("/questions/{question_id}")
async def questions_delete(
    question_id: str,
    store: MongoStore = Depends(get_store),
    identity: Optional[Identity] = Depends(get_identity),
):
    return to_json_response(await question_actions.delete_question(store, {"questionId": question_id}, identity))

@router.post("/questions/{question_id}/views")
async def questions_view(
    question_id: str,
    store: MongoStore = Depends(get_store),
    identity: Optional[Identity] = Depends(get_identity),
):
    return to_json_response(await question_actions.increment_views(store, {"questionId": question_id}, identity))


# Answers
@router.get("/questions/{question_id}/answers")
async def answers_list(
    question_id: str,
    page: int = 1,
    pageSize: int = 10,
    filter: Optional[str] = None,
    store: MongoStore = Depends(get_store),
):
    params = {"questionId": question_id, "page": page, "pageSize": pageSize, "filter": filter}
    return to_json_response(await answer_actions.get_answers(store, params))

@router.post("/questions/{question_id}/answers")
async def answers_create(
    question_id: str,
    payload: JsonBody = Body(...),
    store: MongoStore = Depends(get_store),
    identity: Optional[Identity] = Depends(get_identity),
):
    params = {**payload, "questionId": question_id}
    return to_json_response(await answer_actions.create_answer(store, params, identity))


# Tags
@router.get("/tags")
async def tags_list(
    page: int = 1,
    pageSize: int = 10,
    query: Optional[str] = None,
    filter: Optional[str] = None,
    store: MongoStore = Depends(get_store),
):
    params = {"page": page, "pageSize": pageSize, "query": query, "filter": filter}
    return to_json_response(await tag_actions.get_tags(store, params))

@router.get("/tags/{tag_id}/questions")
async def tags_questions(
    tag_id: str,
    page: int = 1,
    pageSize: int = 10,
    query: Optional[str] = None,
    store: MongoStore = Depends(get_store),
):
    params = {"tagId": tag_id, "page": page, "pageSize": pageSize, "query": query}
    return to_json_response(await tag_actions.get_tag_questions(store, params))


# Votes
@router.post("/votes")
async def votes_create(
    payload: JsonBody = Body(...),
    store: MongoStore = Depends(get_store),
    identity: Optional[Identity] = Depends(get_identity),
):
    return to_json_response(await vote_actions.create_vote(store, payload, identity))

@router.get("/votes/status")
async def votes_status(
    targetId: str = Query(...),
    targetType: str = Query(...),
    store: MongoStore = Depends(get_store),
    identity: Optional[Identity] = Depends(get_identity),
):
    params = {"targetId": targetId, "targetType": targetType}
    return to_json_response(await vote_actions.has_voted(store, params, identity))


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    store: MongoStore = app.state.store
    try:
        await store.ensure_indexes()
    except Exception:
        # The store connects lazily; requests will retry the connection
        logger.exception("Could not prepare MongoDB indexes at startup")
    yield
    await store.close()


def create_app(store: Optional[MongoStore] = None) -> FastAPI:
    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
    app.state.store = store or MongoStore(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestError, request_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(router, prefix=settings.API_PREFIX)

    @app.get("/")
    def root():
        return {"message": f"{settings.PROJECT_NAME} running"}

    @app.get("/test")
    async def test_database():
        response = {"backend": "ok", "database": "missing", "collections": []}
        try:
            db = await app.state.store.connect()
            response["database"] = "ok"
            response["collections"] = await db.list_collection_names()
        except Exception as e:
            response["database"] = f"error: {str(e)[:80]}"
        return response

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
