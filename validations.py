"""Request shapes and the validation gate.

`validate()` never raises for a bad shape. It returns `Valid(data)` or
`Invalid(errors)` where errors maps each field to its messages.
"""

import re
from dataclasses import dataclass
from typing import Annotated, Any, Generic, List, Literal, Optional, Type, TypeVar, Union

import pydantic
from pydantic import BaseModel, EmailStr, Field, HttpUrl, StringConstraints, TypeAdapter, field_validator

from errors import FieldErrors, field_errors_from_pydantic

T = TypeVar("T", bound=BaseModel)

ObjectIdStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
TagName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=30)]

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]+$")
NAME_RE = re.compile(r"^[a-zA-Z\s]+$")

_http_url = TypeAdapter(HttpUrl)


def _check_url(value: Optional[str]) -> Optional[str]:
    # Keep the caller's spelling; HttpUrl would normalize it
    if value is None:
        return value
    try:
        _http_url.validate_python(value)
    except pydantic.ValidationError:
        raise ValueError("Please enter a valid URL.") from None
    return value


def _check_password(value: str) -> str:
    problems = []
    if not re.search(r"[A-Z]", value):
        problems.append("Password must contain at least one uppercase letter.")
    if not re.search(r"[a-z]", value):
        problems.append("Password must contain at least one lowercase letter.")
    if not re.search(r"[0-9]", value):
        problems.append("Password must contain at least one number.")
    if not re.search(r"[^a-zA-Z0-9]", value):
        problems.append("Password must contain at least one special character.")
    if problems:
        raise ValueError(" ".join(problems))
    return value


# Auth

class SignInSchema(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=20)


class SignUpSchema(BaseModel):
    username: str = Field(..., min_length=3, max_length=30)
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=20)

    @field_validator("username")
    @classmethod
    def username_chars(cls, v: str) -> str:
        if not USERNAME_RE.match(v):
            raise ValueError("Username can only contain letters, numbers, and underscores.")
        return v

    @field_validator("name")
    @classmethod
    def name_chars(cls, v: str) -> str:
        if not NAME_RE.match(v):
            raise ValueError("Name can only contain letters and spaces.")
        return v

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _check_password(v)


class OAuthUser(BaseModel):
    name: str = Field(..., min_length=1)
    username: str = Field(..., min_length=3)
    email: EmailStr
    image: Optional[str] = None

    @field_validator("image")
    @classmethod
    def image_url(cls, v: Optional[str]) -> Optional[str]:
        return _check_url(v)


class SignInWithOAuthSchema(BaseModel):
    provider: str = Field(..., min_length=1)
    providerAccountId: str = Field(..., min_length=1)
    user: OAuthUser


# Questions

class AskQuestionSchema(BaseModel):
    title: str = Field(..., min_length=5, max_length=100)
    content: str = Field(..., min_length=1)
    tags: List[TagName] = Field(..., min_length=1, max_length=3)


class EditQuestionSchema(AskQuestionSchema):
    questionId: ObjectIdStr


class GetQuestionSchema(BaseModel):
    questionId: ObjectIdStr


class PaginatedSearchParams(BaseModel):
    page: int = Field(1, ge=1)
    pageSize: int = Field(10, ge=1, le=100)
    query: Optional[str] = None
    filter: Optional[str] = None


class GetTagQuestionsSchema(PaginatedSearchParams):
    tagId: ObjectIdStr


# Answers and votes

class CreateAnswerSchema(BaseModel):
    questionId: ObjectIdStr
    content: str = Field(..., min_length=100)


class GetAnswersSchema(PaginatedSearchParams):
    questionId: ObjectIdStr


class CreateVoteSchema(BaseModel):
    targetId: ObjectIdStr
    targetType: Literal["question", "answer"]
    voteType: Literal["upvote", "downvote"]


class HasVotedSchema(BaseModel):
    targetId: ObjectIdStr
    targetType: Literal["question", "answer"]


# Users and accounts

class UserSchema(BaseModel):
    name: str = Field(..., min_length=1)
    username: str = Field(..., min_length=3)
    email: EmailStr
    bio: Optional[str] = Field(None, max_length=1500)
    image: Optional[str] = None
    location: Optional[str] = None
    portfolio: Optional[str] = None
    reputation: Optional[int] = None

    @field_validator("image", "portfolio")
    @classmethod
    def urls(cls, v: Optional[str]) -> Optional[str]:
        return _check_url(v)


class UserUpdateSchema(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    username: Optional[str] = Field(None, min_length=3)
    email: Optional[EmailStr] = None
    bio: Optional[str] = Field(None, max_length=1500)
    image: Optional[str] = None
    location: Optional[str] = None
    portfolio: Optional[str] = None
    reputation: Optional[int] = None

    @field_validator("image", "portfolio")
    @classmethod
    def urls(cls, v: Optional[str]) -> Optional[str]:
        return _check_url(v)


class AccountSchema(BaseModel):
    userId: ObjectIdStr
    name: str = Field(..., min_length=1)
    image: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6, max_length=20)
    provider: str = Field(..., min_length=1)
    providerAccountId: str = Field(..., min_length=1)

    @field_validator("image")
    @classmethod
    def image_url(cls, v: Optional[str]) -> Optional[str]:
        return _check_url(v)

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _check_password(v)


class AccountUpdateSchema(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    image: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6, max_length=20)
    provider: Optional[str] = Field(None, min_length=1)
    providerAccountId: Optional[str] = Field(None, min_length=1)

    @field_validator("image")
    @classmethod
    def image_url(cls, v: Optional[str]) -> Optional[str]:
        return _check_url(v)

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _check_password(v)


class EmailLookupSchema(BaseModel):
    email: EmailStr


class ProviderLookupSchema(BaseModel):
    providerAccountId: str = Field(..., min_length=1)


# Gate

@dataclass(frozen=True)
class Valid(Generic[T]):
    data: T


@dataclass(frozen=True)
class Invalid:
    errors: FieldErrors


ValidationResult = Union[Valid[T], Invalid]


def validate(schema: Type[T], params: Any) -> ValidationResult:
    if isinstance(params, BaseModel) and not isinstance(params, schema):
        params = params.model_dump()
    try:
        return Valid(schema.model_validate(params if params is not None else {}))
    except pydantic.ValidationError as exc:
        return Invalid(field_errors_from_pydantic(exc.errors()))
