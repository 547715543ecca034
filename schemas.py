"""
Database Schemas for DevFlow

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (TagQuestion -> "tagquestion").

We will use these collections:
- user: people on the forum, unique by email and by username
- account: one per (provider, providerAccountId), owned by a user
- question: questions with denormalized counters and tag references
- tag: case-insensitive unique tags with a usage counter
- tagquestion: one row per tag <-> question association
- answer: answers to questions
- vote: at most one up/down vote per user per target
- interaction: append-only log of user actions for recommendations
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field

ActionType = Literal["question", "answer"]
VoteType = Literal["upvote", "downvote"]
InteractionAction = Literal["view", "upvote", "downvote", "ask", "answer"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class User(Document):
    name: str = Field(..., min_length=1)
    username: str = Field(..., min_length=3, description="Slug, unique")
    email: str = Field(..., description="Unique, cross-provider identity key")
    bio: Optional[str] = None
    image: Optional[str] = None
    location: Optional[str] = None
    portfolio: Optional[str] = None
    reputation: int = Field(0)


class Account(Document):
    userId: ObjectId = Field(..., description="Reference to user _id")
    name: str = Field(..., min_length=1)
    image: Optional[str] = None
    password: Optional[str] = Field(None, description="BCrypt hash, credentials provider only")
    provider: str = Field(...)
    providerAccountId: str = Field(...)


class Question(Document):
    title: str = Field(..., min_length=5, max_length=100)
    content: str = Field(..., min_length=1)
    author: ObjectId = Field(..., description="Reference to user _id, immutable")
    tags: List[ObjectId] = Field(default_factory=list)
    answers: int = Field(0, ge=0)
    upvotes: int = Field(0, ge=0)
    downvotes: int = Field(0, ge=0)
    views: int = Field(0, ge=0)


class Tag(Document):
    name: str = Field(..., min_length=1, max_length=30)
    questions: int = Field(0, ge=0, description="Live TagQuestion rows referencing this tag")


class TagQuestion(Document):
    tag: ObjectId = Field(...)
    question: ObjectId = Field(...)


class Answer(Document):
    author: ObjectId = Field(...)
    question: ObjectId = Field(...)
    content: str = Field(..., min_length=1)
    upvotes: int = Field(0, ge=0)
    downvotes: int = Field(0, ge=0)


class Vote(Document):
    author: ObjectId = Field(...)
    actionId: ObjectId = Field(..., description="Question or answer _id")
    actionType: ActionType = Field(...)
    voteType: VoteType = Field(...)


class Interaction(Document):
    user: ObjectId = Field(...)
    action: InteractionAction = Field(...)
    actionId: ObjectId = Field(...)
    actionType: ActionType = Field(...)
