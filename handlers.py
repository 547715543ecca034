"""Shared plumbing for actions: the validation/authorization gate and
document serialization helpers."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, Optional, Type, TypeVar

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel

from errors import UnauthorizedError, ValidationError
from security import Identity
from validations import Invalid, validate

T = TypeVar("T", bound=BaseModel)


@dataclass
class ActionContext(Generic[T]):
    params: T
    identity: Optional[Identity]


async def action(
    params: Any,
    schema: Type[T],
    identity: Optional[Identity] = None,
    authorize: bool = False,
) -> ActionContext[T]:
    """Validate params, then check the caller if the action needs one.

    Both checks run before any write is attempted.
    """
    result = validate(schema, params)
    if isinstance(result, Invalid):
        raise ValidationError(result.errors)
    if authorize and identity is None:
        raise UnauthorizedError()
    return ActionContext(params=result.data, identity=identity)


def oid(value: Any, field: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError({field: ["Invalid id"]}) from None


def serialize(value: Any) -> Any:
    """Make a stored document JSON friendly: _id -> id, ObjectId -> str, datetime -> iso."""
    if isinstance(value, dict):
        d = {}
        for k, v in value.items():
            if k == "_id":
                d["id"] = str(v)
            elif k == "password":
                continue
            else:
                d[k] = serialize(v)
        return d
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value
