from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from config import settings
from database import USERS, MongoStore
from log import get_logger

logger = get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_PREFIX}/auth/token", auto_error=False)


@dataclass(frozen=True)
class Identity:
    user_id: str
    name: str
    email: str
    image: Optional[str] = None

    @property
    def oid(self) -> ObjectId:
        return ObjectId(self.user_id)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    # passlib treats a missing hash as a failed match
    return pwd_context.verify(password, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


async def resolve_identity(store: MongoStore, token: Optional[str]) -> Optional[Identity]:
    """Resolve a bearer token to the caller, or None when there is no valid caller."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = ObjectId(payload.get("sub"))
    except (JWTError, InvalidId, TypeError):
        logger.info("Rejected bearer token")
        return None

    db = await store.connect()
    user = await db[USERS].find_one({"_id": user_id})
    if not user:
        return None
    return Identity(user_id=str(user["_id"]), name=user["name"], email=user["email"], image=user.get("image"))


# FastAPI dependencies

def get_store(request: Request) -> MongoStore:
    return request.app.state.store


async def get_identity(
    token: Optional[str] = Depends(oauth2_scheme),
    store: MongoStore = Depends(get_store),
) -> Optional[Identity]:
    return await resolve_identity(store, token)
