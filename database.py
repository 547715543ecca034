"""MongoDB store handle.

The process owns one `MongoStore`, built by the app factory and handed to
request handlers through `request.app.state`. `connect()` opens the client
once. Concurrent first callers wait on the same future.

Multi-document writes run inside `transaction()`, which yields a
`TransactionScope`. Every write that belongs to the unit of work takes that
scope explicitly and passes `session=scope.session` to the driver.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Optional

from pymongo import ASCENDING, DESCENDING, AsyncMongoClient
from pymongo.collation import Collation, CollationStrength

from config import Settings, settings as default_settings
from log import get_logger

logger = get_logger(__name__)

# Collection names follow the schemas.py convention: lowercase model name
USERS = "user"
ACCOUNTS = "account"
QUESTIONS = "question"
TAGS = "tag"
TAG_QUESTIONS = "tagquestion"
ANSWERS = "answer"
VOTES = "vote"
INTERACTIONS = "interaction"

# Tag names are unique ignoring case; lookups must use the same collation as the index
TAG_COLLATION = Collation(locale="en", strength=CollationStrength.SECONDARY)


@dataclass
class TransactionScope:
    """A database handle bound to one open transaction."""

    db: Any
    session: Any

    def __getitem__(self, name: str):
        return self.db[name]


class MongoStore:
    def __init__(self, settings: Optional[Settings] = None, client_factory: Callable[..., Any] = AsyncMongoClient):
        self.settings = settings or default_settings
        self._client_factory = client_factory
        self._client = None
        self._db = None
        self._connecting: Optional[asyncio.Future] = None

    @property
    def client(self):
        if self._client is None:
            raise RuntimeError("MongoStore is not connected")
        return self._client

    @property
    def db(self):
        if self._db is None:
            raise RuntimeError("MongoStore is not connected")
        return self._db

    @property
    def connected(self) -> bool:
        return self._db is not None

    async def connect(self):
        """Return the database, opening the client on first use."""
        if self._db is not None:
            return self._db

        if self._connecting is None:
            self._connecting = asyncio.ensure_future(self._open())
        connecting = self._connecting
        try:
            return await asyncio.shield(connecting)
        except Exception:
            # Let a later call try again instead of replaying the same failure
            if self._connecting is connecting:
                self._connecting = None
            raise

    async def _open(self):
        client = self._client_factory(
            self.settings.MONGO_URI,
            serverSelectionTimeoutMS=self.settings.MONGO_SERVER_SELECTION_TIMEOUT_MS,
            tz_aware=True,
        )
        try:
            await client.admin.command("ping")
        except Exception:
            logger.error("Error connecting to MongoDB", extra={"db": self.settings.MONGO_DB_NAME})
            await client.close()
            raise
        self._client = client
        self._db = client[self.settings.MONGO_DB_NAME]
        logger.info("Connected to MongoDB", extra={"db": self.settings.MONGO_DB_NAME})
        return self._db

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
        self._client = None
        self._db = None
        self._connecting = None

    async def ensure_indexes(self) -> None:
        """Create the uniqueness constraints the write paths rely on."""
        db = await self.connect()
        await db[USERS].create_index([("email", ASCENDING)], unique=True)
        await db[USERS].create_index([("username", ASCENDING)], unique=True)
        await db[ACCOUNTS].create_index(
            [("provider", ASCENDING), ("providerAccountId", ASCENDING)], unique=True
        )
        await db[ACCOUNTS].create_index([("userId", ASCENDING)])
        await db[TAGS].create_index([("name", ASCENDING)], unique=True, collation=TAG_COLLATION)
        await db[TAG_QUESTIONS].create_index([("tag", ASCENDING), ("question", ASCENDING)], unique=True)
        await db[TAG_QUESTIONS].create_index([("question", ASCENDING)])
        await db[QUESTIONS].create_index([("created_at", DESCENDING)])
        await db[ANSWERS].create_index([("question", ASCENDING), ("created_at", DESCENDING)])
        await db[VOTES].create_index(
            [("author", ASCENDING), ("actionId", ASCENDING), ("actionType", ASCENDING)], unique=True
        )
        await db[INTERACTIONS].create_index([("user", ASCENDING), ("created_at", DESCENDING)])

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[TransactionScope]:
        """Run the enclosed writes as one all-or-nothing unit.

        Commits on normal exit and aborts on any exception. Aborted units are
        not retried. The session is always ended.
        """
        db = await self.connect()
        session = self.client.start_session()
        try:
            await session.start_transaction()
            try:
                yield TransactionScope(db=db, session=session)
            except BaseException:
                if session.in_transaction:
                    await session.abort_transaction()
                logger.warning("Transaction aborted")
                raise
            await session.commit_transaction()
        finally:
            await session.end_session()
