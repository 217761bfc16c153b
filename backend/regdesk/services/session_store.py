# /regdesk/services/session_store.py

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import LockError

from regdesk.config.settings import Settings, settings
from regdesk.errors import SessionLockError, UnknownSessionError
from regdesk.flows.engine import FlowEngine, flow_engine
from regdesk.models.session import Session, SessionStatus
from regdesk.utils.metrics import active_sessions_gauge, session_store_operations, sessions_expired_counter

# Keyed storage of per-sender conversation state. All mutation of a sender's
# session happens inside ``locked(sender_id)``; callers load, advance and
# save while holding it.

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    def __init__(self, engine: FlowEngine, ttl_seconds: int):
        self.engine = engine
        self.ttl_seconds = ttl_seconds
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    # ---------------- Backend primitives ---------------- #

    @abstractmethod
    async def _read(self, sender_id: str) -> Optional[Session]: ...

    @abstractmethod
    async def _write(self, session: Session) -> None: ...

    @abstractmethod
    async def _read_all(self) -> List[Session]: ...

    @abstractmethod
    async def remember_message(self, message_id: str, ttl_seconds: int) -> bool:
        """Records an inbound message id. Returns False if it was already seen within the window."""

    @abstractmethod
    async def ping(self) -> bool: ...

    async def close(self) -> None:
        return None

    @asynccontextmanager
    async def _backend_lock(self, sender_id: str) -> AsyncIterator[None]:
        yield

    # ---------------- Serialization ---------------- #

    @asynccontextmanager
    async def locked(self, sender_id: str) -> AsyncIterator[None]:
        """
        Serializes work on one sender. asyncio.Lock wakes waiters in FIFO
        order, so messages from a sender are handled in arrival order. The
        lock is dropped once nobody holds or waits for it.
        """
        lock = self._locks.setdefault(sender_id, asyncio.Lock())
        self._lock_users[sender_id] = self._lock_users.get(sender_id, 0) + 1
        try:
            async with lock:
                async with self._backend_lock(sender_id):
                    yield
        finally:
            self._lock_users[sender_id] -= 1
            if self._lock_users[sender_id] == 0:
                del self._lock_users[sender_id]
                self._locks.pop(sender_id, None)

    def lock_count(self) -> int:
        return len(self._locks)

    # ---------------- Store contract ---------------- #

    async def load(self, sender_id: str, now: Optional[datetime] = None) -> Session:
        """
        Returns the sender's session, creating it at the root when absent.
        An Expired session, or one idle for longer than the ttl, comes back
        reset to the root.
        """
        now = now or datetime.utcnow()
        session = await self._read(sender_id)
        if session is None:
            session = self.engine.new_session(sender_id, now)
            await self._write(session)
            logger.info(f"Created session for {sender_id}")
            return session
        if session.status == SessionStatus.EXPIRED or session.is_idle(now, self.ttl_seconds):
            logger.info(f"Session for {sender_id} expired at node '{session.current_node_id}', restarting at root")
            session = self.engine.reset(session, now)
            await self._write(session)
        return session

    async def get(self, sender_id: str) -> Session:
        session = await self._read(sender_id)
        if session is None:
            raise UnknownSessionError(sender_id)
        return session

    async def save(self, session: Session) -> None:
        await self._write(session)

    async def reset(self, sender_id: str, now: Optional[datetime] = None) -> Session:
        now = now or datetime.utcnow()
        existing = await self._read(sender_id)
        session = self.engine.reset(existing, now) if existing else self.engine.new_session(sender_id, now)
        await self._write(session)
        logger.info(f"Session for {sender_id} reset to root")
        return session

    async def list(self) -> List[Session]:
        sessions = await self._read_all()
        active_sessions_gauge.set(len(sessions))
        return sorted(sessions, key=lambda s: s.last_activity_at, reverse=True)

    async def expire_stale(self, now: Optional[datetime] = None, ttl_seconds: Optional[int] = None) -> int:
        """Marks idle sessions Expired. Each one is re-read under its sender lock before it is changed."""
        now = now or datetime.utcnow()
        ttl = ttl_seconds or self.ttl_seconds
        expired = 0
        for candidate in await self._read_all():
            if candidate.status == SessionStatus.EXPIRED or not candidate.is_idle(now, ttl):
                continue
            async with self.locked(candidate.id):
                session = await self._read(candidate.id)
                if session is None or session.status == SessionStatus.EXPIRED or not session.is_idle(now, ttl):
                    continue
                session.status = SessionStatus.EXPIRED
                await self._write(session)
                expired += 1
        if expired:
            sessions_expired_counter.inc(expired)
            logger.info(f"Expired {expired} idle session(s)")
        return expired


class InMemorySessionStore(SessionStore):
    """Single-process store. Sessions are kept serialized so callers never share instances."""

    def __init__(self, engine: FlowEngine, ttl_seconds: int):
        super().__init__(engine, ttl_seconds)
        self._sessions: Dict[str, str] = {}
        self._seen_messages: Dict[str, float] = {}

    async def _read(self, sender_id: str) -> Optional[Session]:
        raw = self._sessions.get(sender_id)
        return Session.model_validate_json(raw) if raw else None

    async def _write(self, session: Session) -> None:
        self._sessions[session.id] = session.model_dump_json()

    async def _read_all(self) -> List[Session]:
        return [Session.model_validate_json(raw) for raw in list(self._sessions.values())]

    async def remember_message(self, message_id: str, ttl_seconds: int) -> bool:
        now = time.monotonic()
        self._seen_messages = {key: expiry for key, expiry in self._seen_messages.items() if expiry > now}
        if message_id in self._seen_messages:
            return False
        self._seen_messages[message_id] = now + ttl_seconds
        return True

    async def ping(self) -> bool:
        return True


class RedisSessionStore(SessionStore):
    """Shared store for multi-worker deployments. A redis lock complements the in-process lock."""

    SESSION_KEY = "regdesk:session:{}"
    INDEX_KEY = "regdesk:sessions"
    MESSAGE_KEY = "regdesk:message:{}"
    LOCK_KEY = "regdesk:lock:{}"

    def __init__(self, engine: FlowEngine, ttl_seconds: int, redis_url: Optional[str] = None,
                 client: Optional[redis.Redis] = None, lock_timeout: int = 90,
                 retention_seconds: int = 7 * 24 * 3600):
        super().__init__(engine, ttl_seconds)
        if client is None:
            pool = redis.ConnectionPool.from_url(redis_url, max_connections=20, decode_responses=True)
            client = redis.Redis(connection_pool=pool)
        self.redis = client
        self.lock_timeout = lock_timeout
        self.retention_seconds = retention_seconds

    @asynccontextmanager
    async def _backend_lock(self, sender_id: str) -> AsyncIterator[None]:
        lock = self.redis.lock(
            self.LOCK_KEY.format(sender_id),
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_timeout,
        )
        if not await lock.acquire():
            raise SessionLockError(f"Timed out after {self.lock_timeout}s waiting for the lock of {sender_id}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                logger.warning(f"Lock for {sender_id} was lost before release: {e}")

    async def _read(self, sender_id: str) -> Optional[Session]:
        try:
            raw = await self.redis.get(self.SESSION_KEY.format(sender_id))
        except redis.RedisError:
            session_store_operations.labels(operation="read", status="error").inc()
            raise
        session_store_operations.labels(operation="read", status="hit" if raw else "miss").inc()
        return Session.model_validate_json(raw) if raw else None

    async def _write(self, session: Session) -> None:
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(self.SESSION_KEY.format(session.id), session.model_dump_json(), ex=self.retention_seconds)
                pipe.sadd(self.INDEX_KEY, session.id)
                await pipe.execute()
        except redis.RedisError:
            session_store_operations.labels(operation="write", status="error").inc()
            raise
        session_store_operations.labels(operation="write", status="success").inc()

    async def _read_all(self) -> List[Session]:
        sender_ids = sorted(await self.redis.smembers(self.INDEX_KEY))
        if not sender_ids:
            return []
        raws = await self.redis.mget([self.SESSION_KEY.format(sender_id) for sender_id in sender_ids])
        sessions = []
        missing = []
        for sender_id, raw in zip(sender_ids, raws):
            if raw:
                sessions.append(Session.model_validate_json(raw))
            else:
                missing.append(sender_id)
        if missing:
            await self.redis.srem(self.INDEX_KEY, *missing)
        return sessions

    async def remember_message(self, message_id: str, ttl_seconds: int) -> bool:
        was_set = await self.redis.set(self.MESSAGE_KEY.format(message_id), "1", nx=True, ex=ttl_seconds)
        return bool(was_set)

    async def ping(self) -> bool:
        return bool(await self.redis.ping())

    async def close(self) -> None:
        await self.redis.aclose()


def build_session_store(config: Settings, engine: FlowEngine) -> SessionStore:
    if config.session_backend == "redis":
        logger.info("Using redis session store")
        return RedisSessionStore(
            engine,
            config.session_ttl_seconds,
            redis_url=config.redis_url,
            lock_timeout=config.lock_timeout_seconds,
        )
    return InMemorySessionStore(engine, config.session_ttl_seconds)


# Globally accessible instance
session_store = build_session_store(settings, flow_engine)
