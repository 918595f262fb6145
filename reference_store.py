"""
reference_store.py - Submit-by-reference workflow over a shared key-value store

An external producer writes the raw text under ``<identifier>.message``; the
workflow analyzes it, writes the encoded result under ``<identifier>.nlp`` and
replies with the identifier only.

Concurrency: the fetch/process/persist sequence is a non-atomic
read-modify-write. Within one process, ``KeyedLock`` serializes it per
identifier. Across processes nothing is locked and the last writer of ``nlp``
wins.
"""
import asyncio
import contextlib
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError
from errors import CodecError, NotFoundError
from models import AnalyzedText
from wire_codec import AnalyzedTextCodec, MessageCodec
from metrics import reference_workflows
from logger import get_logger
from config import settings

logger = get_logger(__name__)

MESSAGE_FIELD = "message"
NLP_FIELD = "nlp"


class WorkflowState(Enum):
    RECEIVED = "received"
    FETCHING = "fetching"
    PROCESSING = "processing"
    PERSISTING = "persisting"
    REPLIED = "replied"
    FAILED = "failed"


class WorkflowStateMachine:
    """Validates workflow state transitions"""

    VALID_TRANSITIONS = {
        WorkflowState.RECEIVED: {WorkflowState.FETCHING, WorkflowState.FAILED},
        WorkflowState.FETCHING: {WorkflowState.PROCESSING, WorkflowState.FAILED},
        WorkflowState.PROCESSING: {WorkflowState.PERSISTING, WorkflowState.FAILED},
        WorkflowState.PERSISTING: {WorkflowState.REPLIED, WorkflowState.FAILED},
        WorkflowState.REPLIED: set(),  # Terminal state
        WorkflowState.FAILED: set(),   # Terminal state
    }

    @classmethod
    def is_valid_transition(cls, from_state: WorkflowState, to_state: WorkflowState) -> bool:
        return to_state in cls.VALID_TRANSITIONS.get(from_state, set())

    @classmethod
    def is_terminal_state(cls, state: WorkflowState) -> bool:
        return len(cls.VALID_TRANSITIONS.get(state, set())) == 0


class WorkflowRun:
    """State of one submit-by-reference request"""

    def __init__(self, identifier: str):
        self.identifier = identifier
        self.state = WorkflowState.RECEIVED
        self.history: List[WorkflowState] = [WorkflowState.RECEIVED]
        self.error: Optional[str] = None
        self.created_at = datetime.utcnow()
        self.completed_at: Optional[datetime] = None

    def advance(self, state: WorkflowState):
        if not WorkflowStateMachine.is_valid_transition(self.state, state):
            raise ValueError(
                f"Invalid state transition for {self.identifier}: "
                f"{self.state.value} -> {state.value}"
            )
        self.state = state
        self.history.append(state)
        if WorkflowStateMachine.is_terminal_state(state):
            self.completed_at = datetime.utcnow()
        logger.debug(f"Reference workflow {self.identifier}: {state.value}")

    def fail(self, error: Exception):
        self.error = str(error)
        if not WorkflowStateMachine.is_terminal_state(self.state):
            self.advance(WorkflowState.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "state": self.state.value,
            "history": [s.value for s in self.history],
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class ReferenceStore(ABC):
    """Distributed identifier -> record map"""

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the record for ``key`` or None"""
        pass

    @abstractmethod
    async def put(self, key: str, field: str, value: Union[str, bytes]) -> None:
        """Write one field of the record for ``key``"""
        pass

    async def ping(self) -> bool:
        """Whether the backing store is reachable"""
        return True

    async def close(self):
        pass


class InMemoryReferenceStore(ReferenceStore):
    """Dict-backed store for tests and single-process deployments"""

    def __init__(self):
        self._entries: Dict[str, Dict[str, Any]] = {}

    def seed(self, key: str, **fields):
        """Producer-side write of a record"""
        self._entries.setdefault(key, {}).update(fields)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(key)
        return dict(entry) if entry is not None else None

    async def put(self, key: str, field: str, value: Union[str, bytes]) -> None:
        self._entries.setdefault(key, {})[field] = value

    def __len__(self):
        return len(self._entries)


class RedisReferenceStore(ReferenceStore):
    """
    Redis-backed store: one hash per identifier, fields ``message`` and ``nlp``.

    Connection errors are retried with exponential backoff; other Redis errors
    propagate immediately.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        key_prefix: Optional[str] = None,
        max_connections: Optional[int] = None,
        max_retries: Optional[int] = None,
        client: Optional[Redis] = None
    ):
        self.key_prefix = key_prefix if key_prefix is not None else settings.get('reference_key_prefix', '')
        self.max_retries = max_retries or settings.get('redis_max_retries', 3)
        self._pool = None

        if client is not None:
            self._client = client
        else:
            redis_url = redis_url or settings.get('redis_url')
            if not redis_url:
                raise ValueError("redis_url is required for RedisReferenceStore")
            self._pool = ConnectionPool.from_url(
                redis_url,
                max_connections=max_connections or settings.get('redis_max_connections', 50),
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
            self._client = Redis(connection_pool=self._pool)
            logger.info(f"Redis reference store configured with prefix '{self.key_prefix}'")

    def _key(self, identifier: str) -> str:
        return f"{self.key_prefix}{identifier}"

    async def _with_retry(self, func: Callable, *args, **kwargs) -> Any:
        """Execute Redis operation with retry logic"""
        last_exception = None

        for attempt in range(self.max_retries):
            try:
                return await func(*args, **kwargs)
            except RedisConnectionError as e:
                last_exception = e
                if attempt < self.max_retries - 1:
                    wait_time = 2 ** attempt  # Exponential backoff
                    logger.debug(f"Redis operation failed, retrying in {wait_time}s...")
                    await asyncio.sleep(wait_time)
            except RedisError:
                # Non-connection errors shouldn't retry
                raise

        logger.error(f"Redis operation failed after {self.max_retries} attempts: {last_exception}")
        raise last_exception

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = await self._with_retry(self._client.hgetall, self._key(key))
        if not raw:
            return None
        return {
            (name.decode("utf-8") if isinstance(name, bytes) else name): value
            for name, value in raw.items()
        }

    async def put(self, key: str, field: str, value: Union[str, bytes]) -> None:
        await self._with_retry(self._client.hset, self._key(key), field, value)

    async def ping(self) -> bool:
        try:
            return bool(await self._with_retry(self._client.ping))
        except RedisError as e:
            logger.warning(f"Redis health check failed: {e}")
            return False

    async def close(self):
        await self._client.aclose()
        if self._pool is not None:
            await self._pool.disconnect()
            logger.info("Redis connection pool closed")


class KeyedLock:
    """One asyncio.Lock per key, dropped when nobody holds or awaits it"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self):
        return len(self._locks)


class ReferenceWorkflow:
    """
    RECEIVED -> FETCHING -> PROCESSING -> PERSISTING -> REPLIED, or FAILED.

    ``analyze`` is the coroutine that runs the analysis pipeline off the
    event loop.
    """

    def __init__(
        self,
        store: ReferenceStore,
        analyze: Callable[[str], Awaitable[AnalyzedText]],
        key_locking: Optional[bool] = None,
        codec: Optional[MessageCodec] = None
    ):
        self.store = store
        self._analyze = analyze
        if key_locking is None:
            key_locking = settings.get('reference_key_locking', True)
        self._locks = KeyedLock() if key_locking else None
        self.codec = codec or AnalyzedTextCodec()

    def _hold(self, identifier: str):
        if self._locks is None:
            return contextlib.nullcontext()
        return self._locks.hold(identifier)

    async def handle(self, identifier: str, reply: Callable[[str], None]) -> WorkflowRun:
        """
        Run the workflow for ``identifier`` and reply with the identifier.

        Raises:
            NotFoundError: no entry or no message for the identifier; the run
                ends in FAILED and the caller must send a failure reply
        """
        run = WorkflowRun(identifier)
        try:
            async with self._hold(identifier):
                run.advance(WorkflowState.FETCHING)
                text = await self._fetch(identifier)

                run.advance(WorkflowState.PROCESSING)
                analyzed = await self._analyze(text)

                run.advance(WorkflowState.PERSISTING)
                await self.store.put(identifier, NLP_FIELD, self.codec.encode_to_wire(analyzed))

            reply(identifier)
            run.advance(WorkflowState.REPLIED)
        except Exception as e:
            run.fail(e)
            reference_workflows.labels(WorkflowState.FAILED.value).inc()
            logger.warning(f"Reference workflow failed for {identifier!r}: {e}")
            raise

        reference_workflows.labels(WorkflowState.REPLIED.value).inc()
        logger.info(f"Reference workflow completed for {identifier!r} with {len(analyzed.sentences)} sentences")
        return run

    async def _fetch(self, identifier: str) -> str:
        if not identifier:
            raise NotFoundError("Empty reference identifier", identifier=identifier)

        entry = await self.store.get(identifier)
        if entry is None:
            raise NotFoundError(f"No reference entry for '{identifier}'", identifier=identifier)

        message = entry.get(MESSAGE_FIELD)
        if message is None:
            raise NotFoundError(
                f"Reference entry '{identifier}' has no '{MESSAGE_FIELD}' field",
                identifier=identifier
            )

        if isinstance(message, bytes):
            try:
                message = message.decode("utf-8")
            except UnicodeDecodeError as e:
                raise CodecError(
                    f"Reference entry '{identifier}' message is not valid UTF-8: {e}",
                    original_error=e
                ) from e
        return message
