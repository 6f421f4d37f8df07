"""Change feed port and the in-memory feed used in development and tests.

A feed yields ``RawChange`` records for the collections a subscriber is
interested in. Every change carries an opaque resume token; watching again
with ``resume_after=<token>`` replays everything that happened after it.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class Operation(Enum):
    INSERT = "insert"
    UPDATE = "update"


@dataclass(frozen=True)
class RawChange:
    collection: str
    operation: Operation
    document_key: str
    resume_token: str
    updated_fields: dict[str, Any] = field(default_factory=dict)
    previous_fields: dict[str, Any] = field(default_factory=dict)
    full_document: dict[str, Any] | None = None

    def changed(self, path: str) -> bool:
        return any(key == path or key.startswith(f"{path}.") for key in self.updated_fields)


@dataclass(frozen=True)
class FieldInterest:
    """Subscription predicate: collection, operations and field paths.

    An empty ``fields`` set matches every change of the given operations.
    Passive interests are observed for audit only.
    """

    name: str
    collection: str
    operations: frozenset[Operation]
    fields: frozenset[str] = frozenset()
    passive: bool = False

    def matches(self, change: RawChange) -> bool:
        if change.collection != self.collection or change.operation not in self.operations:
            return False
        if not self.fields or change.operation is Operation.INSERT:
            return True
        return any(change.changed(path) for path in self.fields)


class ChangeFeed(ABC):
    @abstractmethod
    async def latest_token(self) -> str | None:
        """Token of the most recent change, or None if there is none yet."""
        ...

    @abstractmethod
    def watch(
        self,
        interest: FieldInterest,
        resume_after: str | None = None,
        on_open: Callable[[], None] | None = None,
    ) -> AsyncIterator[RawChange]:
        """Yield matching changes, starting after ``resume_after`` if given.

        Without a resume token only changes made after the call are yielded.
        ``on_open`` is called once the stream is established, before any
        change is yielded. Raises on disconnect; callers reconnect by
        watching again.
        """
        ...


class InMemoryChangeFeed(ChangeFeed):
    """Append-only change log with live fan-out to watchers."""

    def __init__(self):
        self._log: list[RawChange] = []
        self._watchers: set[asyncio.Queue] = set()
        self._refusals = 0

    @property
    def changes(self) -> list[RawChange]:
        return list(self._log)

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    def publish(
        self,
        collection: str,
        operation: Operation,
        document_key: str,
        updated_fields: dict | None = None,
        previous_fields: dict | None = None,
        full_document: dict | None = None,
    ) -> RawChange:
        change = RawChange(
            collection=collection,
            operation=operation,
            document_key=str(document_key),
            resume_token=str(len(self._log) + 1),
            updated_fields=dict(updated_fields or {}),
            previous_fields=dict(previous_fields or {}),
            full_document=dict(full_document) if full_document is not None else None,
        )
        self._log.append(change)
        for queue in self._watchers:
            queue.put_nowait(change)
        return change

    def disrupt(self, error: BaseException | None = None) -> None:
        """Break every open watch with ``error``."""
        error = error or ConnectionError("change stream closed")
        for queue in self._watchers:
            queue.put_nowait(error)

    async def latest_token(self) -> str | None:
        return str(len(self._log))

    def refuse_connections(self, count: int) -> None:
        """Make the next ``count`` calls to ``watch`` fail immediately."""
        self._refusals = count

    async def watch(
        self,
        interest: FieldInterest,
        resume_after: str | None = None,
        on_open: Callable[[], None] | None = None,
    ) -> AsyncIterator[RawChange]:
        if self._refusals > 0:
            self._refusals -= 1
            raise ConnectionError("change stream unavailable")

        queue: asyncio.Queue = asyncio.Queue()
        self._watchers.add(queue)
        try:
            if on_open is not None:
                on_open()
            if resume_after is not None:
                for change in self._log[int(resume_after) :]:
                    if interest.matches(change):
                        yield change

            while True:
                item = await queue.get()
                if isinstance(item, BaseException):
                    raise item
                if interest.matches(item):
                    yield item
        finally:
            self._watchers.discard(queue)
