from __future__ import annotations
import asyncio
import contextvars
import inspect
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)


class _Pending:
    """Marker for a subscription whose first evaluation has not finished."""

    def __repr__(self) -> str:
        return "PENDING"

    def __bool__(self) -> bool:
        return False


PENDING = _Pending()
_CLOSED = object()

_reads: contextvars.ContextVar[set[str] | None] = contextvars.ContextVar(
    "live_query_reads", default=None
)


def track_read(table: str) -> None:
    """Record ``table`` as a dependency of the query currently evaluating."""
    reads = _reads.get()
    if reads is not None:
        reads.add(table)


class ChangeBus:
    """Publishes "collection changed" events after committed writes."""

    def __init__(self) -> None:
        self._versions: dict[str, int] = {}
        self._writing: dict[str, int] = {}
        self._listeners: list[Callable[[frozenset[str]], None]] = []

    def version(self, table: str) -> int:
        return self._versions.get(table, 0)

    def versions(self) -> dict[str, int]:
        return dict(self._versions)

    def busy(self, tables: Iterable[str]) -> bool:
        """True while a write to any of ``tables`` has begun but not ended."""
        return any(self._writing.get(t, 0) for t in tables)

    def begin(self, tables: Iterable[str]) -> None:
        """Mark ``tables`` as being written.

        Versions move before the transaction starts, so a read that overlaps
        the write, commit included, is always seen as stale.
        """
        for table in frozenset(tables):
            self._versions[table] = self._versions.get(table, 0) + 1
            self._writing[table] = self._writing.get(table, 0) + 1

    def subscribe(
        self, listener: Callable[[frozenset[str]], None]
    ) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, tables: Iterable[str]) -> None:
        """End a write to ``tables`` and notify listeners."""
        changed = frozenset(tables)
        if not changed:
            return
        for table in changed:
            self._versions[table] = self._versions.get(table, 0) + 1
            if self._writing.get(table):
                self._writing[table] -= 1
        logger.debug("collections changed: %s", ", ".join(sorted(changed)))
        for listener in list(self._listeners):
            try:
                listener(changed)
            except Exception:
                logger.exception("change listener failed for %s", sorted(changed))


async def evaluate(
    query_fn: Callable[..., Any], *args: Any, reads: set[str] | None = None
) -> tuple[Any, frozenset[str]]:
    """Run ``query_fn`` once and return its value and the tables it read.

    When ``reads`` is given it is filled in place, so callers still see the
    dependencies of a query that raised.
    """
    if reads is None:
        reads = set()
    token = _reads.set(reads)
    try:
        value = query_fn(*args)
        if inspect.isawaitable(value):
            value = await value
    finally:
        _reads.reset(token)
    return value, frozenset(reads)


class Subscription:
    """A query kept up to date with the collections it reads.

    The first evaluation starts as soon as the subscription is created.
    Afterwards the query reruns whenever one of the tables it touched during
    its last run is written. A run that overlapped a write to one of its own
    tables is thrown away and repeated, so ``result`` only ever holds values
    computed against a state nobody was modifying. A run that ends while such
    a write is still open waits for that write to finish before rerunning.
    """

    def __init__(
        self,
        bus: ChangeBus,
        query_fn: Callable[..., Any],
        args: tuple = (),
        on_close: Callable[["Subscription"], None] | None = None,
    ) -> None:
        self._bus = bus
        self._query_fn = query_fn
        self._args = args
        self._on_close = on_close
        self.result: Any = PENDING
        self.error: BaseException | None = None
        self.dependencies: frozenset[str] = frozenset()
        self.evaluations = 0
        self._generation = 0
        self._closed = False
        self._dirty = asyncio.Event()
        self._dirty.set()
        self._waiters: list[asyncio.Future] = []
        self._queues: list[asyncio.Queue] = []
        self._unsubscribe = bus.subscribe(self._on_change)
        self._task = asyncio.get_running_loop().create_task(self._run())

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> bool:
        return self.result is PENDING

    def _on_change(self, tables: frozenset[str]) -> None:
        if self._closed:
            return
        if tables & self.dependencies:
            self._dirty.set()

    def rebind(self, *args: Any) -> None:
        """Replace the query arguments; reruns when they differ."""
        if args == self._args:
            return
        self._args = args
        self._dirty.set()

    async def _run(self) -> None:
        while not self._closed:
            await self._dirty.wait()
            if self._closed:
                break
            self._dirty.clear()
            before = self._bus.versions()
            args = self._args
            touched: set[str] = set()
            try:
                value, reads = await evaluate(self._query_fn, *args, reads=touched)
            except Exception as exc:
                logger.exception("live query %r failed", self._query_fn)
                self.dependencies = frozenset(touched)
                self.error = exc
                self._notify()
                continue
            self.evaluations += 1
            self.dependencies = reads
            if self._closed:
                break
            if args != self._args:
                self._dirty.set()
                continue
            if self._bus.busy(reads):
                # the write's publish wakes us through _on_change
                continue
            if any(self._bus.version(t) != before.get(t, 0) for t in reads):
                self._dirty.set()
                continue
            self.result = value
            self.error = None
            self._notify()

    def _notify(self) -> None:
        self._generation += 1
        waiters, self._waiters = self._waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(None)
        if self._closed:
            for queue in self._queues:
                queue.put_nowait(_CLOSED)
        elif self.error is None:
            for queue in self._queues:
                queue.put_nowait(self.result)

    async def wait(self) -> Any:
        """Return the next delivered result.

        Raises the query's exception when that evaluation failed.
        """
        if self._closed:
            return self.result
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        await fut
        if self.error is not None:
            raise self.error
        return self.result

    async def current(self) -> Any:
        """Return the latest result, waiting for the first one if needed."""
        if self.result is PENDING and self.error is None:
            return await self.wait()
        if self.error is not None:
            raise self.error
        return self.result

    async def updates(self) -> AsyncIterator[Any]:
        """Yield the current result and every result delivered afterwards.

        Results are buffered per iterator, so a consumer that is slow to ask
        for the next value still sees each delivery in order. Failed
        evaluations are not yielded.
        """
        if self._closed:
            return
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        try:
            if self.result is not PENDING:
                yield self.result
            while True:
                value = await queue.get()
                if value is _CLOSED:
                    return
                yield value
        finally:
            self._queues.remove(queue)

    def close(self) -> None:
        """Stop reacting to changes.

        An evaluation already running finishes its reads but its value is
        discarded; store writes are never touched.
        """
        if self._closed:
            return
        self._closed = True
        self._unsubscribe()
        self._dirty.set()
        self._notify()
        if self._on_close is not None:
            self._on_close(self)

    async def aclose(self) -> None:
        self.close()
        await asyncio.shield(self._task)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()


class LiveQuery:
    """Factory and owner of subscriptions over one :class:`ChangeBus`."""

    def __init__(self, bus: ChangeBus) -> None:
        self.bus = bus
        self._subscriptions: set[Subscription] = set()

    def observe(
        self, query_fn: Callable[..., Awaitable[Any] | Any], *args: Any
    ) -> Subscription:
        """Subscribe to ``query_fn(*args)``; must be called inside a running loop."""
        sub = Subscription(self.bus, query_fn, args, on_close=self._subscriptions.discard)
        self._subscriptions.add(sub)
        return sub

    @property
    def active(self) -> int:
        return len(self._subscriptions)

    async def close(self) -> None:
        for sub in list(self._subscriptions):
            await sub.aclose()
