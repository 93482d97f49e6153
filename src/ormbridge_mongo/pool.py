"""Bounded asyncio connection pool with scoped acquisition."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from inspect import isawaitable
from typing import Generic, TypeVar

from .exceptions import PoolExhaustedError, TransportError

logger = logging.getLogger("ormbridge.mongo.pool")

C = TypeVar("C")


def _cancelled_only(exc: BaseException) -> bool:
    return not isinstance(exc, Exception)


class ConnectionPool(Generic[C]):
    """Bounded pool of connections created by an async factory.

    - At most ``max_connections`` are checked out at once; ``acquire``
      suspends while the pool is saturated and raises ``PoolExhaustedError``
      once ``timeout`` elapses.
    - Idle connections above ``min_idle`` that have been idle for longer than
      ``idle_timeout`` seconds are destroyed on the next acquire or release.
    - Factory and destroyer failures are reported on this module's logger.
    """

    def __init__(
        self,
        create: Callable[[], Awaitable[C]],
        destroy: Callable[[C], Awaitable[None] | None],
        *,
        max_connections: int = 10,
        min_idle: int = 1,
        idle_timeout: float = 30.0,
        acquire_timeout: float | None = None,
        is_fatal: Callable[[BaseException], bool] = _cancelled_only,
        name: str = "ormbridge-mongo-pool",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_connections < 1:
            raise ValueError("max_connections must be >= 1")
        if not 0 <= min_idle <= max_connections:
            raise ValueError("min_idle must be between 0 and max_connections")
        self._create = create
        self._destroy = destroy
        self._max = max_connections
        self._min_idle = min_idle
        self._idle_timeout = idle_timeout
        self._acquire_timeout = acquire_timeout
        self._is_fatal = is_fatal
        self.name = name
        self._clock = clock

        self._permits = asyncio.Semaphore(max_connections)
        self._idle: deque[tuple[C, float]] = deque()
        self._in_use: dict[int, C] = {}
        self._all_returned = asyncio.Event()
        self._all_returned.set()
        self._draining = False

    # ── Introspection ────────────────────────────────────────────

    @property
    def max_connections(self) -> int:
        return self._max

    @property
    def in_use(self) -> int:
        return len(self._in_use)

    @property
    def idle(self) -> int:
        return len(self._idle)

    @property
    def size(self) -> int:
        return self.in_use + self.idle

    @property
    def draining(self) -> bool:
        return self._draining

    # ── Acquire / release ────────────────────────────────────────

    async def acquire(self, timeout: float | None = None) -> C:
        """Check out a connection, creating one if none is idle."""
        if self._draining:
            raise PoolExhaustedError(f"{self.name} is draining")
        timeout = timeout if timeout is not None else self._acquire_timeout
        try:
            if timeout is None:
                await self._permits.acquire()
            else:
                await asyncio.wait_for(self._permits.acquire(), timeout=timeout)
        except asyncio.TimeoutError as err:
            logger.warning(
                "%s: acquire timed out after %.1fs (%d/%d in use)",
                self.name,
                timeout,
                self.in_use,
                self._max,
            )
            raise PoolExhaustedError(
                f"No connection available within {timeout}s "
                f"({self.in_use}/{self._max} in use)"
            ) from err

        try:
            await self._reap_idle()
            if self._idle:
                conn, _ = self._idle.pop()
            else:
                conn = await self._open()
        except BaseException:
            self._permits.release()
            raise

        self._in_use[id(conn)] = conn
        self._all_returned.clear()
        logger.debug("%s: acquired (%d/%d in use)", self.name, self.in_use, self._max)
        return conn

    async def release(self, conn: C) -> None:
        """Return a healthy connection to the idle set."""
        if not self._check_in(conn):
            return
        if self._draining:
            await self._close(conn)
        else:
            self._idle.append((conn, self._clock()))
            await self._reap_idle()
        self._permits.release()

    async def destroy(self, conn: C) -> None:
        """Discard a connection that must not be reused."""
        if not self._check_in(conn):
            return
        await self._close(conn)
        self._permits.release()

    @asynccontextmanager
    async def connection(self, timeout: float | None = None) -> AsyncIterator[C]:
        """Scoped acquisition: release on success, release or destroy on error.

        The connection is destroyed when ``is_fatal`` says the error left it in
        an unknown state (cancellation by default); otherwise it is released.
        """
        conn = await self.acquire(timeout)
        try:
            yield conn
        except BaseException as exc:
            if self._is_fatal(exc):
                await self.destroy(conn)
            else:
                await self.release(conn)
            raise
        await self.release(conn)

    # ── Lifecycle ────────────────────────────────────────────────

    async def prime(self) -> None:
        """Open connections until ``min_idle`` are idle."""
        while self.idle < self._min_idle and self.size < self._max:
            self._idle.append((await self._open(), self._clock()))

    async def drain(self, timeout: float | None = None) -> None:
        """Refuse new acquires, wait for checked-out connections, close all."""
        self._draining = True
        try:
            await asyncio.wait_for(self._all_returned.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "%s: drain timed out with %d connections in use",
                self.name,
                self.in_use,
            )
        while self._idle:
            conn, _ = self._idle.popleft()
            await self._close(conn)

    # ── Internals ────────────────────────────────────────────────

    def _check_in(self, conn: C) -> bool:
        if self._in_use.pop(id(conn), None) is None:
            logger.error(
                "%s: returned a connection it does not own: %r", self.name, conn
            )
            return False
        if not self._in_use:
            self._all_returned.set()
        return True

    async def _open(self) -> C:
        try:
            return await self._create()
        except Exception as e:
            logger.error("%s: failed to open connection: %s", self.name, e)
            raise TransportError(f"Failed to open connection: {e}") from e

    async def _close(self, conn: C) -> None:
        try:
            result = self._destroy(conn)
            if isawaitable(result):
                await result
        except Exception as e:  # noqa: BLE001
            logger.error("%s: failed to close connection %r: %s", self.name, conn, e)

    async def _reap_idle(self) -> None:
        now = self._clock()
        while len(self._idle) > self._min_idle:
            conn, since = self._idle[0]
            if now - since < self._idle_timeout:
                break
            self._idle.popleft()
            logger.debug("%s: reclaiming idle connection %r", self.name, conn)
            await self._close(conn)
