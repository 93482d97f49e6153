"""Unit tests for ConnectionPool acquisition, release and reclamation."""

import asyncio
import itertools
import logging

import pytest

from ormbridge_mongo import ConnectionPool, PoolExhaustedError, TransportError


class FakeConn:
    _ids = itertools.count(1)

    def __init__(self):
        self.id = next(self._ids)
        self.closed = False


class Factory:
    """Records every connection opened and closed by a pool."""

    def __init__(self, fail=False):
        self.opened = []
        self.closed = []
        self.fail = fail

    async def create(self):
        if self.fail:
            raise OSError("connection refused")
        conn = FakeConn()
        self.opened.append(conn)
        return conn

    async def destroy(self, conn):
        conn.closed = True
        self.closed.append(conn)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def factory():
    return Factory()


def make_pool(factory, **kwargs):
    return ConnectionPool(factory.create, factory.destroy, **kwargs)


class TestAcquireRelease:
    async def test_released_connection_is_reused(self, factory):
        pool = make_pool(factory)

        first = await pool.acquire()
        await pool.release(first)
        second = await pool.acquire()

        assert first is second
        assert len(factory.opened) == 1
        assert pool.in_use == 1

    async def test_acquire_times_out_when_saturated(self, factory):
        pool = make_pool(factory, max_connections=1)
        await pool.acquire()

        with pytest.raises(PoolExhaustedError):
            await pool.acquire(timeout=0.01)
        assert pool.in_use == 1

    async def test_default_acquire_timeout(self, factory):
        pool = make_pool(factory, max_connections=1, acquire_timeout=0.01)
        await pool.acquire()

        with pytest.raises(PoolExhaustedError):
            await pool.acquire()

    async def test_waiter_resumes_after_release(self, factory):
        pool = make_pool(factory, max_connections=1)
        held = await pool.acquire()

        waiter = asyncio.ensure_future(pool.acquire(timeout=1))
        await asyncio.sleep(0)
        assert not waiter.done()

        await pool.release(held)
        assert await waiter is held

    async def test_destroy_frees_a_permit(self, factory):
        pool = make_pool(factory, max_connections=1)
        conn = await pool.acquire()

        await pool.destroy(conn)
        replacement = await pool.acquire(timeout=0.1)

        assert conn.closed
        assert replacement is not conn
        assert pool.size == 1

    async def test_foreign_connection_is_ignored(self, factory, caplog):
        pool = make_pool(factory, max_connections=1)

        with caplog.at_level(logging.ERROR, logger="ormbridge.mongo.pool"):
            await pool.release(FakeConn())

        assert "does not own" in caplog.text
        await pool.acquire(timeout=0.1)
        with pytest.raises(PoolExhaustedError):
            await pool.acquire(timeout=0.01)


class TestScopedAcquisition:
    async def test_success_releases(self, factory):
        pool = make_pool(factory)

        async with pool.connection() as conn:
            assert pool.in_use == 1

        assert pool.in_use == 0
        assert pool.idle == 1
        assert not conn.closed

    async def test_non_fatal_error_releases(self, factory):
        pool = make_pool(factory)

        with pytest.raises(ValueError):
            async with pool.connection():
                raise ValueError("boom")

        assert pool.in_use == 0
        assert pool.idle == 1
        assert factory.closed == []

    async def test_cancellation_destroys(self, factory):
        pool = make_pool(factory)

        with pytest.raises(asyncio.CancelledError):
            async with pool.connection():
                raise asyncio.CancelledError()

        assert pool.size == 0
        assert len(factory.closed) == 1

    async def test_custom_fatal_predicate(self, factory):
        pool = make_pool(factory, is_fatal=lambda exc: isinstance(exc, TransportError))

        with pytest.raises(TransportError):
            async with pool.connection():
                raise TransportError("socket reset")

        assert pool.size == 0
        assert len(factory.closed) == 1


class TestIdleReclamation:
    async def test_idle_connections_above_floor_are_reclaimed(self, factory):
        clock = FakeClock()
        pool = make_pool(factory, min_idle=1, idle_timeout=10, clock=clock)
        a = await pool.acquire()
        b = await pool.acquire()
        await pool.release(a)
        await pool.release(b)
        assert pool.idle == 2

        clock.now = 11
        conn = await pool.acquire()

        assert factory.closed == [a]
        assert conn is b
        assert pool.idle == 0

    async def test_fresh_idle_connections_are_kept(self, factory):
        clock = FakeClock()
        pool = make_pool(factory, min_idle=0, idle_timeout=10, clock=clock)
        conn = await pool.acquire()
        await pool.release(conn)

        clock.now = 5
        assert await pool.acquire() is conn
        assert factory.closed == []

    async def test_prime_opens_floor(self, factory):
        pool = make_pool(factory, min_idle=2, max_connections=3)

        await pool.prime()

        assert pool.idle == 2
        assert len(factory.opened) == 2


class TestFailures:
    async def test_factory_failure_is_a_transport_error(self, caplog):
        factory = Factory(fail=True)
        pool = make_pool(factory, max_connections=1)

        with caplog.at_level(logging.ERROR, logger="ormbridge.mongo.pool"):
            with pytest.raises(TransportError):
                await pool.acquire()

        assert "failed to open connection" in caplog.text
        factory.fail = False
        assert await pool.acquire(timeout=0.1) is not None

    async def test_destroyer_failure_is_only_logged(self, caplog):
        async def bad_destroy(conn):
            raise RuntimeError("already gone")

        factory = Factory()
        pool = ConnectionPool(factory.create, bad_destroy)
        conn = await pool.acquire()

        with caplog.at_level(logging.ERROR, logger="ormbridge.mongo.pool"):
            await pool.destroy(conn)

        assert "failed to close connection" in caplog.text
        assert pool.size == 0

    @pytest.mark.parametrize(
        "kwargs", [{"max_connections": 0}, {"max_connections": 2, "min_idle": 3}]
    )
    def test_invalid_bounds(self, factory, kwargs):
        with pytest.raises(ValueError):
            make_pool(factory, **kwargs)


class TestDrain:
    async def test_drain_waits_for_checked_out_connections(self, factory):
        pool = make_pool(factory)
        conn = await pool.acquire()

        drain = asyncio.ensure_future(pool.drain(timeout=1))
        await asyncio.sleep(0)
        assert not drain.done()
        assert pool.draining
        with pytest.raises(PoolExhaustedError):
            await pool.acquire()

        await pool.release(conn)
        await drain

        assert pool.size == 0
        assert factory.closed == [conn]

    async def test_drain_timeout_closes_idle_only(self, factory):
        pool = make_pool(factory)
        held = await pool.acquire()
        idle = await pool.acquire()
        await pool.release(idle)

        await pool.drain(timeout=0.01)

        assert factory.closed == [idle]
        assert pool.in_use == 1
        assert not held.closed
