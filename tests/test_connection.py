"""Tests for the pooled, retrying connection layer."""

import asyncio

import pytest

from db.connection import (
    ConnectionPool,
    close_pool,
    connect_with_retry,
    db_select,
    db_update,
    get_pool,
)


async def test_connect_with_retry_exits_after_attempts(tmp_path, caplog):
    unreachable = tmp_path / "missing" / "nostrcheck.sqlite"

    with pytest.raises(SystemExit) as exc:
        await connect_with_retry(unreachable, attempts=3, retry_delay=0, source="test")

    assert exc.value.code == 1
    assert caplog.text.count("Retrying connection to database") == 2
    assert "Database is not responding" in caplog.text


async def test_connect_with_retry_enables_foreign_keys(tmp_path):
    db = await connect_with_retry(tmp_path / "nostrcheck.sqlite", attempts=1, retry_delay=0)
    try:
        cursor = await db.execute("PRAGMA foreign_keys")
        assert (await cursor.fetchone())[0] == 1
    finally:
        await db.close()


async def test_pool_reuses_released_connection(pool):
    async with pool.acquire("first") as first:
        pass
    async with pool.acquire("second") as second:
        pass

    assert first is second
    assert pool.idle_connections == 1


async def test_pool_rolls_back_uncommitted_work_on_error(pool):
    async with pool.acquire() as db:
        await db.execute("CREATE TABLE registered (id INTEGER PRIMARY KEY, username TEXT)")
        await db.commit()

    with pytest.raises(RuntimeError):
        async with pool.acquire() as db:
            await db.execute("INSERT INTO registered (username) VALUES ('alice')")
            raise RuntimeError("handler failed")

    async with pool.acquire() as db:
        cursor = await db.execute("SELECT COUNT(*) FROM registered")
        assert (await cursor.fetchone())[0] == 0
    assert pool.idle_connections == 1


async def test_pool_size_bounds_concurrent_connections(tmp_path):
    single = ConnectionPool(tmp_path / "single.sqlite", size=1, attempts=1, retry_delay=0)
    order = []

    async def worker(name):
        async with single.acquire(name):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    try:
        await asyncio.gather(worker("a"), worker("b"))
    finally:
        await single.close()

    assert order == ["a-in", "a-out", "b-in", "b-out"]


async def test_db_update_and_select(pool):
    async with pool.acquire() as db:
        await db.execute("CREATE TABLE registered (id INTEGER PRIMARY KEY, username TEXT)")
        await db.execute("INSERT INTO registered (id, username) VALUES (1, 'alice')")
        await db.commit()

    assert await db_update(pool, "registered", "username", "bob", 1) is True
    assert await db_update(pool, "registered", "username", "carol", 99) is False
    assert await db_select(pool, "SELECT username FROM registered WHERE id = ?", "username", (1,)) == "bob"
    assert await db_select(pool, "SELECT username FROM registered WHERE id = ?", "username", (99,)) == ""


async def test_db_update_unknown_table_returns_false(pool):
    assert await db_update(pool, "lightning", "comments", "x", 1) is False


async def test_get_pool_is_shared_until_closed(tmp_path):
    settings = {"database": {"database": str(tmp_path / "shared.sqlite"), "poolSize": 2}}

    first = get_pool(settings)
    assert get_pool(settings) is first
    assert first.size == 2

    await close_pool()
    second = get_pool(settings)
    assert second is not first
    await close_pool()
