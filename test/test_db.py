import asyncio
from contextlib import asynccontextmanager

import pytest

from roorq.db import Store, UnknownColumnError


class RecordingConnection:
    def __init__(self, row=None):
        self.row = row
        self.calls = []

    async def fetchrow(self, query, *args):
        self.calls.append((" ".join(query.split()), args))
        return self.row


class RecordingPool:
    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


def test_conditional_write_matches_null_status():
    conn = RecordingConnection(row={"id": "o-1", "status": "confirmed"})
    store = Store(RecordingPool(conn))

    row = asyncio.run(store.update_order_if_status("orders", "o-1", None, {"status": "confirmed"}))

    assert row == {"id": "o-1", "status": "confirmed"}
    [(query, args)] = conn.calls
    assert "WHERE id = $1::uuid AND status IS NOT DISTINCT FROM $2" in query
    assert query.startswith("UPDATE orders SET status = $3")
    assert args == ("o-1", None, "confirmed")


def test_conditional_write_lost_race_returns_none():
    conn = RecordingConnection(row=None)
    store = Store(RecordingPool(conn))

    assert asyncio.run(store.update_order_if_status("vendor_orders", "o-1", "pending", {"status": "confirmed"})) is None


def test_conditional_write_rejects_unknown_table_and_columns():
    store = Store(RecordingPool(RecordingConnection()))

    with pytest.raises(UnknownColumnError):
        asyncio.run(store.update_order_if_status("users", "o-1", "pending", {"status": "confirmed"}))
    with pytest.raises(UnknownColumnError):
        asyncio.run(store.update_order_if_status("orders", "o-1", "pending", {"role": "admin"}))


def test_set_rider_active():
    conn = RecordingConnection(row={"id": "r-1", "is_active": False})
    store = Store(RecordingPool(conn))

    assert asyncio.run(store.set_rider_active("r-1", False)) == {"id": "r-1", "is_active": False}
    [(query, args)] = conn.calls
    assert query.startswith("UPDATE riders SET is_active = $2 WHERE id = $1::uuid")
    assert args == ("r-1", False)
