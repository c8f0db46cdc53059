"""
Async Postgres (Supabase) data access. One method per single-table read or write,
always filtered by primary or foreign key. Column and table names come from the
allowlists below, never from request input.
Order status writes are conditional on the previously observed status (optimistic concurrency).
"""
import json
from datetime import datetime
from typing import Any
from uuid import UUID

import asyncpg

from roorq.config import settings

_pool: asyncpg.Pool | None = None

ORDER_TABLES = frozenset({"orders", "vendor_orders"})

ORDER_COLUMNS = frozenset({
    "status",
    "rider_id",
    "payment_status",
    "payment_collected_by",
    "payment_collected_at",
    "cancellation_reason",
    "cancelled_at",
    "tracking_number",
    "tracking_url",
    "updated_at",
})

USER_COLUMNS = frozenset({
    "role",
    "full_name",
    "phone",
    "user_type",
    "vendor_status",
    "rejection_reason",
    "vendor_registered_at",
    "vendor_approved_at",
    "vendor_rejected_at",
    "business_name",
    "business_type",
    "business_category",
    "business_email",
    "business_phone",
    "pan_number",
    "gstin",
    "store_name",
    "store_description",
    "store_logo_url",
    "store_banner_url",
    "bank_account_number",
    "bank_ifsc",
    "bank_account_name",
    "upi_id",
    "pickup_address",
    "return_address",
    "onboarding_step",
})

VENDOR_PROFILE_FIELDS = "id, email, user_type, vendor_status, store_name, profile_completion, onboarding_step"


class UnknownColumnError(ValueError):
    """Raised when a write names a column outside the allowlist."""


async def _init_connection(conn: asyncpg.Connection) -> None:
    for typename in ("json", "jsonb"):
        await conn.set_type_codec(
            typename,
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
            command_timeout=60,
            init=_init_connection,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def _check_columns(fields: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise UnknownColumnError(", ".join(sorted(unknown)))


def _set_clause(fields: dict[str, Any], start: int) -> str:
    return ", ".join(f"{col} = ${i}" for i, col in enumerate(fields, start=start))


def _rows(records) -> list[dict]:
    return [dict(r) for r in records]


class Store:
    """Data store facade handed to route handlers via the get_store dependency."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    # ---- identity ----

    async def get_user_role(self, user_id: str) -> str | None:
        """Security-definer role lookup (avoids RLS recursion on users)."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT get_user_role($1::uuid);", str(user_id))

    async def get_user_profile(self, user_id: str) -> dict | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {VENDOR_PROFILE_FIELDS} FROM users WHERE id = $1::uuid;",
                str(user_id),
            )
        return dict(row) if row else None

    async def update_user(self, user_id: str, fields: dict[str, Any]) -> bool:
        """Update one users row. Returns False if no row matched."""
        _check_columns(fields, USER_COLUMNS)
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                f"UPDATE users SET {_set_clause(fields, 2)}, updated_at = NOW() WHERE id = $1::uuid;",
                str(user_id),
                *fields.values(),
            )
        return result != "UPDATE 0"

    async def list_users(self) -> list[dict]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT id, email, full_name, role, created_at, updated_at FROM users ORDER BY created_at DESC;"
            )
        return _rows(rows)

    async def list_vendors(self) -> list[dict]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, email, full_name, business_name, store_name, vendor_status,
                       vendor_registered_at, vendor_approved_at
                FROM users
                WHERE user_type = 'vendor'
                ORDER BY vendor_registered_at DESC NULLS LAST;
                """
            )
        return _rows(rows)

    async def insert_vendor_documents(self, documents: list[dict]) -> None:
        async with self.pool.acquire() as conn:
            await conn.executemany(
                """
                INSERT INTO vendor_documents (vendor_id, document_type, document_url, document_number, status)
                VALUES ($1::uuid, $2, $3, $4, $5);
                """,
                [
                    (
                        str(d["vendor_id"]),
                        d["document_type"],
                        d["document_url"],
                        d.get("document_number"),
                        d.get("status", "pending"),
                    )
                    for d in documents
                ],
            )

    # ---- orders ----

    async def get_order(self, table: str, order_id: UUID | str) -> dict | None:
        if table not in ORDER_TABLES:
            raise UnknownColumnError(table)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"SELECT * FROM {table} WHERE id = $1::uuid;", str(order_id))
        return dict(row) if row else None

    async def update_order_if_status(
        self,
        table: str,
        order_id: UUID | str,
        expected_status: str,
        fields: dict[str, Any],
    ) -> dict | None:
        """
        Conditional write: only applies if the row still carries expected_status.
        Returns the updated row, or None when zero rows matched (lost a race or row gone).
        """
        if table not in ORDER_TABLES:
            raise UnknownColumnError(table)
        _check_columns(fields, ORDER_COLUMNS)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE {table} SET {_set_clause(fields, 3)}
                WHERE id = $1::uuid AND status IS NOT DISTINCT FROM $2
                RETURNING *;
                """,
                str(order_id),
                expected_status,
                *fields.values(),
            )
        return dict(row) if row else None

    async def update_order(self, table: str, order_id: UUID | str, fields: dict[str, Any]) -> dict | None:
        """Unconditional write for non-status fields (rider, tracking)."""
        if table not in ORDER_TABLES:
            raise UnknownColumnError(table)
        _check_columns(fields, ORDER_COLUMNS - {"status"})
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"UPDATE {table} SET {_set_clause(fields, 2)} WHERE id = $1::uuid RETURNING *;",
                str(order_id),
                *fields.values(),
            )
        return dict(row) if row else None

    async def get_rider(self, rider_id: UUID | str) -> dict | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT id, is_active FROM riders WHERE id = $1::uuid;", str(rider_id))
        return dict(row) if row else None

    async def list_riders(self) -> list[dict]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT id, name, phone, is_active, created_at FROM riders ORDER BY created_at DESC;"
            )
        return _rows(rows)

    async def create_rider(self, name: str, phone: str) -> dict:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO riders (name, phone, is_active)
                VALUES ($1, $2, TRUE)
                RETURNING id, name, phone, is_active, created_at;
                """,
                name,
                phone,
            )
        return dict(row)

    async def set_rider_active(self, rider_id: UUID | str, is_active: bool) -> dict | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE riders SET is_active = $2 WHERE id = $1::uuid
                RETURNING id, name, phone, is_active, created_at;
                """,
                str(rider_id),
                is_active,
            )
        return dict(row) if row else None

    async def create_marketplace_order(
        self,
        user_id: str,
        items: list[dict],
        shipping_address: dict,
        billing_address: dict | None,
        payment_method: str,
    ) -> dict:
        """
        Call the create_marketplace_order database function as the signed-in user.
        The function reads auth.uid() from request.jwt.claims, so they are set for the transaction.
        """
        claims = json.dumps({"sub": str(user_id), "role": "authenticated"})
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("SELECT set_config('request.jwt.claims', $1, true);", claims)
                return await conn.fetchval(
                    "SELECT create_marketplace_order($1::jsonb, $2::jsonb, $3::jsonb, $4);",
                    items,
                    shipping_address,
                    billing_address,
                    payment_method,
                )

    # ---- payouts / analytics ----

    async def list_vendor_payouts(self, vendor_id: str) -> list[dict]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, payout_period_start, payout_period_end, payout_amount, status, created_at
                FROM vendor_payouts
                WHERE vendor_id = $1::uuid
                ORDER BY created_at DESC;
                """,
                str(vendor_id),
            )
        return _rows(rows)

    async def get_vendor_payout(self, vendor_id: str, payout_id: UUID | str) -> dict | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, payout_period_start, payout_period_end, total_orders, total_sales,
                       total_commission, payout_amount, status, payment_method,
                       transaction_reference, paid_at
                FROM vendor_payouts
                WHERE id = $1::uuid AND vendor_id = $2::uuid;
                """,
                str(payout_id),
                str(vendor_id),
            )
            if row is None:
                return None
            items = await conn.fetch(
                """
                SELECT id, vendor_order_id, order_amount, commission, payout_amount
                FROM payout_line_items
                WHERE payout_id = $1::uuid
                ORDER BY id;
                """,
                str(payout_id),
            )
        payout = dict(row)
        payout["line_items"] = _rows(items)
        return payout

    async def list_vendor_analytics(self, vendor_id: str, limit: int = 7) -> list[dict]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM vendor_analytics WHERE vendor_id = $1::uuid ORDER BY date DESC LIMIT $2;",
                str(vendor_id),
                limit,
            )
        return _rows(rows)

    # ---- referrals ----

    async def list_referrals(self) -> list[dict]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, referrer_id, invitee_id, status, reward_category, created_at
                FROM referrals
                ORDER BY created_at DESC;
                """
            )
        return _rows(rows)

    async def list_referral_rewards(self) -> list[dict]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, user_id, product_id, category, status, created_at
                FROM referral_rewards
                ORDER BY created_at DESC;
                """
            )
        return _rows(rows)

    # ---- dashboards ----

    async def count_vendor_orders(self, statuses: list[str], vendor_id: str | None = None) -> int:
        async with self.pool.acquire() as conn:
            if vendor_id is None:
                return await conn.fetchval(
                    "SELECT COUNT(*) FROM vendor_orders WHERE status = ANY($1::text[]);",
                    statuses,
                )
            return await conn.fetchval(
                "SELECT COUNT(*) FROM vendor_orders WHERE status = ANY($1::text[]) AND vendor_id = $2::uuid;",
                statuses,
                str(vendor_id),
            )

    async def count_products(self, approval_status: str | None = None, vendor_id: str | None = None) -> int:
        async with self.pool.acquire() as conn:
            if vendor_id is not None:
                return await conn.fetchval(
                    "SELECT COUNT(*) FROM products WHERE vendor_id = $1::uuid;",
                    str(vendor_id),
                )
            return await conn.fetchval(
                "SELECT COUNT(*) FROM products WHERE approval_status = $1;",
                approval_status,
            )

    async def list_recent_parent_orders(self, limit: int = 5) -> list[dict]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, order_number, total_amount, payment_status, payment_method, created_at
                FROM parent_orders
                ORDER BY created_at DESC
                LIMIT $1;
                """,
                limit,
            )
        return _rows(rows)

    async def sum_paid_orders_since(self, since: datetime) -> float:
        async with self.pool.acquire() as conn:
            total = await conn.fetchval(
                """
                SELECT COALESCE(SUM(total_amount), 0)
                FROM parent_orders
                WHERE created_at >= $1 AND payment_status = 'paid';
                """,
                since,
            )
        return float(total)

    async def sum_vendor_order_subtotals(self, vendor_id: str, status: str) -> float:
        async with self.pool.acquire() as conn:
            total = await conn.fetchval(
                "SELECT COALESCE(SUM(subtotal), 0) FROM vendor_orders WHERE vendor_id = $1::uuid AND status = $2;",
                str(vendor_id),
                status,
            )
        return float(total)

    async def list_vendor_notifications(self, vendor_id: str, limit: int = 5) -> list[dict]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM vendor_notifications WHERE vendor_id = $1::uuid ORDER BY created_at DESC LIMIT $2;",
                str(vendor_id),
                limit,
            )
        return _rows(rows)

    # ---- audit ----

    async def insert_audit_event(self, event: dict) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO auth_audit_logs (user_id, identifier, action, status, ip, user_agent, metadata, created_at)
                VALUES ($1::uuid, $2, $3, $4, $5, $6, $7::jsonb, $8);
                """,
                event.get("user_id"),
                event.get("identifier"),
                event["action"],
                event["status"],
                event.get("ip"),
                event.get("user_agent"),
                event.get("metadata") or {},
                event["created_at"],
            )


async def get_store() -> Store:
    """FastAPI dependency. Tests override it with an in-memory store."""
    return Store(await get_pool())


# Exceptions a store call may raise when the backend is down or a statement fails.
STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)
