# courier_dispatch/infra/pg_delivery_repo_async.py
"""
Async PostgreSQL delivery order repository (asyncpg).

Transitions are a single conditional ``UPDATE ... RETURNING`` inside a
transaction.  Two couriers accepting the same order race on the row
lock; the second UPDATE re-evaluates ``courier_id IS NULL`` after the
first commits, matches nothing and returns no row.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

import asyncpg

from courier_dispatch.core.domain import (
    STATUS_TIMESTAMP_FIELD,
    Coordinate,
    DeliveryOrder,
    DeliveryStatus,
)
from courier_dispatch.core.errors import DeliveryAlreadyExistsError
from courier_dispatch.core.ports import TransitionHook
from courier_dispatch.infra.db_resilience_async import safe_db_conn
from courier_dispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

_COLUMNS = """
    id, order_id, status, courier_id, fee_cents, estimated_time_min,
    product_id, seller_id, buyer_id, dropoff_lat, dropoff_lng,
    delivery_address, notes, cancel_reason, created_at, updated_at,
    accepted_at, picked_up_at, delivered_at, cancelled_at
"""


def _row_to_delivery(row) -> DeliveryOrder:
    """Convert an asyncpg Record to a DeliveryOrder."""
    dropoff = None
    if row["dropoff_lat"] is not None and row["dropoff_lng"] is not None:
        dropoff = Coordinate(row["dropoff_lat"], row["dropoff_lng"])
    return DeliveryOrder(
        id=row["id"],
        order_id=row["order_id"],
        status=DeliveryStatus(row["status"]),
        courier_id=row["courier_id"],
        fee_cents=row["fee_cents"],
        estimated_time_min=row["estimated_time_min"],
        product_id=row["product_id"],
        seller_id=row["seller_id"],
        buyer_id=row["buyer_id"],
        dropoff_location=dropoff,
        delivery_address=row["delivery_address"],
        notes=row["notes"],
        cancel_reason=row["cancel_reason"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        accepted_at=row["accepted_at"],
        picked_up_at=row["picked_up_at"],
        delivered_at=row["delivered_at"],
        cancelled_at=row["cancelled_at"],
    )


class AsyncPostgresDeliveryOrderRepository:

    async def get(self, delivery_id: str) -> Optional[DeliveryOrder]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM delivery_orders WHERE id = $1",
                delivery_id,
            )
        return _row_to_delivery(row) if row else None

    async def create(self, delivery: DeliveryOrder) -> None:
        dropoff = delivery.dropoff_location
        try:
            async with safe_db_conn() as conn:
                await conn.execute(
                    """
                    INSERT INTO delivery_orders (
                        id, order_id, status, fee_cents, estimated_time_min,
                        product_id, seller_id, buyer_id, dropoff_lat, dropoff_lng,
                        delivery_address, notes, created_at, updated_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
                    """,
                    delivery.id,
                    delivery.order_id,
                    delivery.status.value,
                    delivery.fee_cents,
                    delivery.estimated_time_min,
                    delivery.product_id,
                    delivery.seller_id,
                    delivery.buyer_id,
                    dropoff.lat if dropoff else None,
                    dropoff.lng if dropoff else None,
                    delivery.delivery_address,
                    delivery.notes,
                    delivery.created_at,
                    delivery.updated_at,
                )
        except asyncpg.UniqueViolationError:
            raise DeliveryAlreadyExistsError(
                f"Delivery for order '{delivery.order_id}' already exists"
            ) from None
        logger.info(
            "Delivery created for order %s", delivery.order_id,
            extra={"delivery_id": delivery.id},
        )

    async def list_pending(self) -> list[DeliveryOrder]:
        async with safe_db_conn() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM delivery_orders
                WHERE status = 'PENDING' AND courier_id IS NULL
                ORDER BY seq
                """
            )
        return [_row_to_delivery(row) for row in rows]

    async def transition(
        self,
        delivery_id: str,
        *,
        from_statuses: frozenset[DeliveryStatus],
        to_status: DeliveryStatus,
        at: datetime,
        expected_courier_id: Optional[str] = None,
        assign_courier_id: Optional[str] = None,
        cancel_reason: Optional[str] = None,
        before_commit: Optional[TransitionHook] = None,
    ) -> Optional[DeliveryOrder]:
        params: list = [
            delivery_id,
            sorted(s.value for s in from_statuses),
            to_status.value,
            at,
            cancel_reason,
        ]
        assignments = [
            "status = $3",
            "updated_at = $4",
            f"{STATUS_TIMESTAMP_FIELD[to_status]} = $4",
            "cancel_reason = COALESCE($5::text, cancel_reason)",
        ]
        conditions = ["id = $1", "status = ANY($2::text[])"]

        if assign_courier_id is not None:
            params.append(assign_courier_id)
            assignments.append(f"courier_id = ${len(params)}")
            conditions.append("courier_id IS NULL")

        if expected_courier_id is not None:
            params.append(expected_courier_id)
            conditions.append(f"courier_id = ${len(params)}")

        query = f"""
            UPDATE delivery_orders
            SET {", ".join(assignments)}
            WHERE {" AND ".join(conditions)}
            RETURNING {_COLUMNS}
        """

        async with safe_db_conn(autocommit=False) as conn:
            row = await conn.fetchrow(query, *params)
            if row is None:
                return None

            delivery = _row_to_delivery(row)
            if before_commit is not None:
                await before_commit(delivery)

        return delivery
