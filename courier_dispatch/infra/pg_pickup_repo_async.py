# courier_dispatch/infra/pg_pickup_repo_async.py
"""Pickup coordinates from the ``pickup_points`` catalog projection."""
from __future__ import annotations

from courier_dispatch.core.domain import Coordinate, DeliveryOrder, PickupPoint
from courier_dispatch.infra.db_resilience_async import safe_db_conn


class AsyncPostgresPickupLocationService:

    async def pickup_for(self, delivery: DeliveryOrder) -> PickupPoint | None:
        if not delivery.product_id:
            return None

        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                """
                SELECT product_title, seller_name, address, lat, lng
                FROM pickup_points
                WHERE product_id = $1
                """,
                delivery.product_id,
            )
        if row is None:
            return None

        return PickupPoint(
            location=Coordinate(row["lat"], row["lng"]),
            product_title=row["product_title"],
            seller_name=row["seller_name"],
            address=row["address"],
        )

    async def upsert(self, product_id: str, pickup: PickupPoint) -> None:
        """Refresh the projection for one product (fed by the catalog service)."""
        async with safe_db_conn() as conn:
            await conn.execute(
                """
                INSERT INTO pickup_points (product_id, product_title, seller_name, address, lat, lng)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (product_id) DO UPDATE SET
                    product_title = EXCLUDED.product_title,
                    seller_name = EXCLUDED.seller_name,
                    address = EXCLUDED.address,
                    lat = EXCLUDED.lat,
                    lng = EXCLUDED.lng,
                    updated_at = now()
                """,
                product_id,
                pickup.product_title,
                pickup.seller_name,
                pickup.address,
                pickup.location.lat,
                pickup.location.lng,
            )
