# courier_dispatch/infra/pg_courier_repo_async.py
"""
Async PostgreSQL courier profile repository (asyncpg).

Time slots are stored as their normalized labels; rows written before a
format change may hold strings that no longer parse, which are skipped
with a warning on load.

Every write after creation is a single column-scoped ``UPDATE ... RETURNING``,
so concurrent writes never overwrite each other's columns.  Going
online carries ``AND active`` in its WHERE clause.
"""
from __future__ import annotations

from datetime import datetime

import asyncpg

from courier_dispatch.core.domain import Coordinate, CourierProfile, TransportMode, Weekday
from courier_dispatch.core.errors import ProfileAlreadyExistsError
from courier_dispatch.core.time_slots import parse_time_slots
from courier_dispatch.infra.db_resilience_async import safe_db_conn
from courier_dispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

_COLUMNS = """
    courier_id, display_name, active, online, max_distance_km,
    available_days, time_slots, transport_modes, gps_tracking_enabled,
    home_lat, home_lng, home_address, current_lat, current_lng,
    location_updated_at, last_online_at, last_offline_at, created_at, updated_at
"""


def _coordinate(lat, lng) -> Coordinate | None:
    if lat is None or lng is None:
        return None
    return Coordinate(lat, lng)


def _row_to_profile(row) -> CourierProfile:
    """Convert an asyncpg Record to a CourierProfile."""
    days = []
    for raw in row["available_days"] or []:
        try:
            days.append(Weekday(raw))
        except ValueError:
            logger.warning("Ignoring stored weekday %r for courier %s", raw, row["courier_id"])

    return CourierProfile(
        courier_id=row["courier_id"],
        display_name=row["display_name"],
        active=row["active"],
        online=row["online"],
        max_distance_km=row["max_distance_km"],
        available_days=frozenset(days),
        time_slots=parse_time_slots(row["time_slots"] or [], strict=False),
        transport_modes=tuple(TransportMode(m) for m in row["transport_modes"] or []),
        gps_tracking_enabled=row["gps_tracking_enabled"],
        home_location=_coordinate(row["home_lat"], row["home_lng"]),
        home_address=row["home_address"],
        current_location=_coordinate(row["current_lat"], row["current_lng"]),
        location_updated_at=row["location_updated_at"],
        last_online_at=row["last_online_at"],
        last_offline_at=row["last_offline_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _profile_params(p: CourierProfile) -> tuple:
    home = p.home_location
    current = p.current_location
    return (
        p.courier_id,
        p.display_name,
        p.active,
        p.online,
        float(p.max_distance_km),
        sorted(d.value for d in p.available_days),
        [slot.label for slot in p.time_slots],
        [m.value for m in p.transport_modes],
        p.gps_tracking_enabled,
        home.lat if home else None,
        home.lng if home else None,
        p.home_address,
        current.lat if current else None,
        current.lng if current else None,
        p.location_updated_at,
        p.last_online_at,
        p.last_offline_at,
        p.created_at,
        p.updated_at,
    )


_SIMPLE_COLUMNS = frozenset({
    "display_name", "active", "online", "gps_tracking_enabled", "home_address",
})


def _change_columns(changes: dict) -> list[tuple[str, object]]:
    """Map changed profile fields to (column, value) pairs."""
    columns: list[tuple[str, object]] = []
    for field_name, value in changes.items():
        if field_name in _SIMPLE_COLUMNS:
            columns.append((field_name, value))
        elif field_name == "max_distance_km":
            columns.append((field_name, float(value)))
        elif field_name == "available_days":
            columns.append((field_name, sorted(d.value for d in value)))
        elif field_name == "time_slots":
            columns.append((field_name, [slot.label for slot in value]))
        elif field_name == "transport_modes":
            columns.append((field_name, [m.value for m in value]))
        elif field_name == "home_location":
            columns.append(("home_lat", value.lat))
            columns.append(("home_lng", value.lng))
        else:
            raise ValueError(f"Profile field '{field_name}' cannot be updated")
    return columns


class AsyncPostgresCourierProfileRepository:

    async def get(self, courier_id: str) -> CourierProfile | None:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM courier_profiles WHERE courier_id = $1",
                courier_id,
            )
        return _row_to_profile(row) if row else None

    async def create(self, profile: CourierProfile) -> None:
        try:
            async with safe_db_conn() as conn:
                await conn.execute(
                    f"""
                    INSERT INTO courier_profiles ({_COLUMNS})
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10,
                            $11, $12, $13, $14, $15, $16, $17, $18, $19)
                    """,
                    *_profile_params(profile),
                )
        except asyncpg.UniqueViolationError:
            raise ProfileAlreadyExistsError(
                f"Courier profile '{profile.courier_id}' already exists"
            ) from None
        logger.info("Courier profile created", extra={"courier_id": profile.courier_id})


    async def update(
        self, courier_id: str, changes: dict, at: datetime
    ) -> CourierProfile | None:
        """Partial update: only the columns behind ``changes`` are written."""
        assignments = _change_columns(changes) + [("updated_at", at)]
        return await self._update(courier_id, assignments)

    async def set_online(
        self, courier_id: str, online: bool, at: datetime
    ) -> CourierProfile | None:
        stamp = "last_online_at" if online else "last_offline_at"
        return await self._update(
            courier_id,
            [("online", online), (stamp, at), ("updated_at", at)],
            require_active=online,
        )

    async def set_current_location(
        self, courier_id: str, location: Coordinate, at: datetime
    ) -> CourierProfile | None:
        return await self._update(
            courier_id,
            [
                ("current_lat", location.lat),
                ("current_lng", location.lng),
                ("location_updated_at", at),
                ("updated_at", at),
            ],
        )

    async def _update(
        self, courier_id: str, assignments: list[tuple[str, object]], *, require_active: bool = False
    ) -> CourierProfile | None:
        set_clause = ", ".join(
            f"{column} = ${i}" for i, (column, _) in enumerate(assignments, start=2)
        )
        condition = " AND active" if require_active else ""
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE courier_profiles SET {set_clause}
                WHERE courier_id = $1{condition}
                RETURNING {_COLUMNS}
                """,
                courier_id,
                *(value for _, value in assignments),
            )
        return _row_to_profile(row) if row else None
