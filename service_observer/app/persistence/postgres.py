"""
PostgreSQL persistence layer for the Observer service.
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from shared.errors import PersistenceConflictError, ServiceError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception
from ..domain.models import GeoObject, Geometry, Observer
from ..domain.query import GeoObjectQuery
from .interfaces import GeoObjectSource, ObserverLookup, ObserverStore

GEO_OBJECT_COLUMNS = (
    "id, map_id, side_id, name, description, ttl, icon_url, geometry, created_at, updated_at"
)

OBSERVER_COLUMNS = (
    "id, name, map_id, rules, icon, description, access_token, version, created_at, updated_at"
)

# Active unless a positive ttl has elapsed since both creation and last update
ACTIVE_CONDITION = (
    "(ttl IS NULL OR ttl = 0"
    " OR created_at + make_interval(secs => ttl) > $2"
    " OR (updated_at IS NOT NULL AND updated_at + make_interval(secs => ttl) > $2))"
)


def compile_geo_object_query(query: GeoObjectQuery) -> Tuple[str, List[Any]]:
    """SQL and positional arguments for a composed object query."""
    args: List[Any] = [query.map_id, query.active_at]
    conditions = ["map_id = $1", ACTIVE_CONDITION]

    if query.match_nothing:
        conditions.append("FALSE")

    if query.object_ids is not None:
        args.append(sorted(query.object_ids))
        conditions.append(f"id = ANY(${len(args)}::bigint[])")

    if query.side_ids is not None:
        args.append(sorted(query.side_ids))
        conditions.append(f"side_id = ANY(${len(args)}::bigint[])")

    sql = (
        f"SELECT {GEO_OBJECT_COLUMNS} FROM geo_objects"
        f" WHERE {' AND '.join(conditions)}"
        " ORDER BY id"
    )
    return sql, args


async def _init_connection(conn: asyncpg.Connection):
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog"
    )


class PostgreSQLPersistence(ObserverLookup, GeoObjectSource, ObserverStore):
    """PostgreSQL storage for maps, objects and observers."""

    def __init__(self, dsn: str, min_pool_size: int = 2, max_pool_size: int = 10, connect_attempts: int = 5):
        self.dsn = dsn
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.connect_attempts = connect_attempts
        self.logger = get_logger("observer.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        connect = retry_on_exception(
            (OSError, asyncio.TimeoutError, asyncpg.PostgresError),
            RetryConfig(max_attempts=self.connect_attempts, base_delay=1.0, max_delay=10.0)
        )(self._create_pool)

        try:
            self.pool = await connect()
        except RetryError as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e.last_exception))
            raise ServiceError("PostgreSQL unavailable", {"error": str(e.last_exception)}) from e

        await self._create_tables()
        self.logger.info("PostgreSQL persistence started")

    async def _create_pool(self) -> asyncpg.Pool:
        return await asyncpg.create_pool(
            self.dsn,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=30,
            init=_init_connection
        )

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL persistence stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS maps (
                    id BIGSERIAL PRIMARY KEY,
                    title VARCHAR(255) NOT NULL,
                    description TEXT,
                    center_lat DOUBLE PRECISION NOT NULL,
                    center_lng DOUBLE PRECISION NOT NULL,
                    zoom_level INTEGER NOT NULL
                );
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS sides (
                    id BIGSERIAL PRIMARY KEY,
                    name VARCHAR(255) NOT NULL,
                    color VARCHAR(7),
                    description TEXT
                );
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS geo_objects (
                    id BIGSERIAL PRIMARY KEY,
                    map_id BIGINT NOT NULL REFERENCES maps(id) ON DELETE CASCADE,
                    side_id BIGINT REFERENCES sides(id) ON DELETE SET NULL,
                    name VARCHAR(255) NOT NULL,
                    description TEXT,
                    ttl INTEGER,
                    icon_url VARCHAR(255),
                    geometry JSONB NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE
                );
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS observers (
                    id BIGSERIAL PRIMARY KEY,
                    name VARCHAR(255) NOT NULL,
                    map_id BIGINT NOT NULL REFERENCES maps(id) ON DELETE CASCADE,
                    rules JSONB NOT NULL DEFAULT '{}',
                    icon VARCHAR(255),
                    description TEXT,
                    access_token VARCHAR(64) NOT NULL UNIQUE,
                    version INTEGER NOT NULL DEFAULT 1,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE
                );
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_geo_objects_map ON geo_objects(map_id);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_geo_objects_side ON geo_objects(side_id);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_observers_map ON observers(map_id);
            """)

    async def find_by_access_token(self, token: str) -> Optional[Observer]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {OBSERVER_COLUMNS} FROM observers WHERE access_token = $1",
                token
            )
            return self._row_to_observer(row) if row else None

    async def load(self, observer_id: int) -> Optional[Observer]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {OBSERVER_COLUMNS} FROM observers WHERE id = $1",
                observer_id
            )
            return self._row_to_observer(row) if row else None

    async def save_rules(self, observer_id: int, rules: Dict[str, Any], expected_version: int) -> int:
        async with self.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE observers
                SET rules = $1, version = version + 1, updated_at = NOW()
                WHERE id = $2 AND version = $3
            """, rules, observer_id, expected_version)

            if result != "UPDATE 1":
                actual = await conn.fetchval("SELECT version FROM observers WHERE id = $1", observer_id)
                raise PersistenceConflictError(observer_id, expected_version, actual)

            return expected_version + 1

    async def fetch(self, query: GeoObjectQuery) -> List[GeoObject]:
        if query.is_empty:
            return []

        sql, args = compile_geo_object_query(query)
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, *args)
            return [self._row_to_geo_object(row) for row in rows]

    async def find_active_by_map(self, map_id: int, now: datetime) -> List[GeoObject]:
        return await self.fetch(GeoObjectQuery.for_map(map_id, now))

    def _row_to_observer(self, row) -> Observer:
        """Convert database row to Observer."""
        return Observer(
            id=row["id"],
            name=row["name"],
            map_id=row["map_id"],
            rules=row["rules"] or {},
            icon=row["icon"],
            description=row["description"],
            access_token=row["access_token"],
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"]
        )

    def _row_to_geo_object(self, row) -> GeoObject:
        """Convert database row to GeoObject."""
        return GeoObject(
            id=row["id"],
            map_id=row["map_id"],
            side_id=row["side_id"],
            name=row["name"],
            description=row["description"],
            ttl=row["ttl"],
            icon_url=row["icon_url"],
            geometry=Geometry.from_dict(row["geometry"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"]
        )

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except (OSError, asyncpg.PostgresError) as e:
            self.logger.warning("PostgreSQL health check failed", error=str(e))
            return False
