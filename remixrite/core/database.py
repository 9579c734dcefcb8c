import psycopg2
import structlog
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Dict, List, Optional

from psycopg2 import extras
from psycopg2.pool import ThreadedConnectionPool

from remixrite import config
from remixrite.core.errors import PersistenceError
from remixrite.core.utils import new_id
from remixrite.models.clip import Clip
from remixrite.models.remix import DistributionDraft, Remix, RemixDraft, RoyaltyDistribution

logger = structlog.get_logger()

REMIX_COLUMNS = """
    id, creator_id, original_clip_ids, output_url, ledger_tx_hash, ledger_asset_id,
    title, content_hash, tags, fee, created_at
"""

CLIP_COLUMNS = """
    id, title, source_url, metadata, owner_address, ledger_asset_id, license_terms, created_at
"""

DISTRIBUTION_COLUMNS = "id, remix_id, clip_id, owner_address, amount, timestamp"

class Database:
    """
    Owns the connection pool shared by the Postgres-backed stores.

    Store calls run on worker threads, so the pool must be the thread-safe one.
    """

    def __init__(self, dsn: str = config.DB_DSN,
                 min_connections: int = config.DB_MIN_CONNECTIONS,
                 max_connections: int = config.DB_MAX_CONNECTIONS):
        self.dsn = dsn
        self.min_connections = min_connections
        self.max_connections = max_connections
        self._pool = None

    def initialize(self):
        """Initialize the connection pool."""
        if self._pool is not None:
            return
        try:
            self._pool = ThreadedConnectionPool(self.min_connections, self.max_connections, self.dsn)
            logger.info("Database connection pool initialized",
                       min_connections=self.min_connections,
                       max_connections=self.max_connections)
        except psycopg2.Error as e:
            logger.error("Failed to initialize database connection pool", error=str(e))
            raise PersistenceError(f"Database unavailable: {e}") from e

    @contextmanager
    def connection(self):
        """Context manager for pooled connections with rollback on failure."""
        if self._pool is None:
            self.initialize()

        conn = None
        try:
            conn = self._pool.getconn()
            yield conn
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error("Database operation failed", error=str(e))
            raise
        finally:
            if conn:
                self._pool.putconn(conn)

    def check_connection(self) -> bool:
        try:
            with self.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    cur.fetchone()
            return True
        except Exception as e:
            logger.error("Database connection check failed", error=str(e))
            return False

    def close(self):
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("Database connection pool closed")

def _clip_from_row(row: Dict[str, Any]) -> Clip:
    return Clip(**dict(row))

def _remix_from_row(row: Dict[str, Any]) -> Remix:
    data = dict(row)
    data["original_clip_ids"] = list(data.get("original_clip_ids") or [])
    data["tags"] = data.get("tags") or []
    return Remix(**data)

def _distribution_from_row(row: Dict[str, Any]) -> RoyaltyDistribution:
    return RoyaltyDistribution(**dict(row))

class PostgresContentStore:
    """Clip lookups and remix listings against Postgres."""

    def __init__(self, database: Database):
        self.database = database

    def _fetch(self, sql: str, params: tuple, operation: str, **log_context) -> List[Dict[str, Any]]:
        try:
            with self.database.connection() as conn:
                with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                    cur.execute(sql, params)
                    return cur.fetchall()
        except psycopg2.Error as e:
            logger.error(f"Failed to {operation}", error=str(e), **log_context)
            raise PersistenceError(f"Failed to {operation}: {e}") from e

    def find(self, clip_id: str) -> Optional[Clip]:
        """Get a clip by ID."""
        rows = self._fetch(f"SELECT {CLIP_COLUMNS} FROM clips WHERE id = %s",
                           (clip_id,), "get clip", clip_id=clip_id)
        return _clip_from_row(rows[0]) if rows else None

    def search(self, query: Optional[str] = None, kind: Optional[str] = None, limit: int = 50) -> List[Clip]:
        """Search clips by title or artist, optionally filtered by media kind."""
        sql = f"SELECT {CLIP_COLUMNS} FROM clips WHERE 1 = 1"
        params: List[Any] = []

        if query:
            sql += " AND (title ILIKE %s OR metadata->>'artist' ILIKE %s)"
            pattern = f"%{query}%"
            params.extend([pattern, pattern])

        if kind:
            sql += " AND metadata->>'kind' = %s"
            params.append(kind)

        sql += " ORDER BY created_at DESC LIMIT %s"
        params.append(limit)

        rows = self._fetch(sql, tuple(params), "search clips", query=query, kind=kind)
        return [_clip_from_row(row) for row in rows]

    def insert_clip(self, clip: Clip) -> Clip:
        sql = f"""
        INSERT INTO clips (id, title, source_url, metadata, owner_address, ledger_asset_id, license_terms)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING {CLIP_COLUMNS}
        """
        license_terms = clip.license_terms.model_dump(mode="json") if clip.license_terms else None
        try:
            with self.database.connection() as conn:
                with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                    cur.execute(sql, (
                        clip.id, clip.title, clip.source_url,
                        extras.Json(clip.metadata.model_dump(mode="json")),
                        clip.owner_address, clip.ledger_asset_id,
                        extras.Json(license_terms) if license_terms else None,
                    ))
                    row = cur.fetchone()
                    conn.commit()

            logger.info("Clip record inserted", clip_id=clip.id, ledger_asset_id=clip.ledger_asset_id)
            return _clip_from_row(row)

        except psycopg2.Error as e:
            logger.error("Failed to insert clip record", clip_id=clip.id, error=str(e))
            raise PersistenceError(f"Failed to insert clip: {e}") from e

    def list_by_creator(self, creator_id: str) -> List[Remix]:
        rows = self._fetch(
            f"SELECT {REMIX_COLUMNS} FROM remixes WHERE creator_id = %s ORDER BY created_at DESC",
            (creator_id,), "list remixes by creator", creator_id=creator_id)
        return [_remix_from_row(row) for row in rows]

    def list_all(self) -> List[Remix]:
        rows = self._fetch(f"SELECT {REMIX_COLUMNS} FROM remixes ORDER BY created_at DESC",
                           (), "list remixes")
        return [_remix_from_row(row) for row in rows]

    def get_remix(self, remix_id: str) -> Optional[Remix]:
        rows = self._fetch(f"SELECT {REMIX_COLUMNS} FROM remixes WHERE id = %s",
                           (remix_id,), "get remix", remix_id=remix_id)
        return _remix_from_row(rows[0]) if rows else None

class PostgresSettlementStore:
    """
    Remix and royalty distribution writes.

    Both inserts are idempotent: remixes by id, distributions by
    (remix_id, clip_id). Re-running a settlement returns the existing rows.
    """

    def __init__(self, database: Database):
        self.database = database

    def insert_remix(self, draft: RemixDraft) -> Remix:
        insert_sql = f"""
        INSERT INTO remixes (
            id, creator_id, original_clip_ids, output_url, ledger_tx_hash,
            ledger_asset_id, title, content_hash, tags, fee
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (id) DO NOTHING
        RETURNING {REMIX_COLUMNS}
        """
        try:
            with self.database.connection() as conn:
                with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                    cur.execute(insert_sql, (
                        draft.id, draft.creator_id, draft.original_clip_ids, draft.output_url,
                        draft.ledger_tx_hash, draft.ledger_asset_id, draft.title,
                        draft.content_hash, extras.Json(draft.tags), draft.fee,
                    ))
                    row = cur.fetchone()
                    if row is None:
                        cur.execute(f"SELECT {REMIX_COLUMNS} FROM remixes WHERE id = %s", (draft.id,))
                        row = cur.fetchone()
                    conn.commit()

            logger.info("Remix record inserted", remix_id=draft.id, creator_id=draft.creator_id)
            return _remix_from_row(row)

        except psycopg2.Error as e:
            logger.error("Failed to insert remix record", remix_id=draft.id, error=str(e))
            raise PersistenceError(f"Failed to insert remix: {e}") from e

    def insert_distribution(self, row: DistributionDraft) -> RoyaltyDistribution:
        insert_sql = f"""
        INSERT INTO royalty_distributions (id, remix_id, clip_id, owner_address, amount)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (remix_id, clip_id) DO NOTHING
        RETURNING {DISTRIBUTION_COLUMNS}
        """
        try:
            with self.database.connection() as conn:
                with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                    cur.execute(insert_sql, (new_id(), row.remix_id, row.clip_id, row.owner_address, row.amount))
                    result = cur.fetchone()
                    if result is None:
                        cur.execute(
                            f"SELECT {DISTRIBUTION_COLUMNS} FROM royalty_distributions "
                            "WHERE remix_id = %s AND clip_id = %s",
                            (row.remix_id, row.clip_id))
                        result = cur.fetchone()
                    conn.commit()

            logger.debug("Royalty distribution inserted",
                        remix_id=row.remix_id, clip_id=row.clip_id, amount=str(row.amount))
            return _distribution_from_row(result)

        except psycopg2.Error as e:
            logger.error("Failed to insert royalty distribution",
                        remix_id=row.remix_id, clip_id=row.clip_id, error=str(e))
            raise PersistenceError(f"Failed to insert royalty distribution: {e}") from e

    def distributions_for(self, remix_id: str) -> List[RoyaltyDistribution]:
        return self._select(
            f"SELECT {DISTRIBUTION_COLUMNS} FROM royalty_distributions WHERE remix_id = %s ORDER BY timestamp",
            (remix_id,), remix_id=remix_id)

    def distributions_for_owner(self, owner_address: str) -> List[RoyaltyDistribution]:
        return self._select(
            f"SELECT {DISTRIBUTION_COLUMNS} FROM royalty_distributions "
            "WHERE lower(owner_address) = lower(%s) ORDER BY timestamp DESC",
            (owner_address,), owner_address=owner_address)

    def _select(self, sql: str, params: tuple, **log_context) -> List[RoyaltyDistribution]:
        try:
            with self.database.connection() as conn:
                with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                    cur.execute(sql, params)
                    rows = cur.fetchall()
            return [_distribution_from_row(row) for row in rows]
        except psycopg2.Error as e:
            logger.error("Failed to get royalty distributions", error=str(e), **log_context)
            raise PersistenceError(f"Failed to get royalty distributions: {e}") from e

def get_database_stats(database: Database) -> Dict[str, Any]:
    """Row counts and fee totals for the health/stats endpoints."""
    sql = """
    SELECT
        (SELECT COUNT(*) FROM clips) AS clips,
        (SELECT COUNT(*) FROM remixes) AS remixes,
        (SELECT COUNT(*) FROM royalty_distributions) AS distributions,
        (SELECT COALESCE(SUM(amount), 0) FROM royalty_distributions) AS distributed_total
    """
    try:
        with database.connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql)
                row = dict(cur.fetchone())
        row["distributed_total"] = str(Decimal(row["distributed_total"]))
        return row
    except psycopg2.Error as e:
        logger.error("Failed to get database stats", error=str(e))
        return {"error": str(e)}
