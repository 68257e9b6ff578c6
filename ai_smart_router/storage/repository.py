"""
Repository pattern for data access.

Handles schema creation and the cost ledger tables: per-request cost
records and per-day aggregates.
"""

from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import CostRecord, DailyAggregate

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS knowledge_entry (
        id TEXT PRIMARY KEY,
        question TEXT NOT NULL,
        answer TEXT NOT NULL,
        question_embedding TEXT NOT NULL,
        category TEXT NOT NULL,
        quality_score REAL NOT NULL DEFAULT 0.5,
        use_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        last_used_at TEXT,
        language TEXT NOT NULL DEFAULT 'en',
        original_model TEXT,
        original_cost REAL NOT NULL DEFAULT 0,
        created_by_user_id TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_knowledge_entry_ranking
    ON knowledge_entry (use_count DESC, quality_score DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS cache_miss (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        question TEXT NOT NULL,
        best_similarity REAL NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cost_record (
        id TEXT PRIMARY KEY,
        user_id TEXT,
        request_type TEXT NOT NULL,
        provider TEXT NOT NULL,
        model TEXT NOT NULL,
        input_tokens INTEGER NOT NULL,
        output_tokens INTEGER NOT NULL,
        cost REAL NOT NULL,
        price REAL NOT NULL,
        margin REAL NOT NULL,
        margin_percent REAL NOT NULL,
        from_cache INTEGER NOT NULL DEFAULT 0,
        cache_entry_id TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cost_daily_aggregate (
        date TEXT PRIMARY KEY,
        total_requests INTEGER NOT NULL DEFAULT 0,
        total_cost REAL NOT NULL DEFAULT 0,
        total_revenue REAL NOT NULL DEFAULT 0,
        total_margin REAL NOT NULL DEFAULT 0,
        cache_hits INTEGER NOT NULL DEFAULT 0,
        cache_misses INTEGER NOT NULL DEFAULT 0,
        cache_savings REAL NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS cost_daily_provider (
        date TEXT NOT NULL,
        provider TEXT NOT NULL,
        cost REAL NOT NULL DEFAULT 0,
        PRIMARY KEY (date, provider)
    )
    """,
]

_COST_RECORD_COLUMNS = """
    id, user_id, request_type, provider, model, input_tokens, output_tokens,
    cost, price, margin, margin_percent, from_cache, cache_entry_id, created_at
"""


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create every table used by the router if it doesn't exist.

    cost_record is an append-only ledger: no UPDATE or DELETE is ever
    performed on it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        for statement in _SCHEMA:
            conn.execute(statement)
        conn.commit()
    finally:
        conn.close()


def record_cost(
    record: CostRecord,
    cache_savings: float = 0.0,
    db_path: str = DEFAULT_DB_PATH
) -> None:
    """Insert a cost record and fold it into the daily aggregates.

    The record, the day row and the per-provider row are written in one
    transaction. Both aggregate writes are single INSERT ... ON CONFLICT DO
    UPDATE statements, so concurrent writers landing on the same date add
    to the same row instead of racing to create it.

    Args:
        record: The cost record to append
        cache_savings: Provider cost avoided by answering from cache
        db_path: Path to SQLite database file
    """
    day = record.created_at.date().isoformat()
    conn = get_connection(db_path)
    try:
        conn.execute(f"""
            INSERT INTO cost_record ({_COST_RECORD_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            record.id,
            record.user_id,
            record.request_type,
            record.provider,
            record.model,
            record.input_tokens,
            record.output_tokens,
            record.cost,
            record.price,
            record.margin,
            record.margin_percent,
            int(record.from_cache),
            record.cache_entry_id,
            record.created_at.isoformat()
        ))
        conn.execute("""
            INSERT INTO cost_daily_aggregate (
                date, total_requests, total_cost, total_revenue, total_margin,
                cache_hits, cache_misses, cache_savings
            ) VALUES (?, 1, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(date) DO UPDATE SET
                total_requests = total_requests + 1,
                total_cost = total_cost + excluded.total_cost,
                total_revenue = total_revenue + excluded.total_revenue,
                total_margin = total_margin + excluded.total_margin,
                cache_hits = cache_hits + excluded.cache_hits,
                cache_misses = cache_misses + excluded.cache_misses,
                cache_savings = cache_savings + excluded.cache_savings
        """, (
            day,
            record.cost,
            record.price,
            record.margin,
            1 if record.from_cache else 0,
            0 if record.from_cache else 1,
            cache_savings
        ))
        conn.execute("""
            INSERT INTO cost_daily_provider (date, provider, cost)
            VALUES (?, ?, ?)
            ON CONFLICT(date, provider) DO UPDATE SET
                cost = cost + excluded.cost
        """, (day, record.provider, record.cost))
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _row_to_cost_record(row) -> CostRecord:
    return CostRecord(
        id=row[0],
        user_id=row[1],
        request_type=row[2],
        provider=row[3],
        model=row[4],
        input_tokens=row[5],
        output_tokens=row[6],
        cost=row[7],
        price=row[8],
        margin=row[9],
        margin_percent=row[10],
        from_cache=bool(row[11]),
        cache_entry_id=row[12],
        created_at=datetime.fromisoformat(row[13])
    )


def fetch_recent_cost_records(
    user_id: Optional[str] = None,
    provider: Optional[str] = None,
    limit: int = 100,
    db_path: str = DEFAULT_DB_PATH
) -> List[CostRecord]:
    """Fetch recent cost records, optionally filtered by user and provider.

    Args:
        user_id: Optional filter for a specific user
        provider: Optional filter for a specific provider
        limit: Maximum number of records to return
        db_path: Path to SQLite database file

    Returns:
        List of cost records ordered by creation time (newest first)
    """
    conn = get_connection(db_path)
    try:
        query = f"SELECT {_COST_RECORD_COLUMNS} FROM cost_record"
        params = []
        conditions = []

        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)
        if provider:
            conditions.append("provider = ?")
            params.append(provider)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        cursor = conn.execute(query, params)
        return [_row_to_cost_record(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def _provider_costs(conn, since: str, until: str) -> Dict[str, float]:
    cursor = conn.execute("""
        SELECT provider, SUM(cost) FROM cost_daily_provider
        WHERE date >= ? AND date <= ?
        GROUP BY provider
    """, (since, until))
    return {row[0]: float(row[1] or 0) for row in cursor.fetchall()}


def get_daily_aggregate(
    day: date,
    db_path: str = DEFAULT_DB_PATH
) -> Optional[DailyAggregate]:
    """Get the aggregate row for one day, None if nothing was recorded."""
    conn = get_connection(db_path)
    try:
        cursor = conn.execute("""
            SELECT date, total_requests, total_cost, total_revenue, total_margin,
                   cache_hits, cache_misses, cache_savings
            FROM cost_daily_aggregate WHERE date = ?
        """, (day.isoformat(),))
        row = cursor.fetchone()
        if row is None:
            return None
        return DailyAggregate(
            date=date.fromisoformat(row[0]),
            total_requests=row[1],
            total_cost=row[2],
            total_revenue=row[3],
            total_margin=row[4],
            cache_hits=row[5],
            cache_misses=row[6],
            cache_savings=row[7],
            provider_costs=_provider_costs(conn, row[0], row[0])
        )
    finally:
        conn.close()


def summarize_daily_aggregates(
    days: int = 30,
    today: Optional[date] = None,
    db_path: str = DEFAULT_DB_PATH
) -> DailyAggregate:
    """Sum the daily aggregates over the last `days` days (today included).

    Args:
        days: Number of days to include
        today: Last day of the window (defaults to the current date)
        db_path: Path to SQLite database file

    Returns:
        A DailyAggregate whose date is the last day of the window
    """
    today = today or date.today()
    since = (today - timedelta(days=days - 1)).isoformat()
    until = today.isoformat()

    conn = get_connection(db_path)
    try:
        cursor = conn.execute("""
            SELECT
                SUM(total_requests), SUM(total_cost), SUM(total_revenue),
                SUM(total_margin), SUM(cache_hits), SUM(cache_misses),
                SUM(cache_savings)
            FROM cost_daily_aggregate
            WHERE date >= ? AND date <= ?
        """, (since, until))
        row = cursor.fetchone()
        return DailyAggregate(
            date=today,
            total_requests=row[0] or 0,
            total_cost=float(row[1] or 0),
            total_revenue=float(row[2] or 0),
            total_margin=float(row[3] or 0),
            cache_hits=row[4] or 0,
            cache_misses=row[5] or 0,
            cache_savings=float(row[6] or 0),
            provider_costs=_provider_costs(conn, since, until)
        )
    finally:
        conn.close()
