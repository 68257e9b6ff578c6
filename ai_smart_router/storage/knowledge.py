"""
Knowledge base persistence.

Durable store behind the semantic cache: answered questions with their
embeddings, usage counters and quality scores, plus the cache-miss log.
"""

import json
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from .db import DEFAULT_DB_PATH, get_connection
from .models import CacheEntry, CacheMiss

_ENTRY_COLUMNS = """
    id, question, answer, question_embedding, category, quality_score,
    use_count, created_at, last_used_at, language, original_model,
    original_cost, created_by_user_id
"""


def _row_to_entry(row) -> CacheEntry:
    return CacheEntry(
        id=row[0],
        question=row[1],
        answer=row[2],
        embedding=json.loads(row[3]),
        category=row[4],
        quality_score=row[5],
        use_count=row[6],
        created_at=datetime.fromisoformat(row[7]),
        last_used_at=datetime.fromisoformat(row[8]) if row[8] else None,
        language=row[9],
        original_model=row[10],
        original_cost=row[11],
        created_by_user_id=row[12]
    )


def insert_knowledge_entry(entry: CacheEntry, db_path: str = DEFAULT_DB_PATH) -> None:
    """Persist a new knowledge entry; the embedding is stored as JSON."""
    conn = get_connection(db_path)
    try:
        conn.execute(f"""
            INSERT INTO knowledge_entry ({_ENTRY_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            entry.id,
            entry.question,
            entry.answer,
            json.dumps(entry.embedding),
            entry.category,
            entry.quality_score,
            entry.use_count,
            entry.created_at.isoformat(),
            entry.last_used_at.isoformat() if entry.last_used_at else None,
            entry.language,
            entry.original_model,
            entry.original_cost,
            entry.created_by_user_id
        ))
        conn.commit()
    finally:
        conn.close()


def load_top_entries(limit: int, db_path: str = DEFAULT_DB_PATH) -> List[CacheEntry]:
    """Most reused, then highest quality entries, truncated to `limit`."""
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(f"""
            SELECT {_ENTRY_COLUMNS} FROM knowledge_entry
            ORDER BY use_count DESC, quality_score DESC
            LIMIT ?
        """, (limit,))
        return [_row_to_entry(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def get_knowledge_entry(entry_id: str, db_path: str = DEFAULT_DB_PATH) -> Optional[CacheEntry]:
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(
            f"SELECT {_ENTRY_COLUMNS} FROM knowledge_entry WHERE id = ?",
            (entry_id,)
        )
        row = cursor.fetchone()
        return _row_to_entry(row) if row else None
    finally:
        conn.close()


def list_entry_ids(db_path: str = DEFAULT_DB_PATH) -> List[str]:
    conn = get_connection(db_path)
    try:
        cursor = conn.execute("SELECT id FROM knowledge_entry ORDER BY created_at")
        return [row[0] for row in cursor.fetchall()]
    finally:
        conn.close()


def record_entry_hit(
    entry_id: str,
    used_at: Optional[datetime] = None,
    db_path: str = DEFAULT_DB_PATH
) -> bool:
    """Increment the use count and refresh the last-used time.

    Returns:
        True if the entry exists
    """
    used_at = used_at or datetime.now()
    conn = get_connection(db_path)
    try:
        cursor = conn.execute("""
            UPDATE knowledge_entry
            SET use_count = use_count + 1, last_used_at = ?
            WHERE id = ?
        """, (used_at.isoformat(), entry_id))
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


def adjust_quality_score(
    entry_id: str,
    delta: float,
    db_path: str = DEFAULT_DB_PATH
) -> Optional[float]:
    """Add `delta` to the quality score, clamped to [0, 1].

    Returns:
        The new score, or None if the entry doesn't exist
    """
    conn = get_connection(db_path)
    try:
        cursor = conn.execute("""
            UPDATE knowledge_entry
            SET quality_score = MAX(0.0, MIN(1.0, quality_score + ?))
            WHERE id = ?
        """, (delta, entry_id))
        conn.commit()
        if cursor.rowcount == 0:
            return None
        row = conn.execute(
            "SELECT quality_score FROM knowledge_entry WHERE id = ?", (entry_id,)
        ).fetchone()
        return row[0]
    finally:
        conn.close()


def set_quality_score(entry_id: str, score: float, db_path: str = DEFAULT_DB_PATH) -> None:
    """Overwrite the quality score, clamped to [0, 1]."""
    score = max(0.0, min(1.0, score))
    conn = get_connection(db_path)
    try:
        conn.execute(
            "UPDATE knowledge_entry SET quality_score = ? WHERE id = ?",
            (score, entry_id)
        )
        conn.commit()
    finally:
        conn.close()


def fetch_qualifying_entries(
    min_quality: float,
    min_use_count: int,
    categories: Optional[Sequence[str]] = None,
    limit: int = 10000,
    db_path: str = DEFAULT_DB_PATH
) -> List[CacheEntry]:
    """Entries good enough for fine-tuning, best first.

    Args:
        min_quality: Minimum quality score (inclusive)
        min_use_count: Minimum reuse count (inclusive)
        categories: Optional category filter
        limit: Maximum number of entries
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        query = f"""
            SELECT {_ENTRY_COLUMNS} FROM knowledge_entry
            WHERE quality_score >= ? AND use_count >= ?
        """
        params: list = [min_quality, min_use_count]

        if categories:
            placeholders = ", ".join("?" for _ in categories)
            query += f" AND category IN ({placeholders})"
            params.extend(categories)

        query += " ORDER BY quality_score DESC, use_count DESC LIMIT ?"
        params.append(limit)

        cursor = conn.execute(query, params)
        return [_row_to_entry(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def category_statistics(db_path: str = DEFAULT_DB_PATH) -> List[Dict]:
    """Per-category entry count, average reuse and average quality."""
    conn = get_connection(db_path)
    try:
        cursor = conn.execute("""
            SELECT category, COUNT(*), AVG(use_count), AVG(quality_score)
            FROM knowledge_entry
            GROUP BY category
            ORDER BY AVG(use_count) ASC
        """)
        return [
            {
                "category": row[0],
                "total_entries": row[1],
                "avg_use": float(row[2] or 0),
                "avg_quality": float(row[3] or 0),
            }
            for row in cursor.fetchall()
        ]
    finally:
        conn.close()


def knowledge_totals(db_path: str = DEFAULT_DB_PATH) -> Dict[str, float]:
    conn = get_connection(db_path)
    try:
        row = conn.execute("""
            SELECT COUNT(*), SUM(use_count), AVG(quality_score), SUM(original_cost)
            FROM knowledge_entry
        """).fetchone()
        return {
            "total_entries": row[0] or 0,
            "total_reuses": row[1] or 0,
            "avg_quality": float(row[2] or 0),
            "total_original_cost": float(row[3] or 0),
        }
    finally:
        conn.close()


def fetch_entries_ranked(
    order_by: str = "use_count",
    limit: int = 10,
    db_path: str = DEFAULT_DB_PATH
) -> List[CacheEntry]:
    """Top entries by `use_count` or most recent by `created_at`."""
    if order_by not in ("use_count", "created_at"):
        raise ValueError(f"Cannot rank entries by {order_by}")
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(f"""
            SELECT {_ENTRY_COLUMNS} FROM knowledge_entry
            ORDER BY {order_by} DESC LIMIT ?
        """, (limit,))
        return [_row_to_entry(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def find_stale_entries(
    created_before: datetime,
    max_quality: float,
    max_use_count: int = 2,
    db_path: str = DEFAULT_DB_PATH
) -> List[CacheEntry]:
    """Low-quality, rarely used entries created before a cutoff."""
    conn = get_connection(db_path)
    try:
        cursor = conn.execute(f"""
            SELECT {_ENTRY_COLUMNS} FROM knowledge_entry
            WHERE quality_score < ? AND use_count < ? AND created_at < ?
            ORDER BY created_at
        """, (max_quality, max_use_count, created_before.isoformat()))
        return [_row_to_entry(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def delete_entries(entry_ids: Sequence[str], db_path: str = DEFAULT_DB_PATH) -> int:
    """Delete entries by id in one transaction, returning the number removed."""
    if not entry_ids:
        return 0
    conn = get_connection(db_path)
    try:
        placeholders = ", ".join("?" for _ in entry_ids)
        cursor = conn.execute(
            f"DELETE FROM knowledge_entry WHERE id IN ({placeholders})",
            list(entry_ids)
        )
        conn.commit()
        return cursor.rowcount
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def insert_cache_miss(miss: CacheMiss, db_path: str = DEFAULT_DB_PATH) -> None:
    conn = get_connection(db_path)
    try:
        conn.execute("""
            INSERT INTO cache_miss (question, best_similarity, created_at)
            VALUES (?, ?, ?)
        """, (miss.question, miss.best_similarity, miss.created_at.isoformat()))
        conn.commit()
    finally:
        conn.close()


def fetch_recent_cache_misses(limit: int = 100, db_path: str = DEFAULT_DB_PATH) -> List[CacheMiss]:
    conn = get_connection(db_path)
    try:
        cursor = conn.execute("""
            SELECT question, best_similarity, created_at FROM cache_miss
            ORDER BY id DESC LIMIT ?
        """, (limit,))
        return [
            CacheMiss(
                question=row[0],
                best_similarity=row[1],
                created_at=datetime.fromisoformat(row[2])
            )
            for row in cursor.fetchall()
        ]
    finally:
        conn.close()
