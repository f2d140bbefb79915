"""
Document store: SQLite with an FTS5 index over original name and extracted text.

One short-lived connection per call; the schema is created on connect.
Media rows hang off their document (ordered by position) and go away with it.
"""
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from app.models import Document, DocumentSummary, DocumentUpdate, MediaRecord, MediaType

SORT_FIELDS = {
    "createdAt": "d.created_at",
    "updatedAt": "d.updated_at",
    "originalName": "d.original_name",
    "fileName": "d.file_name",
    "size": "d.size",
}
DEFAULT_SORT_FIELD = "createdAt"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    file_name TEXT NOT NULL,
    original_name TEXT NOT NULL,
    file_path TEXT NOT NULL,
    content TEXT NOT NULL,
    text_content TEXT NOT NULL DEFAULT '',
    size INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS media (
    document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    position INTEGER NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('image', 'video', 'audio', 'other')),
    path TEXT NOT NULL,
    original_name TEXT NOT NULL,
    size INTEGER NOT NULL,
    PRIMARY KEY (document_id, position)
);
CREATE INDEX IF NOT EXISTS media_type_idx ON media(type);
CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts USING fts5(
    document_id UNINDEXED,
    original_name,
    text_content
);
"""

_SUMMARY_COLUMNS = (
    "d.id, d.file_name, d.original_name, d.file_path, d.size, d.created_at, d.updated_at"
)


def _get_conn(db_path: Path) -> sqlite3.Connection:
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.executescript(_SCHEMA)
    return conn


def _now() -> str:
    return _timestamp(datetime.now(timezone.utc))


def _timestamp(dt: datetime) -> str:
    """Aware UTC ISO-8601 with fixed microsecond precision, so strings sort as times."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_date_filter(value: str) -> str:
    """'2024-03-01' or a full ISO datetime -> stored timestamp format. Raises ValueError."""
    return _timestamp(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))


def _fts_query(search: str) -> str:
    """Each whitespace-separated term quoted and ORed, like a Mongo $text search."""
    terms = [t.replace('"', '""') for t in search.split() if any(c.isalnum() for c in t)]
    return " OR ".join(f'"{t}"' for t in terms)


def _order_by(sort_field: str, sort_order: str) -> str:
    column = SORT_FIELDS.get(sort_field, SORT_FIELDS[DEFAULT_SORT_FIELD])
    direction = "ASC" if sort_order == "asc" else "DESC"
    return f"{column} {direction}, d.id {direction}"


def _load_media(conn: sqlite3.Connection, document_ids: list[str]) -> dict[str, list[MediaRecord]]:
    media: dict[str, list[MediaRecord]] = {doc_id: [] for doc_id in document_ids}
    if not document_ids:
        return media
    placeholders = ", ".join("?" for _ in document_ids)
    rows = conn.execute(
        f"SELECT * FROM media WHERE document_id IN ({placeholders}) ORDER BY document_id, position",
        document_ids,
    )
    for row in rows:
        media[row["document_id"]].append(
            MediaRecord(
                type=MediaType(row["type"]),
                path=row["path"],
                original_name=row["original_name"],
                size=row["size"],
            )
        )
    return media


def _summaries(conn: sqlite3.Connection, rows: list[sqlite3.Row], with_text: bool = False) -> list[DocumentSummary]:
    media = _load_media(conn, [row["id"] for row in rows])
    out = []
    for row in rows:
        keys = row.keys()
        out.append(
            DocumentSummary(
                id=row["id"],
                file_name=row["file_name"],
                original_name=row["original_name"],
                file_path=row["file_path"],
                media=media[row["id"]],
                size=row["size"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                text_content=row["text_content"] if with_text and "text_content" in keys else None,
                score=row["score"] if "score" in keys else None,
            )
        )
    return out


def _fetch_document(conn: sqlite3.Connection, document_id: str) -> Optional[Document]:
    row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
    if row is None:
        return None
    return Document(
        id=row["id"],
        file_name=row["file_name"],
        original_name=row["original_name"],
        file_path=row["file_path"],
        content=row["content"],
        text_content=row["text_content"],
        media=_load_media(conn, [row["id"]])[row["id"]],
        size=row["size"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def create_document(
    db_path: Path,
    *,
    file_name: str,
    original_name: str,
    file_path: str,
    content: str,
    text_content: str,
    media: list[MediaRecord],
    size: int,
) -> Document:
    document_id = uuid.uuid4().hex
    now = _now()
    conn = _get_conn(db_path)
    try:
        with conn:
            conn.execute(
                """
                INSERT INTO documents
                    (id, file_name, original_name, file_path, content, text_content, size, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (document_id, file_name, original_name, file_path, content, text_content, size, now, now),
            )
            conn.executemany(
                "INSERT INTO media (document_id, position, type, path, original_name, size) VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (document_id, i, m.type.value, m.path, m.original_name, m.size)
                    for i, m in enumerate(media)
                ],
            )
            conn.execute(
                "INSERT INTO documents_fts (document_id, original_name, text_content) VALUES (?, ?, ?)",
                (document_id, original_name, text_content),
            )
        return _fetch_document(conn, document_id)
    finally:
        conn.close()


def get_document(db_path: Path, document_id: str) -> Optional[Document]:
    conn = _get_conn(db_path)
    try:
        return _fetch_document(conn, document_id)
    finally:
        conn.close()


def list_documents(
    db_path: Path,
    page: int = 1,
    limit: int = 10,
    sort_field: str = DEFAULT_SORT_FIELD,
    sort_order: str = "desc",
) -> tuple[list[DocumentSummary], int]:
    """Page of summaries (no content, no text) plus the total count."""
    conn = _get_conn(db_path)
    try:
        total = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
        rows = conn.execute(
            f"SELECT {_SUMMARY_COLUMNS} FROM documents d ORDER BY {_order_by(sort_field, sort_order)} LIMIT ? OFFSET ?",
            (limit, (page - 1) * limit),
        ).fetchall()
        return _summaries(conn, rows), total
    finally:
        conn.close()


def update_document(db_path: Path, document_id: str, patch: DocumentUpdate) -> Optional[Document]:
    changes = patch.model_dump(exclude_unset=True, exclude_none=True)
    conn = _get_conn(db_path)
    try:
        if _fetch_document(conn, document_id) is None:
            return None
        changes["updated_at"] = _now()
        assignments = ", ".join(f"{column} = ?" for column in changes)
        with conn:
            conn.execute(
                f"UPDATE documents SET {assignments} WHERE id = ?",
                (*changes.values(), document_id),
            )
            if "original_name" in changes or "text_content" in changes:
                conn.execute(
                    """
                    UPDATE documents_fts
                    SET original_name = (SELECT original_name FROM documents WHERE id = ?),
                        text_content = (SELECT text_content FROM documents WHERE id = ?)
                    WHERE document_id = ?
                    """,
                    (document_id, document_id, document_id),
                )
        return _fetch_document(conn, document_id)
    finally:
        conn.close()


def delete_document(db_path: Path, document_id: str) -> Optional[Document]:
    """Remove the record and its media rows. Returns what was deleted; files are the caller's."""
    conn = _get_conn(db_path)
    try:
        doc = _fetch_document(conn, document_id)
        if doc is None:
            return None
        with conn:
            conn.execute("DELETE FROM documents_fts WHERE document_id = ?", (document_id,))
            conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        return doc
    finally:
        conn.close()


def search_documents(
    db_path: Path,
    search: str | None = None,
    media_type: MediaType | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    sort_field: str = DEFAULT_SORT_FIELD,
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 10,
) -> tuple[list[DocumentSummary], int]:
    """
    Full-text search plus filters. Results carry text_content (never content);
    text searches also carry a relevance score (higher = better) and may be
    sorted by it with sort_field="relevance". Dates filter created_at inclusively.
    """
    where: list[str] = []
    params: list = []
    text_query = _fts_query(search) if search and search.strip() else ""
    if text_query:
        source = "documents d JOIN documents_fts ON documents_fts.document_id = d.id"
        columns = f"{_SUMMARY_COLUMNS}, d.text_content, -bm25(documents_fts) AS score"
        where.append("documents_fts MATCH ?")
        params.append(text_query)
    else:
        source = "documents d"
        columns = f"{_SUMMARY_COLUMNS}, d.text_content"
    if media_type is not None:
        where.append("EXISTS (SELECT 1 FROM media m WHERE m.document_id = d.id AND m.type = ?)")
        params.append(MediaType(media_type).value)
    if start_date:
        where.append("d.created_at >= ?")
        params.append(parse_date_filter(start_date))
    if end_date:
        where.append("d.created_at <= ?")
        params.append(parse_date_filter(end_date))

    where_sql = f" WHERE {' AND '.join(where)}" if where else ""
    if text_query and sort_field == "relevance":
        order_sql = "score DESC, d.id"
    else:
        order_sql = _order_by(sort_field, sort_order)

    conn = _get_conn(db_path)
    try:
        total = conn.execute(f"SELECT COUNT(*) FROM {source}{where_sql}", params).fetchone()[0]
        rows = conn.execute(
            f"SELECT {columns} FROM {source}{where_sql} ORDER BY {order_sql} LIMIT ? OFFSET ?",
            (*params, limit, (page - 1) * limit),
        ).fetchall()
        return _summaries(conn, rows, with_text=True), total
    finally:
        conn.close()


def suggest_names(db_path: Path, term: str, limit: int = 5) -> list[str]:
    """Autocomplete: distinct original names (extension stripped) containing term."""
    if not term or len(term.strip()) < 2:
        return []
    pattern = "%" + term.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
    conn = _get_conn(db_path)
    try:
        rows = conn.execute(
            """
            SELECT original_name FROM documents
            WHERE original_name LIKE ? ESCAPE '\\'
            ORDER BY created_at DESC
            LIMIT ?
            """,
            (pattern, limit),
        ).fetchall()
    finally:
        conn.close()
    suggestions: list[str] = []
    for row in rows:
        name = Path(row["original_name"]).stem
        if name not in suggestions:
            suggestions.append(name)
    return suggestions


def collect_stats(db_path: Path) -> dict:
    """Totals for the dashboard: documents, media per type, documents per month."""
    conn = _get_conn(db_path)
    try:
        total = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
        by_type = [
            {"type": row["type"], "count": row["count"]}
            for row in conn.execute(
                "SELECT type, COUNT(*) AS count FROM media GROUP BY type ORDER BY type"
            )
        ]
        by_month = [
            {"year": row["year"], "month": row["month"], "count": row["count"]}
            for row in conn.execute(
                """
                SELECT CAST(substr(created_at, 1, 4) AS INTEGER) AS year,
                       CAST(substr(created_at, 6, 2) AS INTEGER) AS month,
                       COUNT(*) AS count
                FROM documents
                GROUP BY year, month
                ORDER BY year, month
                """
            )
        ]
        return {"totalFiles": total, "filesByMediaType": by_type, "filesByDate": by_month}
    finally:
        conn.close()


def ping(db_path: Path) -> bool:
    conn = _get_conn(db_path)
    try:
        conn.execute("SELECT 1").fetchone()
        return True
    finally:
        conn.close()

