import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

import IG_Reels_Scraper.src.logger
from IG_Reels_Scraper.src.errors import StorageError
from IG_Reels_Scraper.src.models import CanonicalRecord

logger = logging.getLogger('IGRS.RecordStore')

RECORD_COLUMNS = [
    "id", "persona_id", "author_handle", "caption", "tags", "tag_provenance",
    "likes", "comments", "views", "media_type", "created_at", "screenshot_ref",
    "provenance", "extracted_at", "video_url", "thumbnail_url",
]


class RecordStore:
    """SQLite-backed persistence for extracted reels, one namespace per persona.

    save_record is idempotent per (persona, id): the first write wins and later
    writes report False without touching the stored row.
    """

    def __init__(self, db_file="progress_tracking/reels.db", persona_id: str = "default"):
        path_obj = Path(db_file)
        path_obj.parent.mkdir(parents=True, exist_ok=True)

        self.db_file = db_file
        self.persona_id = persona_id
        self.conn = None
        self._connect()
        self._create_tables()
        self._create_indexes()

    def _connect(self):
        try:
            self.conn = sqlite3.connect(self.db_file, check_same_thread=False)
            self.conn.execute("PRAGMA journal_mode = WAL")
            self.conn.execute("PRAGMA synchronous = NORMAL")
            logger.info(f"Connected to SQLite database: {self.db_file}")
        except sqlite3.Error as e:
            logger.error(f"Error connecting to database: {e}")
            raise StorageError(f"Cannot open {self.db_file}: {e}") from e

    def _create_tables(self):
        create_records_sql = """
        CREATE TABLE IF NOT EXISTS records (
            id TEXT NOT NULL,
            persona_id TEXT NOT NULL,
            author_handle TEXT,
            caption TEXT,
            tags TEXT,
            tag_provenance TEXT,
            likes INTEGER DEFAULT 0,
            comments INTEGER DEFAULT 0,
            views INTEGER DEFAULT 0,
            media_type TEXT,
            created_at TIMESTAMP,
            screenshot_ref TEXT,
            provenance TEXT,
            extracted_at TIMESTAMP,
            video_url TEXT,
            thumbnail_url TEXT,
            saved_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (persona_id, id)
        );
        """

        create_sessions_sql = """
        CREATE TABLE IF NOT EXISTS sessions (
            session_id INTEGER PRIMARY KEY AUTOINCREMENT,
            persona_id TEXT NOT NULL,
            started_at TIMESTAMP,
            finished_at TIMESTAMP,
            status TEXT,
            stop_reason TEXT,
            collected INTEGER DEFAULT 0,
            stats TEXT
        );
        """

        # Request metadata only; bodies are not kept
        create_traffic_sql = """
        CREATE TABLE IF NOT EXISTS raw_traffic (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            persona_id TEXT NOT NULL,
            url TEXT,
            method TEXT,
            content_type TEXT,
            size INTEGER,
            captured_at TIMESTAMP
        );
        """

        create_auxiliary_sql = """
        CREATE TABLE IF NOT EXISTS auxiliary_records (
            item_key TEXT NOT NULL,
            persona_id TEXT NOT NULL,
            payload TEXT,
            saved_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (persona_id, item_key)
        );
        """

        try:
            self.conn.execute(create_records_sql)
            self.conn.execute(create_sessions_sql)
            self.conn.execute(create_traffic_sql)
            self.conn.execute(create_auxiliary_sql)
            self.conn.commit()
            logger.info("Database tables created successfully")
        except sqlite3.Error as e:
            logger.error(f"Error creating tables: {e}")
            raise StorageError(str(e)) from e

    def _create_indexes(self):
        indexes = [
            "CREATE INDEX IF NOT EXISTS idx_records_extracted_at ON records(extracted_at)",
            "CREATE INDEX IF NOT EXISTS idx_records_author ON records(author_handle)",
            "CREATE INDEX IF NOT EXISTS idx_sessions_persona ON sessions(persona_id)",
        ]
        try:
            for index_sql in indexes:
                self.conn.execute(index_sql)
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Error creating indexes: {e}")
            raise StorageError(str(e)) from e

    # ========================================================================
    # RECORDS
    # ========================================================================

    def has_record(self, id: str) -> bool:
        try:
            cursor = self.conn.execute(
                "SELECT 1 FROM records WHERE persona_id = ? AND id = ?", (self.persona_id, id)
            )
            return cursor.fetchone() is not None
        except sqlite3.Error as e:
            logger.error(f"Error checking record {id}: {e}")
            raise StorageError(str(e)) from e

    def save_record(self, record: CanonicalRecord) -> bool:
        """Insert a record. Returns True only when a new row was written."""
        row = record.to_row()
        row["persona_id"] = self.persona_id
        row["tag_provenance"] = json.dumps(row["tag_provenance"])
        values = tuple(row[column] for column in RECORD_COLUMNS)
        placeholders = ", ".join("?" for _ in RECORD_COLUMNS)
        try:
            cursor = self.conn.execute(
                f"INSERT OR IGNORE INTO records ({', '.join(RECORD_COLUMNS)}) VALUES ({placeholders})",
                values,
            )
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Error saving record {record.id}: {e}")
            raise StorageError(str(e)) from e

        saved = cursor.rowcount == 1
        if not saved:
            logger.debug(f"Record {record.id} already stored for persona {self.persona_id}")
        return saved

    def get_record(self, id: str) -> Optional[Dict[str, Any]]:
        try:
            cursor = self.conn.execute(
                f"SELECT {', '.join(RECORD_COLUMNS)} FROM records WHERE persona_id = ? AND id = ?",
                (self.persona_id, id),
            )
            row = cursor.fetchone()
        except sqlite3.Error as e:
            logger.error(f"Error reading record {id}: {e}")
            raise StorageError(str(e)) from e
        if row is None:
            return None
        result = dict(zip(RECORD_COLUMNS, row))
        result["tag_provenance"] = json.loads(result["tag_provenance"] or "[]")
        return result

    def count_records(self) -> int:
        try:
            cursor = self.conn.execute("SELECT COUNT(*) FROM records WHERE persona_id = ?", (self.persona_id,))
            return cursor.fetchone()[0]
        except sqlite3.Error as e:
            logger.error(f"Error counting records: {e}")
            raise StorageError(str(e)) from e

    # ========================================================================
    # AUXILIARY DATA
    # ========================================================================

    def save_session(self, stats: Dict[str, Any]):
        try:
            self.conn.execute("""
                INSERT INTO sessions
                (persona_id, started_at, finished_at, status, stop_reason, collected, stats)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                self.persona_id,
                stats.get("started_at"),
                stats.get("finished_at"),
                stats.get("status"),
                stats.get("stop_reason"),
                stats.get("collected", 0),
                json.dumps(stats, default=str),
            ))
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Error saving session stats: {e}")
            raise StorageError(str(e)) from e

    def save_raw_traffic(self, meta: Dict[str, Any]):
        try:
            self.conn.execute("""
                INSERT INTO raw_traffic (persona_id, url, method, content_type, size, captured_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                self.persona_id,
                meta.get("url"),
                meta.get("method"),
                meta.get("content_type"),
                meta.get("size", 0),
                meta.get("captured_at") or datetime.now().isoformat(),
            ))
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Error saving traffic meta: {e}")
            raise StorageError(str(e)) from e

    def save_auxiliary_record(self, item: Dict[str, Any]):
        """Keep the raw item payload keyed by its shortcode (or pk) for later analysis."""
        key = item.get("code") or item.get("shortcode") or item.get("pk") or item.get("id")
        if key is None:
            return
        try:
            self.conn.execute(
                "INSERT OR REPLACE INTO auxiliary_records (item_key, persona_id, payload) VALUES (?, ?, ?)",
                (str(key), self.persona_id, json.dumps(item, default=str)),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Error saving auxiliary record {key}: {e}")
            raise StorageError(str(e)) from e

    def get_sessions(self) -> List[Dict[str, Any]]:
        try:
            cursor = self.conn.execute("""
                SELECT session_id, started_at, finished_at, status, stop_reason, collected, stats
                FROM sessions WHERE persona_id = ? ORDER BY session_id
            """, (self.persona_id,))
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            logger.error(f"Error reading sessions: {e}")
            raise StorageError(str(e)) from e
        return [
            {
                "session_id": row[0],
                "started_at": row[1],
                "finished_at": row[2],
                "status": row[3],
                "stop_reason": row[4],
                "collected": row[5],
                "stats": json.loads(row[6] or "{}"),
            }
            for row in rows
        ]

    # ========================================================================
    # EXPORT
    # ========================================================================

    def export_csv(self, csv_path: str) -> int:
        """Write this persona's records to CSV. Returns the number of rows written."""
        try:
            df = pd.read_sql_query(
                f"SELECT {', '.join(RECORD_COLUMNS)} FROM records WHERE persona_id = ? ORDER BY extracted_at",
                self.conn,
                params=(self.persona_id,),
            )
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            logger.error(f"Error exporting records: {e}")
            raise StorageError(str(e)) from e

        Path(csv_path).parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(csv_path, index=False, encoding='utf-8')
        logger.info(f"✓ Exported {len(df)} records to {csv_path}")
        return len(df)

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Database connection closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
