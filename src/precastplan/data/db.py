from __future__ import annotations


from contextlib import contextmanager
import sqlite3
from pathlib import Path

from precastplan.data.schema import ensure_catalog_schema, ensure_schedule_schema


class Db:
    def __init__(self, path: Path):
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connect(self):
        con = sqlite3.connect(self.path, timeout=20.0)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA foreign_keys=ON;")
        try:
            yield con
            con.commit()
        except Exception:
            con.rollback()
            raise
        finally:
            con.close()

    def ensure_schema(self) -> None:
        con = sqlite3.connect(self.path, timeout=10.0)
        try:
            con.execute("PRAGMA journal_mode=WAL;")
            con.execute("PRAGMA foreign_keys=ON;")

            ensure_catalog_schema(con)
            ensure_schedule_schema(con)

            # work_order v2: urgency marking timestamp (orders pass-to-front prepends)
            if self._table_exists(con, "work_order"):
                cols = [r[1] for r in con.execute("PRAGMA table_info(work_order)").fetchall()]
                if "urgency_marked_at" not in cols:
                    con.execute("ALTER TABLE work_order ADD COLUMN urgency_marked_at TEXT")

            con.commit()
        finally:
            con.close()

    def _table_exists(self, con: sqlite3.Connection, table_name: str) -> bool:
        """Check if a table exists in the database."""
        row = con.execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?",
            (table_name,),
        ).fetchone()
        return row is not None
