from __future__ import annotations

import sqlite3


def ensure_schema(con: sqlite3.Connection) -> None:
    # schedule_batch is rewritten whole by every reschedule; no FK to the catalog tables.
    con.executescript(
        """
        CREATE TABLE IF NOT EXISTS schedule_run (
            run_id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_timestamp TEXT NOT NULL,
            asof TEXT NOT NULL,
            status TEXT NOT NULL,
            batch_count INTEGER NOT NULL DEFAULT 0,
            skipped_requests INTEGER NOT NULL DEFAULT 0,
            failures_json TEXT
        );

        CREATE TABLE IF NOT EXISTS schedule_batch (
            batch_id TEXT PRIMARY KEY,
            run_id INTEGER NOT NULL,
            request_id TEXT NOT NULL,
            work_order_id TEXT NOT NULL,
            mold_id TEXT NOT NULL,
            height_cm REAL NOT NULL,
            width_cm REAL NOT NULL,
            length_cm REAL NOT NULL,
            quantity INTEGER NOT NULL,
            unit_minutes REAL NOT NULL,
            split_index INTEGER NOT NULL,
            start_at TEXT NOT NULL,
            end_at TEXT NOT NULL,
            setup_applied INTEGER NOT NULL DEFAULT 0,
            setup_minutes INTEGER NOT NULL DEFAULT 0,
            delay_minutes INTEGER NOT NULL DEFAULT 0,
            sequence INTEGER NOT NULL,
            predecessor_id TEXT,
            queue_position INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'scheduled',
            FOREIGN KEY(run_id) REFERENCES schedule_run(run_id)
        );

        CREATE INDEX IF NOT EXISTS idx_schedule_batch_mold ON schedule_batch(mold_id, sequence);
        """
    )
