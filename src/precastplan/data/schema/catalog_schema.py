from __future__ import annotations

import sqlite3


def ensure_schema(con: sqlite3.Connection) -> None:
    con.executescript(
        """
        CREATE TABLE IF NOT EXISTS core_audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp TEXT NOT NULL DEFAULT(datetime('now', 'localtime')),
            category TEXT NOT NULL,
            message TEXT NOT NULL,
            details TEXT
        );

        CREATE TABLE IF NOT EXISTS core_config (
            config_key TEXT PRIMARY KEY,
            config_value TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS mold (
            mold_id TEXT PRIMARY KEY,
            code TEXT NOT NULL,
            name TEXT,
            max_height_cm REAL NOT NULL,
            max_width_cm REAL NOT NULL,
            max_length_cm REAL NOT NULL,
            capacity INTEGER NOT NULL,
            setup_minutes INTEGER NOT NULL DEFAULT 0,
            is_available INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS work_order (
            work_order_id TEXT PRIMARY KEY,
            code TEXT,
            name TEXT,
            priority TEXT NOT NULL DEFAULT 'medium',
            urgency TEXT NOT NULL DEFAULT 'normal',
            urgency_marked_at TEXT,
            deadline TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS piece_request (
            request_id TEXT PRIMARY KEY,
            work_order_id TEXT NOT NULL,
            height_cm REAL NOT NULL,
            width_cm REAL NOT NULL,
            length_cm REAL NOT NULL,
            quantity INTEGER NOT NULL,
            unit_minutes REAL NOT NULL,
            priority TEXT NOT NULL DEFAULT 'medium',
            mold_id TEXT,
            notes TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(work_order_id) REFERENCES work_order(work_order_id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_piece_request_work_order ON piece_request(work_order_id);

        CREATE TABLE IF NOT EXISTS work_calendar (
            day TEXT PRIMARY KEY,
            is_holiday INTEGER NOT NULL DEFAULT 0,
            holiday_name TEXT,
            shift_start TEXT,
            shift_end TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );
        """
    )
