from __future__ import annotations

import json
import logging
from datetime import date, datetime, time

from precastplan.core.models import (
    AuditEntry,
    Batch,
    DayOverride,
    Mold,
    PieceRequest,
    WorkOrder,
    format_urgency,
    parse_priority,
    parse_urgency,
)
from precastplan.data.db import Db
from precastplan.data.excel_io import (
    coerce_date,
    coerce_float,
    coerce_time,
    is_blank,
    normalize_columns,
    parse_int_strict,
    read_excel_bytes,
    to_bool_or_none,
    to_int01,
    to_str_or_none,
)
from precastplan.scheduler.calendar import (
    DEFAULT_MAX_SCAN_DAYS,
    DEFAULT_SHIFT_END,
    DEFAULT_SHIFT_START,
    WorkCalendar,
    parse_hhmm,
    parse_weekend_days,
)

logger = logging.getLogger(__name__)


# Header aliases seen in plant exports (Portuguese/Spanish) -> canonical column.
_MOLD_ALIASES = {
    "id": "mold_id",
    "forma_id": "mold_id",
    "codigo": "code",
    "nome": "name",
    "nombre": "name",
    "altura": "max_height",
    "altura_cm": "max_height",
    "max_height_cm": "max_height",
    "largura": "max_width",
    "largura_cm": "max_width",
    "ancho": "max_width",
    "max_width_cm": "max_width",
    "comprimento": "max_length",
    "comprimento_cm": "max_length",
    "largo": "max_length",
    "max_length_cm": "max_length",
    "capacidade": "capacity",
    "capacidad": "capacity",
    "setup": "setup_minutes",
    "setup_min": "setup_minutes",
    "disponivel": "is_available",
    "disponible": "is_available",
}

_WORK_ORDER_ALIASES = {
    "id": "work_order_id",
    "obra_id": "work_order_id",
    "codigo": "code",
    "nome": "name",
    "nombre": "name",
    "prioridade": "priority",
    "prioridad": "priority",
    "urgencia": "urgency",
    "prazo": "deadline",
    "data_entrega": "deadline",
    "fecha_entrega": "deadline",
    "ativo": "is_active",
    "activo": "is_active",
}

_PIECE_REQUEST_ALIASES = {
    "id": "request_id",
    "obra_id": "work_order_id",
    "altura": "height",
    "altura_cm": "height",
    "height_cm": "height",
    "largura": "width",
    "largura_cm": "width",
    "ancho": "width",
    "width_cm": "width",
    "comprimento": "length",
    "comprimento_cm": "length",
    "largo": "length",
    "length_cm": "length",
    "quantidade": "quantity",
    "cantidad": "quantity",
    "tempo_unitario_minutos": "unit_minutes",
    "tempo_unitario": "unit_minutes",
    "minutos_unidad": "unit_minutes",
    "prioridade": "priority",
    "prioridad": "priority",
    "forma_id": "mold_id",
    "observacoes": "notes",
    "notas": "notes",
}

_CALENDAR_ALIASES = {
    "data": "day",
    "date": "day",
    "fecha": "day",
    "eh_feriado": "is_holiday",
    "holiday": "is_holiday",
    "feriado": "is_holiday",
    "nome_feriado": "name",
    "holiday_name": "name",
    "turno_inicio": "shift_start",
    "turno_fim": "shift_end",
}


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value) -> datetime | None:
    if value is None or str(value).strip() == "":
        return None
    return datetime.fromisoformat(str(value))


def _parse_day(value) -> date | None:
    if value is None or str(value).strip() == "":
        return None
    return date.fromisoformat(str(value)[:10])


def _parse_time_or_none(value) -> time | None:
    if value is None or str(value).strip() == "":
        return None
    return parse_hhmm(value, field="shift")


class Repository:
    def __init__(self, db: Db):
        self.db = db

    # ---------- Audit ----------
    def log_audit(self, category: str, message: str, details: str | None = None) -> None:
        """Record a business event in the audit log."""
        try:
            with self.db.connect() as con:
                con.execute(
                    "INSERT INTO core_audit_log (category, message, details) VALUES (?, ?, ?)",
                    (category, message, details),
                )
        except Exception:
            # An audit failure never fails the operation being audited.
            logger.exception("Failed to write audit log entry (%s: %s)", category, message)

    def get_recent_audit_entries(self, limit: int = 100) -> list[AuditEntry]:
        with self.db.connect() as con:
            rows = con.execute(
                "SELECT * FROM core_audit_log ORDER BY id DESC LIMIT ?", (int(limit),)
            ).fetchall()
        return [
            AuditEntry(
                id=row["id"],
                timestamp=row["timestamp"],
                category=row["category"],
                message=row["message"],
                details=row["details"],
            )
            for row in rows
        ]

    # ---------- Config ----------
    def get_config(self, *, key: str, default: str | None = None) -> str | None:
        key = str(key).strip()
        if not key:
            raise ValueError("config key empty")
        with self.db.connect() as con:
            row = con.execute("SELECT config_value FROM core_config WHERE config_key = ?", (key,)).fetchone()
        if row is None:
            return default
        return str(row[0])

    def get_config_int(self, *, key: str, default: int) -> int:
        raw = self.get_config(key=key, default=None)
        if raw is None or not str(raw).strip():
            return int(default)
        try:
            return int(float(raw))
        except ValueError:
            logger.warning("Config %s=%r is not an integer; using %s", key, raw, default)
            return int(default)

    def set_config(self, *, key: str, value: str) -> None:
        key = str(key).strip()
        if not key:
            raise ValueError("config key empty")

        with self.db.connect() as con:
            old_val_row = con.execute("SELECT config_value FROM core_config WHERE config_key = ?", (key,)).fetchone()
            old_val = old_val_row[0] if old_val_row else "(none)"
            con.execute(
                "INSERT INTO core_config(config_key, config_value) VALUES(?, ?) "
                "ON CONFLICT(config_key) DO UPDATE SET config_value=excluded.config_value, updated_at=CURRENT_TIMESTAMP",
                (key, str(value)),
            )

        self.log_audit("CONFIG", f"Updated '{key}'", f"From '{old_val}' to '{value}'")

    # ---------- Molds ----------
    def upsert_mold(
        self,
        *,
        mold_id: str,
        code: str,
        max_height: float,
        max_width: float,
        max_length: float,
        capacity: int,
        setup_minutes: int = 0,
        is_available: bool = True,
        name: str | None = None,
    ) -> None:
        mold_id = str(mold_id or "").strip()
        if not mold_id:
            raise ValueError("mold_id empty")
        code = str(code or "").strip() or mold_id
        for field, value in (("max_height", max_height), ("max_width", max_width), ("max_length", max_length)):
            if value is None or float(value) <= 0:
                raise ValueError(f"{field} must be > 0 (mold {mold_id})")
        if capacity is None or int(capacity) < 0:
            raise ValueError(f"capacity must be >= 0 (mold {mold_id})")
        if setup_minutes is None or int(setup_minutes) < 0:
            raise ValueError(f"setup_minutes must be >= 0 (mold {mold_id})")

        with self.db.connect() as con:
            con.execute(
                """
                INSERT INTO mold(mold_id, code, name, max_height_cm, max_width_cm, max_length_cm, capacity, setup_minutes, is_available)
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(mold_id) DO UPDATE SET
                    code=excluded.code,
                    name=excluded.name,
                    max_height_cm=excluded.max_height_cm,
                    max_width_cm=excluded.max_width_cm,
                    max_length_cm=excluded.max_length_cm,
                    capacity=excluded.capacity,
                    setup_minutes=excluded.setup_minutes,
                    is_available=excluded.is_available,
                    updated_at=CURRENT_TIMESTAMP
                """.strip(),
                (
                    mold_id,
                    code,
                    (str(name).strip() or None) if name is not None else None,
                    float(max_height),
                    float(max_width),
                    float(max_length),
                    int(capacity),
                    int(setup_minutes),
                    1 if is_available else 0,
                ),
            )

    def set_mold_availability(self, *, mold_id: str, is_available: bool) -> None:
        with self.db.connect() as con:
            cur = con.execute(
                "UPDATE mold SET is_available = ?, updated_at = CURRENT_TIMESTAMP WHERE mold_id = ?",
                (1 if is_available else 0, str(mold_id)),
            )
            if cur.rowcount == 0:
                raise ValueError(f"unknown mold: {mold_id!r}")
        self.log_audit("CATALOG", "Mold availability", f"Mold: {mold_id}, available: {bool(is_available)}")

    def delete_mold(self, *, mold_id: str) -> None:
        with self.db.connect() as con:
            con.execute("DELETE FROM mold WHERE mold_id = ?", (str(mold_id),))
        self.log_audit("CATALOG", "Delete Mold", f"Mold: {mold_id}")

    def get_molds_rows(self) -> list[dict]:
        with self.db.connect() as con:
            rows = con.execute(
                """
                SELECT mold_id, code, name, max_height_cm, max_width_cm, max_length_cm, capacity, setup_minutes, is_available
                FROM mold
                ORDER BY code, mold_id
                """.strip()
            ).fetchall()
        return [
            {
                "mold_id": r["mold_id"],
                "code": r["code"],
                "name": r["name"],
                "max_height": float(r["max_height_cm"]),
                "max_width": float(r["max_width_cm"]),
                "max_length": float(r["max_length_cm"]),
                "capacity": int(r["capacity"]),
                "setup_minutes": int(r["setup_minutes"] or 0),
                "is_available": bool(int(r["is_available"] or 0)),
            }
            for r in rows
        ]

    def get_molds_model(self) -> list[Mold]:
        """All molds, available or not (the packer filters on availability)."""
        return [Mold(**row) for row in self.get_molds_rows()]

    # ---------- Work orders ----------
    def upsert_work_order(
        self,
        *,
        work_order_id: str,
        priority: str = "medium",
        urgency: str | None = None,
        deadline: date | str | None = None,
        code: str | None = None,
        name: str | None = None,
        is_active: bool = True,
    ) -> None:
        """Create or update a work order.

        `urgency_marked_at` is stamped whenever the stored urgency tag changes.
        """
        work_order_id = str(work_order_id or "").strip()
        if not work_order_id:
            raise ValueError("work_order_id empty")
        priority = parse_priority(priority)
        urgency_tag = format_urgency(parse_urgency(urgency))
        deadline_iso = coerce_date(deadline, field="deadline").isoformat() if not is_blank(deadline) else None

        with self.db.connect() as con:
            row = con.execute(
                "SELECT urgency, urgency_marked_at FROM work_order WHERE work_order_id = ?",
                (work_order_id,),
            ).fetchone()
            if row is None:
                marked_at = datetime.now().isoformat() if urgency_tag != "normal" else None
            elif row["urgency"] != urgency_tag:
                marked_at = datetime.now().isoformat()
            else:
                marked_at = row["urgency_marked_at"]

            con.execute(
                """
                INSERT INTO work_order(work_order_id, code, name, priority, urgency, urgency_marked_at, deadline, is_active)
                VALUES(?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(work_order_id) DO UPDATE SET
                    code=excluded.code,
                    name=excluded.name,
                    priority=excluded.priority,
                    urgency=excluded.urgency,
                    urgency_marked_at=excluded.urgency_marked_at,
                    deadline=excluded.deadline,
                    is_active=excluded.is_active,
                    updated_at=CURRENT_TIMESTAMP
                """.strip(),
                (
                    work_order_id,
                    (str(code).strip() or None) if code is not None else None,
                    (str(name).strip() or None) if name is not None else None,
                    priority,
                    urgency_tag,
                    marked_at,
                    deadline_iso,
                    1 if is_active else 0,
                ),
            )

    def set_work_order_urgency(
        self,
        *,
        work_order_id: str,
        urgency: str | None,
        marked_at: datetime | None = None,
    ) -> None:
        """Set the urgency directive of a work order and stamp when it was set."""
        urgency_tag = format_urgency(parse_urgency(urgency))
        stamp = (marked_at or datetime.now()).isoformat()
        with self.db.connect() as con:
            cur = con.execute(
                "UPDATE work_order SET urgency = ?, urgency_marked_at = ?, updated_at = CURRENT_TIMESTAMP WHERE work_order_id = ?",
                (urgency_tag, stamp, str(work_order_id)),
            )
            if cur.rowcount == 0:
                raise ValueError(f"unknown work order: {work_order_id!r}")
        self.log_audit("URGENCY", "Set urgency", f"Work order: {work_order_id}, urgency: {urgency_tag}")

    def delete_work_order(self, *, work_order_id: str) -> None:
        with self.db.connect() as con:
            con.execute("DELETE FROM work_order WHERE work_order_id = ?", (str(work_order_id),))
        self.log_audit("CATALOG", "Delete Work Order", f"Work order: {work_order_id}")

    def get_work_orders_rows(self) -> list[dict]:
        with self.db.connect() as con:
            rows = con.execute(
                """
                SELECT work_order_id, code, name, priority, urgency, urgency_marked_at, deadline, is_active
                FROM work_order
                ORDER BY work_order_id
                """.strip()
            ).fetchall()
        return [
            {
                "work_order_id": r["work_order_id"],
                "code": r["code"],
                "name": r["name"],
                "priority": r["priority"],
                "urgency": r["urgency"],
                "urgency_marked_at": r["urgency_marked_at"],
                "deadline": r["deadline"],
                "is_active": bool(int(r["is_active"] or 0)),
            }
            for r in rows
        ]

    def get_work_orders_model(self, *, active_only: bool = True) -> list[WorkOrder]:
        out: list[WorkOrder] = []
        for r in self.get_work_orders_rows():
            if active_only and not r["is_active"]:
                continue
            out.append(
                WorkOrder(
                    work_order_id=r["work_order_id"],
                    code=r["code"],
                    name=r["name"],
                    priority=parse_priority(r["priority"]),
                    urgency=parse_urgency(r["urgency"]),
                    urgency_marked_at=_parse_dt(r["urgency_marked_at"]),
                    deadline=_parse_day(r["deadline"]),
                    is_active=r["is_active"],
                )
            )
        return out

    # ---------- Piece requests ----------
    def upsert_piece_request(
        self,
        *,
        request_id: str,
        work_order_id: str,
        height: float,
        width: float,
        length: float,
        quantity: int,
        unit_minutes: float,
        priority: str = "medium",
        mold_id: str | None = None,
        notes: str | None = None,
    ) -> None:
        request_id = str(request_id or "").strip()
        if not request_id:
            raise ValueError("request_id empty")
        work_order_id = str(work_order_id or "").strip()
        if not work_order_id:
            raise ValueError(f"work_order_id empty (request {request_id})")
        for field, value in (("height", height), ("width", width), ("length", length)):
            if value is None or float(value) <= 0:
                raise ValueError(f"{field} must be > 0 (request {request_id})")
        if quantity is None or int(quantity) <= 0:
            raise ValueError(f"quantity must be > 0 (request {request_id})")
        if unit_minutes is None or float(unit_minutes) < 0:
            raise ValueError(f"unit_minutes must be >= 0 (request {request_id})")
        priority = parse_priority(priority)
        pinned = str(mold_id).strip() if mold_id is not None else ""

        with self.db.connect() as con:
            exists = con.execute(
                "SELECT 1 FROM work_order WHERE work_order_id = ?", (work_order_id,)
            ).fetchone()
            if exists is None:
                raise ValueError(f"unknown work order {work_order_id!r} (request {request_id})")
            con.execute(
                """
                INSERT INTO piece_request(request_id, work_order_id, height_cm, width_cm, length_cm, quantity, unit_minutes, priority, mold_id, notes)
                VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(request_id) DO UPDATE SET
                    work_order_id=excluded.work_order_id,
                    height_cm=excluded.height_cm,
                    width_cm=excluded.width_cm,
                    length_cm=excluded.length_cm,
                    quantity=excluded.quantity,
                    unit_minutes=excluded.unit_minutes,
                    priority=excluded.priority,
                    mold_id=excluded.mold_id,
                    notes=excluded.notes,
                    updated_at=CURRENT_TIMESTAMP
                """.strip(),
                (
                    request_id,
                    work_order_id,
                    float(height),
                    float(width),
                    float(length),
                    int(quantity),
                    float(unit_minutes),
                    priority,
                    pinned or None,
                    (str(notes).strip() or None) if notes is not None else None,
                ),
            )

    def delete_piece_request(self, *, request_id: str) -> None:
        with self.db.connect() as con:
            con.execute("DELETE FROM piece_request WHERE request_id = ?", (str(request_id),))
        self.log_audit("CATALOG", "Delete Piece Request", f"Request: {request_id}")

    def get_piece_requests_rows(self) -> list[dict]:
        with self.db.connect() as con:
            rows = con.execute(
                """
                SELECT request_id, work_order_id, height_cm, width_cm, length_cm, quantity, unit_minutes, priority, mold_id, notes
                FROM piece_request
                ORDER BY work_order_id, request_id
                """.strip()
            ).fetchall()
        return [
            {
                "request_id": r["request_id"],
                "work_order_id": r["work_order_id"],
                "height": float(r["height_cm"]),
                "width": float(r["width_cm"]),
                "length": float(r["length_cm"]),
                "quantity": int(r["quantity"]),
                "unit_minutes": float(r["unit_minutes"]),
                "priority": r["priority"],
                "mold_id": r["mold_id"],
                "notes": r["notes"],
            }
            for r in rows
        ]

    def get_piece_requests_model(self) -> list[PieceRequest]:
        return [PieceRequest(**row) for row in self.get_piece_requests_rows()]

    # ---------- Calendar ----------
    def upsert_calendar_day(
        self,
        *,
        day: date | str,
        is_holiday: bool = False,
        shift_start: time | str | None = None,
        shift_end: time | str | None = None,
        name: str | None = None,
    ) -> None:
        d = coerce_date(day, field="day")
        start = _parse_time_or_none(shift_start)
        end = _parse_time_or_none(shift_end)
        if start is not None and end is not None and end <= start:
            raise ValueError(f"shift_end must be after shift_start ({d.isoformat()})")
        with self.db.connect() as con:
            con.execute(
                """
                INSERT INTO work_calendar(day, is_holiday, holiday_name, shift_start, shift_end)
                VALUES(?, ?, ?, ?, ?)
                ON CONFLICT(day) DO UPDATE SET
                    is_holiday=excluded.is_holiday,
                    holiday_name=excluded.holiday_name,
                    shift_start=excluded.shift_start,
                    shift_end=excluded.shift_end
                """.strip(),
                (
                    d.isoformat(),
                    1 if is_holiday else 0,
                    (str(name).strip() or None) if name is not None else None,
                    start.strftime("%H:%M") if start else None,
                    end.strftime("%H:%M") if end else None,
                ),
            )

    def delete_calendar_day(self, *, day: date | str) -> None:
        d = coerce_date(day, field="day")
        with self.db.connect() as con:
            con.execute("DELETE FROM work_calendar WHERE day = ?", (d.isoformat(),))

    def get_calendar_rows(self) -> list[dict]:
        with self.db.connect() as con:
            rows = con.execute(
                "SELECT day, is_holiday, holiday_name, shift_start, shift_end FROM work_calendar ORDER BY day"
            ).fetchall()
        return [
            {
                "day": r["day"],
                "is_holiday": bool(int(r["is_holiday"] or 0)),
                "name": r["holiday_name"],
                "shift_start": r["shift_start"],
                "shift_end": r["shift_end"],
            }
            for r in rows
        ]

    def get_work_calendar(self) -> WorkCalendar:
        """Build the plant calendar from config defaults plus per-date overrides."""
        shift_start = parse_hhmm(
            self.get_config(key="calendar_shift_start", default=DEFAULT_SHIFT_START.strftime("%H:%M")),
            field="calendar_shift_start",
        )
        shift_end = parse_hhmm(
            self.get_config(key="calendar_shift_end", default=DEFAULT_SHIFT_END.strftime("%H:%M")),
            field="calendar_shift_end",
        )
        weekend_days = parse_weekend_days(self.get_config(key="calendar_weekend_days", default="5,6"))
        max_scan_days = self.get_config_int(key="calendar_max_scan_days", default=DEFAULT_MAX_SCAN_DAYS)

        overrides: dict[date, DayOverride] = {}
        for r in self.get_calendar_rows():
            d = date.fromisoformat(r["day"])
            overrides[d] = DayOverride(
                day=d,
                is_holiday=r["is_holiday"],
                shift_start=_parse_time_or_none(r["shift_start"]),
                shift_end=_parse_time_or_none(r["shift_end"]),
                name=r["name"],
            )
        return WorkCalendar(
            shift_start=shift_start,
            shift_end=shift_end,
            weekend_days=weekend_days,
            overrides=overrides,
            max_scan_days=max_scan_days,
        )

    # ---------- Committed schedule ----------
    @staticmethod
    def _batch_from_row(r) -> Batch:
        return Batch(
            batch_id=r["batch_id"],
            request_id=r["request_id"],
            work_order_id=r["work_order_id"],
            mold_id=r["mold_id"],
            height=float(r["height_cm"]),
            width=float(r["width_cm"]),
            length=float(r["length_cm"]),
            quantity=int(r["quantity"]),
            unit_minutes=float(r["unit_minutes"]),
            split_index=int(r["split_index"]),
            start=_parse_dt(r["start_at"]),
            end=_parse_dt(r["end_at"]),
            setup_applied=bool(int(r["setup_applied"] or 0)),
            setup_minutes=int(r["setup_minutes"] or 0),
            delay_minutes=int(r["delay_minutes"] or 0),
            sequence=int(r["sequence"]),
            predecessor_id=r["predecessor_id"],
            queue_position=int(r["queue_position"]),
            status=str(r["status"]),
        )

    def get_batches_model(self) -> list[Batch]:
        """Committed batches ordered by mold chain."""
        with self.db.connect() as con:
            rows = con.execute("SELECT * FROM schedule_batch ORDER BY mold_id, sequence").fetchall()
        return [self._batch_from_row(r) for r in rows]

    def replace_schedule(self, *, batches: list[Batch], asof: datetime, failures: list[dict]) -> int:
        """Discard the committed schedule and store `batches` as the new one.

        Delete, insert and run record happen in one transaction; returns the run id.
        """
        skipped_requests = len({f.get("request_id") for f in failures if f.get("request_id")})
        keep = max(1, self.get_config_int(key="schedule_run_history", default=20))
        with self.db.connect() as con:
            cur = con.execute(
                """
                INSERT INTO schedule_run(run_timestamp, asof, status, batch_count, skipped_requests, failures_json)
                VALUES(?, ?, ?, ?, ?, ?)
                """.strip(),
                (
                    datetime.now().isoformat(),
                    asof.isoformat(),
                    "partial" if failures else "ok",
                    len(batches),
                    skipped_requests,
                    json.dumps(failures, ensure_ascii=False),
                ),
            )
            run_id = int(cur.lastrowid)
            con.execute("DELETE FROM schedule_batch")
            con.executemany(
                """
                INSERT INTO schedule_batch(
                    batch_id, run_id, request_id, work_order_id, mold_id,
                    height_cm, width_cm, length_cm, quantity, unit_minutes, split_index,
                    start_at, end_at, setup_applied, setup_minutes, delay_minutes,
                    sequence, predecessor_id, queue_position, status
                ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """.strip(),
                [
                    (
                        b.batch_id,
                        run_id,
                        b.request_id,
                        b.work_order_id,
                        b.mold_id,
                        float(b.height),
                        float(b.width),
                        float(b.length),
                        int(b.quantity),
                        float(b.unit_minutes),
                        int(b.split_index),
                        _iso(b.start),
                        _iso(b.end),
                        1 if b.setup_applied else 0,
                        int(b.setup_minutes),
                        int(b.delay_minutes),
                        int(b.sequence or 0),
                        b.predecessor_id,
                        int(b.queue_position or 0),
                        b.status,
                    )
                    for b in batches
                ],
            )

            con.execute(
                """
                DELETE FROM schedule_run
                WHERE run_id NOT IN (SELECT run_id FROM schedule_run ORDER BY run_id DESC LIMIT ?)
                  AND run_id NOT IN (SELECT DISTINCT run_id FROM schedule_batch)
                """.strip(),
                (keep,),
            )
        return run_id

    def update_batches(self, batches: list[Batch]) -> None:
        """Persist time/delay/status changes of already committed batches (one transaction)."""
        with self.db.connect() as con:
            con.executemany(
                """
                UPDATE schedule_batch
                SET start_at = ?, end_at = ?, delay_minutes = ?, status = ?
                WHERE batch_id = ?
                """.strip(),
                [(_iso(b.start), _iso(b.end), int(b.delay_minutes), b.status, b.batch_id) for b in batches],
            )

    @staticmethod
    def _run_from_row(r) -> dict:
        return {
            "run_id": int(r["run_id"]),
            "run_timestamp": r["run_timestamp"],
            "asof": r["asof"],
            "status": r["status"],
            "batch_count": int(r["batch_count"]),
            "skipped_requests": int(r["skipped_requests"]),
            "failures": json.loads(r["failures_json"] or "[]"),
        }

    def get_last_run(self) -> dict | None:
        with self.db.connect() as con:
            row = con.execute("SELECT * FROM schedule_run ORDER BY run_id DESC LIMIT 1").fetchone()
        return self._run_from_row(row) if row is not None else None

    def get_runs(self, *, limit: int = 20) -> list[dict]:
        with self.db.connect() as con:
            rows = con.execute("SELECT * FROM schedule_run ORDER BY run_id DESC LIMIT ?", (int(limit),)).fetchall()
        return [self._run_from_row(r) for r in rows]

    # ---------- Excel imports ----------
    def import_excel_bytes(self, *, kind: str, content: bytes) -> int:
        """Import one catalog sheet. Returns the number of rows stored."""
        size_kb = len(content) / 1024
        self.log_audit("DATA_LOAD", f"Importing {kind.upper()}", f"Size: {size_kb:.1f} KB")

        k = str(kind or "").strip().lower()
        if k in {"molds", "mold", "formas"}:
            return self.import_molds_bytes(content=content)
        if k in {"work_orders", "work_order", "obras"}:
            return self.import_work_orders_bytes(content=content)
        if k in {"piece_requests", "piece_request", "pieces", "pecas"}:
            return self.import_piece_requests_bytes(content=content)
        if k in {"calendar", "work_calendar", "calendario"}:
            return self.import_calendar_bytes(content=content)

        raise ValueError(f"unsupported kind: {kind}")

    @staticmethod
    def _validate_columns(columns, required: set[str]) -> None:
        cols = {str(c).strip() for c in columns}
        missing = sorted(required - cols)
        if missing:
            raise ValueError(f"Missing columns: {missing}. Detected columns: {sorted(cols)}")

    @staticmethod
    def _read_sheet(content: bytes, aliases: dict[str, str]):
        df = normalize_columns(read_excel_bytes(content))
        renames = {c: aliases[c] for c in df.columns if c in aliases and aliases[c] not in df.columns}
        return df.rename(columns=renames)

    def import_molds_bytes(self, *, content: bytes) -> int:
        df = self._read_sheet(content, _MOLD_ALIASES)
        self._validate_columns(df.columns, {"mold_id", "max_height", "max_width", "max_length", "capacity"})

        count = 0
        for idx, r in df.iterrows():
            mold_id = to_str_or_none(r.get("mold_id"))
            if not mold_id:
                continue
            line = f"row {int(idx) + 2}"
            available = to_bool_or_none(r.get("is_available"))
            self.upsert_mold(
                mold_id=mold_id,
                code=to_str_or_none(r.get("code")) or mold_id,
                name=to_str_or_none(r.get("name")),
                max_height=self._required_float(r.get("max_height"), field=f"max_height ({line})"),
                max_width=self._required_float(r.get("max_width"), field=f"max_width ({line})"),
                max_length=self._required_float(r.get("max_length"), field=f"max_length ({line})"),
                capacity=parse_int_strict(r.get("capacity"), field=f"capacity ({line})"),
                setup_minutes=(
                    0 if is_blank(r.get("setup_minutes"))
                    else parse_int_strict(r.get("setup_minutes"), field=f"setup_minutes ({line})")
                ),
                is_available=True if available is None else available,
            )
            count += 1
        self.log_audit("DATA_LOAD", "Molds imported", f"Rows: {count}")
        return count

    def import_work_orders_bytes(self, *, content: bytes) -> int:
        df = self._read_sheet(content, _WORK_ORDER_ALIASES)
        self._validate_columns(df.columns, {"work_order_id"})

        count = 0
        for _, r in df.iterrows():
            work_order_id = to_str_or_none(r.get("work_order_id"))
            if not work_order_id:
                continue
            active = to_bool_or_none(r.get("is_active"))
            self.upsert_work_order(
                work_order_id=work_order_id,
                code=to_str_or_none(r.get("code")),
                name=to_str_or_none(r.get("name")),
                priority=to_str_or_none(r.get("priority")) or "medium",
                urgency=to_str_or_none(r.get("urgency")),
                deadline=None if is_blank(r.get("deadline")) else coerce_date(r.get("deadline"), field="deadline"),
                is_active=True if active is None else active,
            )
            count += 1
        self.log_audit("DATA_LOAD", "Work orders imported", f"Rows: {count}")
        return count

    def import_piece_requests_bytes(self, *, content: bytes) -> int:
        df = self._read_sheet(content, _PIECE_REQUEST_ALIASES)
        self._validate_columns(
            df.columns, {"request_id", "work_order_id", "height", "width", "length", "quantity", "unit_minutes"}
        )

        count = 0
        for idx, r in df.iterrows():
            request_id = to_str_or_none(r.get("request_id"))
            if not request_id:
                continue
            line = f"row {int(idx) + 2}"
            self.upsert_piece_request(
                request_id=request_id,
                work_order_id=to_str_or_none(r.get("work_order_id")) or "",
                height=self._required_float(r.get("height"), field=f"height ({line})"),
                width=self._required_float(r.get("width"), field=f"width ({line})"),
                length=self._required_float(r.get("length"), field=f"length ({line})"),
                quantity=parse_int_strict(r.get("quantity"), field=f"quantity ({line})"),
                unit_minutes=self._required_float(r.get("unit_minutes"), field=f"unit_minutes ({line})"),
                priority=to_str_or_none(r.get("priority")) or "medium",
                mold_id=to_str_or_none(r.get("mold_id")),
                notes=to_str_or_none(r.get("notes")),
            )
            count += 1
        self.log_audit("DATA_LOAD", "Piece requests imported", f"Rows: {count}")
        return count

    def import_calendar_bytes(self, *, content: bytes) -> int:
        df = self._read_sheet(content, _CALENDAR_ALIASES)
        self._validate_columns(df.columns, {"day"})

        count = 0
        for idx, r in df.iterrows():
            if is_blank(r.get("day")):
                continue
            line = f"row {int(idx) + 2}"
            self.upsert_calendar_day(
                day=coerce_date(r.get("day"), field=f"day ({line})"),
                is_holiday=bool(to_int01(r.get("is_holiday"))),
                shift_start=coerce_time(r.get("shift_start"), field=f"shift_start ({line})"),
                shift_end=coerce_time(r.get("shift_end"), field=f"shift_end ({line})"),
                name=to_str_or_none(r.get("name")),
            )
            count += 1
        self.log_audit("DATA_LOAD", "Calendar imported", f"Rows: {count}")
        return count

    @staticmethod
    def _required_float(value, *, field: str) -> float:
        f = coerce_float(value)
        if f is None:
            raise ValueError(f"{field} empty or invalid: {value!r}")
        return f
