import io
import sqlite3
from datetime import date, datetime, time
from pathlib import Path

import pandas as pd
import pytest

from fixtures_plant import seed_plant
from precastplan.core.models import Batch, InsertAfterResource, Normal, PassToFront
from precastplan.data.db import Db
from precastplan.data.repository import Repository


def make_excel_bytes(data: dict) -> bytes:
    """Create a minimal Excel file from a column->values dict."""
    bio = io.BytesIO()
    pd.DataFrame(data).to_excel(bio, index=False)
    bio.seek(0)
    return bio.read()


@pytest.fixture()
def repo(tmp_path) -> Repository:
    db = Db(Path(tmp_path) / "test.db")
    db.ensure_schema()
    return Repository(db)


def _batch(batch_id, *, mold_id="M1", sequence=1):
    return Batch(
        batch_id=batch_id,
        request_id="R-1",
        work_order_id="WO-1",
        mold_id=mold_id,
        height=50,
        width=30,
        length=150,
        quantity=2,
        unit_minutes=45,
        split_index=sequence,
        start=datetime(2026, 3, 2, 7, 0),
        end=datetime(2026, 3, 2, 8, 30),
        sequence=sequence,
        queue_position=sequence,
    )


def test_config_roundtrip_is_audited(repo):
    assert repo.get_config(key="calendar_shift_start", default="07:00") == "07:00"

    repo.set_config(key="calendar_shift_start", value="06:30")

    assert repo.get_config(key="calendar_shift_start") == "06:30"
    entries = repo.get_recent_audit_entries(limit=5)
    assert entries[0].category == "CONFIG"
    assert "calendar_shift_start" in entries[0].message


def test_config_int_falls_back_on_garbage(repo):
    repo.set_config(key="schedule_run_history", value="lots")
    assert repo.get_config_int(key="schedule_run_history", default=20) == 20


def test_audit_failure_does_not_raise(repo, monkeypatch):
    def broken_connect():
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(repo.db, "connect", broken_connect)
    repo.log_audit("SCHEDULE", "Reschedule")


def test_mold_crud_and_availability(repo):
    repo.upsert_mold(mold_id="M1", code="F-01", max_height=60, max_width=40, max_length=400, capacity=4)
    repo.upsert_mold(mold_id="M1", code="F-01b", max_height=60, max_width=40, max_length=450, capacity=4, setup_minutes=15)

    molds = repo.get_molds_model()
    assert len(molds) == 1
    assert molds[0].code == "F-01b"
    assert molds[0].max_length == 450
    assert molds[0].setup_minutes == 15

    repo.set_mold_availability(mold_id="M1", is_available=False)
    assert repo.get_molds_model()[0].is_available is False

    with pytest.raises(ValueError):
        repo.set_mold_availability(mold_id="nope", is_available=True)

    repo.delete_mold(mold_id="M1")
    assert repo.get_molds_model() == []


@pytest.mark.parametrize(
    "overrides",
    [{"max_height": 0}, {"capacity": -1}, {"setup_minutes": -5}, {"mold_id": " "}],
)
def test_mold_validation(repo, overrides):
    kwargs = dict(mold_id="M1", code="F-01", max_height=60, max_width=40, max_length=400, capacity=4)
    kwargs.update(overrides)
    with pytest.raises(ValueError):
        repo.upsert_mold(**kwargs)


def test_work_order_urgency_is_stamped(repo):
    repo.upsert_work_order(work_order_id="WO-1", priority="High")
    wo = repo.get_work_orders_model()[0]
    assert wo.priority == "high"
    assert wo.urgency == Normal()
    assert wo.urgency_marked_at is None

    marked = datetime(2026, 3, 2, 9, 15)
    repo.set_work_order_urgency(work_order_id="WO-1", urgency="passa_frente", marked_at=marked)

    wo = repo.get_work_orders_model()[0]
    assert wo.urgency == PassToFront()
    assert wo.urgency_marked_at == marked
    assert repo.get_work_orders_rows()[0]["urgency"] == "pass-to-front"

    # Same tag again keeps the original stamp.
    repo.upsert_work_order(work_order_id="WO-1", priority="high", urgency="pass-to-front")
    assert repo.get_work_orders_model()[0].urgency_marked_at == marked

    with pytest.raises(ValueError):
        repo.set_work_order_urgency(work_order_id="WO-404", urgency="normal")


def test_work_order_rejects_unknown_priority_and_urgency(repo):
    with pytest.raises(ValueError):
        repo.upsert_work_order(work_order_id="WO-1", priority="asap")
    with pytest.raises(ValueError):
        repo.upsert_work_order(work_order_id="WO-1", urgency="whenever")


def test_inactive_work_orders_are_filtered(repo):
    repo.upsert_work_order(work_order_id="WO-1")
    repo.upsert_work_order(work_order_id="WO-2", is_active=False)

    assert [wo.work_order_id for wo in repo.get_work_orders_model()] == ["WO-1"]
    assert len(repo.get_work_orders_model(active_only=False)) == 2


def test_piece_request_requires_existing_work_order(repo):
    with pytest.raises(ValueError):
        repo.upsert_piece_request(
            request_id="R-1", work_order_id="WO-404", height=50, width=30, length=150, quantity=2, unit_minutes=30
        )


def test_piece_request_validation(repo):
    repo.upsert_work_order(work_order_id="WO-1")
    with pytest.raises(ValueError):
        repo.upsert_piece_request(
            request_id="R-1", work_order_id="WO-1", height=50, width=30, length=150, quantity=0, unit_minutes=30
        )

    repo.upsert_piece_request(
        request_id="R-1", work_order_id="WO-1", height=50, width=30, length=150, quantity=2, unit_minutes=30,
        mold_id="M1",
    )
    req = repo.get_piece_requests_model()[0]
    assert req.mold_id == "M1"
    assert req.envelope.group_key == (50, 30)


def test_deleting_work_order_cascades_to_requests(repo):
    seed_plant(repo)
    repo.delete_work_order(work_order_id="WO-1")

    assert {r.work_order_id for r in repo.get_piece_requests_model()} == {"WO-2", "WO-3"}


def test_delete_piece_request_keeps_its_work_order(repo):
    seed_plant(repo)
    repo.delete_piece_request(request_id="R-2")

    assert [r.request_id for r in repo.get_piece_requests_model()] == ["R-1", "R-3", "R-4"]
    assert "WO-1" in {wo.work_order_id for wo in repo.get_work_orders_model()}
    assert repo.get_recent_audit_entries(limit=1)[0].message == "Delete Piece Request"


def test_work_calendar_from_config_and_overrides(repo):
    repo.set_config(key="calendar_shift_start", value="06:00")
    repo.set_config(key="calendar_shift_end", value="14:00")
    repo.set_config(key="calendar_weekend_days", value="6")
    repo.upsert_calendar_day(day="2026-03-03", is_holiday=True, name="Carnival")
    repo.upsert_calendar_day(day=date(2026, 3, 4), shift_start="08:00", shift_end="12:00")

    cal = repo.get_work_calendar()

    assert cal.shift_start == time(6, 0)
    assert cal.shift_end == time(14, 0)
    assert cal.is_working_day(date(2026, 3, 7)) is True  # Saturday works
    assert cal.is_working_day(date(2026, 3, 3)) is False
    assert cal.window_for(date(2026, 3, 4)) == (datetime(2026, 3, 4, 8, 0), datetime(2026, 3, 4, 12, 0))

    repo.delete_calendar_day(day="2026-03-03")
    assert repo.get_work_calendar().is_working_day(date(2026, 3, 3)) is True


def test_calendar_day_rejects_inverted_shift(repo):
    with pytest.raises(ValueError):
        repo.upsert_calendar_day(day="2026-03-04", shift_start="12:00", shift_end="08:00")


def test_replace_schedule_is_atomic(repo):
    repo.replace_schedule(batches=[_batch("B1"), _batch("B2", sequence=2)], asof=datetime(2026, 3, 2, 7, 0), failures=[])

    # duplicate primary key -> whole replacement rolled back
    with pytest.raises(sqlite3.IntegrityError):
        repo.replace_schedule(batches=[_batch("X1"), _batch("X1")], asof=datetime(2026, 3, 2, 8, 0), failures=[])

    assert [b.batch_id for b in repo.get_batches_model()] == ["B1", "B2"]
    assert len(repo.get_runs()) == 1


def test_run_history_is_trimmed(repo):
    repo.set_config(key="schedule_run_history", value="2")
    for i in range(4):
        repo.replace_schedule(
            batches=[_batch(f"B{i}")],
            asof=datetime(2026, 3, 2, 7, i),
            failures=[{"error": "NoCompatibleResource", "request_id": "R-9", "message": "x"}] if i == 3 else [],
        )

    runs = repo.get_runs()
    assert len(runs) == 2
    last = repo.get_last_run()
    assert last["status"] == "partial"
    assert last["skipped_requests"] == 1
    assert last["failures"][0]["error"] == "NoCompatibleResource"


def test_update_batches_persists_delay(repo):
    repo.replace_schedule(batches=[_batch("B1")], asof=datetime(2026, 3, 2, 7, 0), failures=[])
    b = repo.get_batches_model()[0]
    b.start = datetime(2026, 3, 2, 8, 0)
    b.end = datetime(2026, 3, 2, 9, 30)
    b.delay_minutes = 60
    b.status = "delayed"

    repo.update_batches([b])

    stored = repo.get_batches_model()[0]
    assert (stored.start, stored.end, stored.delay_minutes, stored.status) == (
        datetime(2026, 3, 2, 8, 0),
        datetime(2026, 3, 2, 9, 30),
        60,
        "delayed",
    )


def test_import_molds_with_plant_headers(repo):
    content = make_excel_bytes(
        {
            "Código": ["F-01", "F-02"],
            "ID": ["M1", "M2"],
            "Altura (cm)": [60, 80],
            "Largura (cm)": [40, 50],
            "Comprimento (cm)": [400, "600,0"],
            "Capacidade": [4, 3],
            "Setup (min)": [30, None],
            "Disponível": ["si", 0],
        }
    )

    assert repo.import_excel_bytes(kind="molds", content=content) == 2

    molds = {m.mold_id: m for m in repo.get_molds_model()}
    assert molds["M1"].code == "F-01"
    assert molds["M1"].setup_minutes == 30
    assert molds["M1"].is_available is True
    assert molds["M2"].max_length == 600.0
    assert molds["M2"].setup_minutes == 0
    assert molds["M2"].is_available is False


def test_import_work_orders_and_piece_requests(repo):
    repo.import_excel_bytes(
        kind="work_orders",
        content=make_excel_bytes(
            {
                "work_order_id": ["WO-1", "WO-2"],
                "Prioridade": ["critical", "low"],
                "Urgencia": ["atras_de_forma:M2", None],
                "Prazo": ["10/03/2026", None],
            }
        ),
    )
    n = repo.import_excel_bytes(
        kind="piece_requests",
        content=make_excel_bytes(
            {
                "request_id": ["R-1", "R-2"],
                "obra_id": ["WO-1", "WO-2"],
                "altura": [50, 40],
                "largura": [30, 30],
                "comprimento": [150, 100],
                "quantidade": [6, "4"],
                "tempo_unitario_minutos": [45, 30.5],
            }
        ),
    )

    assert n == 2
    orders = {wo.work_order_id: wo for wo in repo.get_work_orders_model()}
    assert orders["WO-1"].urgency == InsertAfterResource("M2")
    assert orders["WO-1"].deadline == date(2026, 3, 10)
    assert orders["WO-2"].deadline is None
    requests = {r.request_id: r for r in repo.get_piece_requests_model()}
    assert requests["R-2"].quantity == 4
    assert requests["R-2"].unit_minutes == 30.5


def test_import_calendar(repo):
    repo.import_excel_bytes(
        kind="calendar",
        content=make_excel_bytes(
            {
                "data": ["2026-03-03", "2026-03-07"],
                "eh_feriado": [1, 0],
                "nome_feriado": ["Carnival", None],
                "turno_inicio": [None, "08:00"],
                "turno_fim": [None, "12:00"],
            }
        ),
    )

    rows = {r["day"]: r for r in repo.get_calendar_rows()}
    assert rows["2026-03-03"]["is_holiday"] is True
    assert rows["2026-03-03"]["name"] == "Carnival"
    assert rows["2026-03-07"]["shift_start"] == "08:00"


def test_import_rejects_unknown_kind_and_missing_columns(repo):
    content = make_excel_bytes({"something": ["x"]})
    with pytest.raises(ValueError):
        repo.import_excel_bytes(kind="unknown", content=content)
    with pytest.raises(ValueError, match="Missing columns"):
        repo.import_excel_bytes(kind="molds", content=content)
