from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from fixtures_plant import MONDAY_0700, seed_plant
from precastplan.api.routes import register_routes
from precastplan.data.db import Db
from precastplan.data.repository import Repository
from precastplan.scheduler.service import ScheduleService


@pytest.fixture()
def service(tmp_path) -> ScheduleService:
    db = Db(Path(tmp_path) / "test.db")
    db.ensure_schema()
    repo = Repository(db)
    seed_plant(repo)
    return ScheduleService(repo, clock=lambda: MONDAY_0700, lock_timeout=0.05)


@pytest.fixture()
def client(service) -> TestClient:
    app = FastAPI()
    register_routes(app, service)
    return TestClient(app)


def test_reschedule_then_read_schedule(client):
    res = client.post("/api/schedule/reschedule")
    assert res.status_code == 200
    body = res.json()
    assert body["batch_count"] == len(body["batches"]) > 0
    assert body["failures"] == []

    res = client.get("/api/schedule")
    assert res.status_code == 200
    molds = res.json()["molds"]
    assert sum(len(g["batches"]) for g in molds) == body["batch_count"]


def test_last_run(client):
    assert client.get("/api/schedule/runs/last").status_code == 404

    run_id = client.post("/api/schedule/reschedule").json()["run_id"]

    res = client.get("/api/schedule/runs/last")
    assert res.status_code == 200
    assert res.json()["run_id"] == run_id


def test_suggest_date(client):
    client.post("/api/schedule/reschedule")
    payload = {"height": 50, "width": 30, "length": 150, "quantity": 5, "unit_minutes": 30}

    res = client.post("/api/schedule/suggest-date", json=payload)
    assert res.status_code == 200
    body = res.json()
    assert body["selected_mold"]["mold_id"] == "M2"
    assert body["num_batches"] == 2
    assert body["window"]["start"] <= body["window"]["end"]
    assert client.post("/api/schedule/suggest-date", json=payload).json() == body


def test_suggest_date_errors(client):
    res = client.post(
        "/api/schedule/suggest-date",
        json={"height": 500, "width": 30, "length": 150, "quantity": 5, "unit_minutes": 30},
    )
    assert res.status_code == 422
    assert res.json()["detail"]["error"] == "NoCompatibleResource"

    res = client.post(
        "/api/schedule/suggest-date",
        json={"height": 50, "width": 30, "length": 150, "quantity": 0, "unit_minutes": 30},
    )
    assert res.status_code == 422


def test_delay(client):
    batches = client.post("/api/schedule/reschedule").json()["batches"]
    target = batches[0]["batch_id"]

    res = client.post("/api/schedule/delay", json={"batch_id": target, "delay_minutes": 30})
    assert res.status_code == 200
    assert res.json()["batch_ids"][0] == target

    assert client.post("/api/schedule/delay", json={"batch_id": "nope", "delay_minutes": 30}).status_code == 404
    assert client.post("/api/schedule/delay", json={"batch_id": target, "delay_minutes": 0}).status_code == 422


def test_reschedule_conflict(client, service):
    with service._lock.write(timeout=1):
        res = client.post("/api/schedule/reschedule")
    assert res.status_code == 409
    assert res.json()["detail"]["error"] == "ConcurrentRescheduleConflict"
