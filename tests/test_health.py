from __future__ import annotations

from fastapi.testclient import TestClient

from taskhub import main as app_main
from taskhub.infra import db


def test_healthz_ok() -> None:
    client = TestClient(app_main.app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_ok_when_database_ready(monkeypatch) -> None:
    monkeypatch.setattr(app_main, "check_db_ready", lambda: True)
    client = TestClient(app_main.app)
    response = client.get("/readyz")
    assert response.status_code == 200
    assert response.json() == {"status": "ready", "checks": {"db": "ok"}}


def test_readyz_reports_database_failure(monkeypatch) -> None:
    monkeypatch.setattr(app_main, "check_db_ready", lambda: False)
    client = TestClient(app_main.app)
    response = client.get("/readyz")
    assert response.status_code == 503
    assert response.json()["detail"]["checks"] == {"db": "fail"}


def test_check_db_ready_against_sqlite_engine(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(db, "engine", db.build_engine(f"sqlite:///{tmp_path / 'ready.db'}"))
    assert db.check_db_ready() is True


def test_check_db_ready_false_when_database_unreachable(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(db, "engine", db.build_engine(f"sqlite:///{tmp_path / 'missing' / 'ready.db'}"))
    assert db.check_db_ready() is False
