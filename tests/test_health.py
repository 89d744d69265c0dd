"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' against the test store
  - No authentication required
"""

from __future__ import annotations


def test_health_returns_200_with_components(client):
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"]
    assert data["components"] == {"app": "ok", "database": "ok"}


def test_health_reports_unreachable_database(client, store, monkeypatch):
    def broken_connect():
        raise RuntimeError("database gone")

    monkeypatch.setattr(store.engine, "connect", broken_connect)
    data = client.get("/api/v1/health").json()
    assert data["components"]["database"] == "error"


def test_health_no_auth_required(client):
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
