"""Tests for the application boot hooks and health endpoint."""

import pytest
from httpx import ASGITransport, AsyncClient

import main


@pytest.fixture
async def api_client():
    async with AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test") as client:
        yield client
    main.app.state.modules = {}


async def test_startup_runs_boot_sequence(monkeypatch, operator_config, api_client):
    calls = []

    def fake_prepare_app():
        calls.append("config")
        return operator_config

    async def fake_init_database(settings):
        calls.append("database")
        assert settings is operator_config

    monkeypatch.setattr(main, "prepare_app", fake_prepare_app)
    monkeypatch.setattr(main, "init_database", fake_init_database)

    await main.startup()

    assert calls == ["config", "database"]
    resp = await api_client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "modules": ["media"]}


async def test_startup_stops_when_config_gate_fails(monkeypatch):
    def gate_closed():
        raise SystemExit(1)

    async def unexpected_init_database(settings):
        raise AssertionError("database must not be initialized")

    monkeypatch.setattr(main, "prepare_app", gate_closed)
    monkeypatch.setattr(main, "init_database", unexpected_init_database)

    with pytest.raises(SystemExit):
        await main.startup()
