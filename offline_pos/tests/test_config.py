import os
import sys

from offline_pos import agent
from offline_pos.app.config import Settings


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("POS_API_BASE_URL", "https://erp.example.com/api/")
    monkeypatch.setenv("POS_SUBMIT_TIMEOUT_S", "2.5")
    monkeypatch.setenv("POS_PORT", "not-a-number")
    monkeypatch.setenv("POS_LOCATION_ID", "  ")
    cfg = Settings()
    assert cfg.api_base_url == "https://erp.example.com/api"
    assert cfg.submit_timeout_s == 2.5
    assert cfg.port == 7070
    assert cfg.location_id is None
    assert cfg.session_id == "default"


def test_agent_init_db_creates_schema(monkeypatch, tmp_path, capsys):
    path = tmp_path / "data" / "pos.sqlite"
    monkeypatch.setattr(sys, "argv", ["offline-pos-agent", "--init-db", "--db", str(path)])
    agent.main()
    assert os.path.exists(path)
    assert capsys.readouterr().out.strip() == "ok"


def test_agent_drain_once_offline(monkeypatch, tmp_path, capsys):
    path = tmp_path / "pos.sqlite"
    monkeypatch.setattr(sys, "argv", ["offline-pos-agent", "--db", str(path), "--api-base-url", "", "--drain-once"])
    agent.main()
    assert "offline" in capsys.readouterr().out
