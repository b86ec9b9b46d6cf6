"""Unit tests for Settings (pydantic-settings, CONSTRUCT_ env prefix)."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from construct.config import Settings


@pytest.mark.unit
class TestSettings:

    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        cfg = Settings()
        assert cfg.server_addr == "localhost:14000"
        assert cfg.delimiter == "<???DONE???---"
        assert (cfg.clamp_min, cfg.clamp_max) == (-20.0, 20.0)
        assert cfg.read_timeout == 3.0
        assert cfg.actions_per_second == 100
        assert cfg.pulse_duration == 5.0
        assert cfg.goal == [100.0, 0.0, 0.0]

    def test_environment_override(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("CONSTRUCT_SERVER_ADDR", "10.1.1.1:9000")
        monkeypatch.setenv("CONSTRUCT_CLAMP_MAX", "5")
        monkeypatch.setenv("CONSTRUCT_GOAL", "[1, 2, 3]")
        cfg = Settings()
        assert cfg.server_addr == "10.1.1.1:9000"
        assert cfg.clamp_max == 5.0
        assert cfg.goal == [1.0, 2.0, 3.0]

    def test_dotenv_file(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("CONSTRUCT_AUTH_PASS=from-dotenv\nUNRELATED=1\n")
        assert Settings().auth_pass == "from-dotenv"

    def test_empty_delimiter_rejected(self):
        with pytest.raises(ValidationError):
            Settings(delimiter="")

    def test_clamp_order_enforced(self):
        with pytest.raises(ValidationError):
            Settings(clamp_min=10.0, clamp_max=-10.0)
