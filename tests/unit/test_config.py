from __future__ import annotations

import pytest

from ideatracker.core.config import Settings, load_settings, load_yaml


def test_yaml_overrides_defaults(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("ALPACA_API_KEY", "key-123")
    monkeypatch.setenv("ALPACA_SECRET_KEY", "secret-456")
    path = tmp_path / "settings.yaml"
    path.write_text(
        "resolver:\n"
        "  interval_seconds: 60\n"
        "  breakeven_band_pct: 1.0\n"
        "calibration:\n"
        "  min_decisive_trades: 25\n"
        "alpaca:\n"
        "  api_key: from-yaml\n"
    )

    settings = load_settings(path)

    assert settings.resolver.interval_seconds == 60
    assert settings.resolver.breakeven_band_pct == 1.0
    assert settings.resolver.max_open_days == 7
    assert settings.calibration.min_decisive_trades == 25
    assert settings.alpaca.api_key == "key-123"
    assert settings.alpaca.secret_key == "secret-456"


def test_missing_file_uses_defaults(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("ALPACA_API_KEY", raising=False)

    settings = load_settings(tmp_path / "absent.yaml")

    assert settings.resolver.interval_seconds == Settings().resolver.interval_seconds
    assert settings.quotes.provider == "alpaca"
    assert settings.alpaca.api_key == ""


def test_config_path_from_environment(tmp_path, monkeypatch) -> None:
    path = tmp_path / "custom.yaml"
    path.write_text("intelligence:\n  top_n: 3\n")
    monkeypatch.setenv("IDEATRACKER_CONFIG", str(path))

    assert load_settings().intelligence.top_n == 3


def test_load_yaml_requires_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_yaml(tmp_path / "absent.yaml")

    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert load_yaml(empty) == {}
