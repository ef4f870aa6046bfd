from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from dbpulse.core.config import DashboardSettings, Settings, reset_settings
from tests.util.factories import NOW, FakeTelemetryClient


@pytest.fixture(autouse=True, name="_isolated_settings")
def _isolated_settings_fixture(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Keep the global settings singleton away from the user's config directory."""
    for key in ("DBPULSE_API__BASE_URL", "DBPULSE_DASHBOARD__DEMO_MODE", "DBPULSE_CACHE__ENABLED"):
        monkeypatch.delenv(key, raising=False)
    return reset_settings(Settings(app_dir=tmp_path / "app"))


@pytest.fixture(name="settings")
def settings_fixture(tmp_path: Path) -> Settings:
    return Settings(app_dir=tmp_path / "app")


@pytest.fixture(name="demo_settings")
def demo_settings_fixture(tmp_path: Path) -> Settings:
    return Settings(app_dir=tmp_path / "app", dashboard=DashboardSettings(demo_mode=True, demo_seed=7))


@pytest.fixture(name="now")
def now_fixture() -> datetime:
    return NOW


@pytest.fixture(name="fake_client")
def fake_client_fixture() -> FakeTelemetryClient:
    return FakeTelemetryClient()
