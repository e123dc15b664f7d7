"""Shared test fixtures for smartcollector tests."""

import pytest

from smartcollector.smartthings import Device

# All environment variables read by the CLI, used for cleanup.
_ALL_ENV_VARS = (
    "SMARTCOLLECTOR_CLIENT",
    "SMARTCOLLECTOR_SECRET",
    "SMARTCOLLECTOR_TEXTFILE_DIR",
    "SMARTCOLLECTOR_TIMEOUT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Remove collector env vars and isolate from .env files and $HOME.

    Runs for every test. Changes the working directory to tmp_path so
    load_dotenv() never finds a real .env file, and points HOME there
    so token files never land in the real home directory.
    """
    for var in _ALL_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def door_device() -> Device:
    """A contact sensor with a battery and an attribute we don't export."""
    return Device(
        id="d1",
        name="SmartSense Multi",
        display_name="Door",
        attributes={"contact": "open", "battery": 87.5, "foo": "bar"},
    )
