from pathlib import Path

import pytest

from tap_attend.config import KioskSettings, load_env

KEYS = [
    "SCANNER_PORT",
    "SCANNER_MODE",
    "CARD_ID_MIN_LENGTH",
    "CARD_ID_MAX_LENGTH",
    "DIRECTORY_FILE",
    "DIRECTORY_URL",
    "DIRECTORY_TIMEOUT_SECONDS",
    "CONNECTIVITY_PROBE",
    "LEDGER_FILE",
    "ADMIN_TOTP_SECRET",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults() -> None:
    settings = KioskSettings.from_env()

    assert settings.scanner_port is None
    assert settings.mode == "check-in"
    assert (settings.card_id_min_length, settings.card_id_max_length) == (8, 16)
    assert settings.directory_file == Path("data/students.json")
    assert settings.directory_url is None
    assert settings.directory_timeout == 5.0


def test_values_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("SCANNER_PORT", "/dev/ttyACM0")
    monkeypatch.setenv("SCANNER_MODE", "Check-Out")
    monkeypatch.setenv("CARD_ID_MIN_LENGTH", "10")
    monkeypatch.setenv("DIRECTORY_URL", "https://directory.example.edu")
    monkeypatch.setenv("DIRECTORY_TIMEOUT_SECONDS", "2.5")

    settings = KioskSettings.from_env()

    assert settings.scanner_port == "/dev/ttyACM0"
    assert settings.mode == "check-out"
    assert settings.card_id_min_length == 10
    assert settings.directory_url == "https://directory.example.edu"
    assert settings.directory_timeout == 2.5


def test_bad_numbers_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("CARD_ID_MIN_LENGTH", "eight")
    monkeypatch.setenv("DIRECTORY_TIMEOUT_SECONDS", "-1")

    settings = KioskSettings.from_env()

    assert settings.card_id_min_length == 8
    assert settings.directory_timeout == 5.0


def test_inverted_length_bounds_are_an_error(monkeypatch) -> None:
    monkeypatch.setenv("CARD_ID_MIN_LENGTH", "20")

    with pytest.raises(ValueError):
        KioskSettings.from_env()


def test_unknown_mode_is_an_error(monkeypatch) -> None:
    monkeypatch.setenv("SCANNER_MODE", "teleport")

    with pytest.raises(ValueError):
        KioskSettings.from_env()


def test_env_file_does_not_override_existing_values(tmp_path, monkeypatch) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text('SCANNER_PORT="/dev/ttyUSB1"\nSCANNER_MODE="register"\n', encoding="utf-8")
    monkeypatch.setenv("SCANNER_MODE", "check-out")

    load_env(str(env_file))
    settings = KioskSettings.from_env()

    assert settings.scanner_port == "/dev/ttyUSB1"
    assert settings.mode == "check-out"
