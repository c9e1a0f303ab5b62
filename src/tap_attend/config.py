"""Environment-driven settings for the kiosk."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .frames import DEFAULT_MAX_LENGTH, DEFAULT_MIN_LENGTH
from .utils.logger import get_logger

LOGGER = get_logger("config")

DEFAULT_DIRECTORY_FILE = "data/students.json"
DEFAULT_LEDGER_FILE = "data/attendance.jsonl"
DEFAULT_DIRECTORY_TIMEOUT = 5.0

_MODES = ("check-in", "check-out", "register", "general")


def load_env(path: Optional[str] = None) -> None:
    """Seed ``os.environ`` from a .env file; variables already set win."""
    env_file = path or os.getenv("ENV_FILE", ".env")
    if os.path.exists(env_file):
        load_dotenv(env_file, override=False)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        LOGGER.warning("Ignoring non-integer %s=%r; using %d", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        LOGGER.warning("Ignoring non-numeric %s=%r; using %s", name, raw, default)
        return default
    return value if value > 0 else default


def _env_str(name: str) -> Optional[str]:
    value = (os.getenv(name) or "").strip()
    return value or None


@dataclass(frozen=True)
class KioskSettings:
    scanner_port: Optional[str] = None
    mode: str = "check-in"
    card_id_min_length: int = DEFAULT_MIN_LENGTH
    card_id_max_length: int = DEFAULT_MAX_LENGTH
    directory_file: Path = Path(DEFAULT_DIRECTORY_FILE)
    directory_url: Optional[str] = None
    directory_timeout: float = DEFAULT_DIRECTORY_TIMEOUT
    connectivity_probe: Optional[str] = None
    ledger_file: Path = Path(DEFAULT_LEDGER_FILE)
    admin_totp_secret: Optional[str] = None

    def __post_init__(self) -> None:
        if self.card_id_min_length < 1 or self.card_id_max_length < self.card_id_min_length:
            raise ValueError(
                f"CARD_ID_MIN_LENGTH/CARD_ID_MAX_LENGTH out of order: "
                f"{self.card_id_min_length} > {self.card_id_max_length}"
            )
        if self.mode not in _MODES:
            raise ValueError(f"SCANNER_MODE must be one of {', '.join(_MODES)}; got {self.mode!r}")

    @classmethod
    def from_env(cls) -> "KioskSettings":
        return cls(
            scanner_port=_env_str("SCANNER_PORT"),
            mode=(_env_str("SCANNER_MODE") or "check-in").lower(),
            card_id_min_length=_env_int("CARD_ID_MIN_LENGTH", DEFAULT_MIN_LENGTH),
            card_id_max_length=_env_int("CARD_ID_MAX_LENGTH", DEFAULT_MAX_LENGTH),
            directory_file=Path(_env_str("DIRECTORY_FILE") or DEFAULT_DIRECTORY_FILE),
            directory_url=_env_str("DIRECTORY_URL"),
            directory_timeout=_env_float("DIRECTORY_TIMEOUT_SECONDS", DEFAULT_DIRECTORY_TIMEOUT),
            connectivity_probe=_env_str("CONNECTIVITY_PROBE"),
            ledger_file=Path(_env_str("LEDGER_FILE") or DEFAULT_LEDGER_FILE),
            admin_totp_secret=_env_str("ADMIN_TOTP_SECRET"),
        )
