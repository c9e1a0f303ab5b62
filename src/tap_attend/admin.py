"""Passcode gate for administrative commands."""

from __future__ import annotations

from typing import Protocol

import pyotp


class AdminGate(Protocol):
    def verify(self, code: str) -> bool:
        """Return True when ``code`` unlocks administrative actions."""


class OpenGate:
    """Gate used when no admin secret is configured."""

    def verify(self, code: str) -> bool:
        return True


class TotpAdminGate:
    """Time-based one-time passcode check (RFC 6238, 30 second steps)."""

    def __init__(self, secret: str, *, valid_window: int = 1) -> None:
        self._totp = pyotp.TOTP(secret)
        self._valid_window = valid_window

    @staticmethod
    def generate_secret() -> str:
        return pyotp.random_base32()

    def provisioning_uri(self, account: str = "Admin Access", issuer: str = "Library Attendance") -> str:
        return self._totp.provisioning_uri(name=account, issuer_name=issuer)

    def verify(self, code: str) -> bool:
        code = (code or "").strip().replace(" ", "")
        if not code.isdigit():
            return False
        return self._totp.verify(code, valid_window=self._valid_window)
