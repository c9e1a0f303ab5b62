"""Raw reader frames and their normalization into canonical card ids."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union

from .errors import InvalidFormat

DEFAULT_MIN_LENGTH = 8
DEFAULT_MAX_LENGTH = 16

_WHITESPACE = re.compile(r"\s+")
_NON_HEX = re.compile(r"[^0-9A-Fa-f]")
_HEX = re.compile(r"[0-9A-F]+")


class ScanSource(str, Enum):
    """Where a frame came from."""

    DEVICE = "device"
    MANUAL = "manual"


@dataclass(frozen=True)
class RawFrame:
    """Opaque payload emitted by the reader or typed by an operator."""

    payload: Union[bytes, str]
    source: ScanSource = ScanSource.DEVICE
    received_at: datetime = field(default_factory=datetime.now)

    def text(self) -> str:
        if isinstance(self.payload, bytes):
            return self.payload.decode("utf-8", errors="replace")
        return self.payload


class FrameNormalizer:
    """Turn device chunks or typed text into an uppercase hex card id.

    Device frames only lose their line endings and whitespace; anything shorter
    than ``min_length`` is treated as connect/disconnect noise. Manual entries
    are more forgiving: separators such as ``04:5a:2e:92`` are stripped before
    the result is checked against the length bounds.
    """

    def __init__(self, min_length: int = DEFAULT_MIN_LENGTH, max_length: int = DEFAULT_MAX_LENGTH) -> None:
        if min_length < 1 or max_length < min_length:
            raise ValueError(f"Invalid card id bounds: {min_length}..{max_length}")
        self.min_length = min_length
        self.max_length = max_length

    def normalize(self, raw: Union[RawFrame, str], source: ScanSource = ScanSource.MANUAL) -> str:
        """Return the canonical id for ``raw`` or raise ``InvalidFormat``.

        A bare string is treated as a frame from ``source``; a ``RawFrame``
        carries its own source.
        """
        if isinstance(raw, RawFrame):
            source, text = raw.source, raw.text()
        else:
            text = raw
        if source is ScanSource.DEVICE:
            return self.normalize_device(text)
        return self.normalize_manual(text)

    def normalize_device(self, text: str) -> str:
        cleaned = _WHITESPACE.sub("", text).upper()
        if len(cleaned) < self.min_length:
            raise InvalidFormat(f"Frame too short to be a card id ({len(cleaned)} chars)")
        return self._check(cleaned)

    def normalize_manual(self, text: str) -> str:
        cleaned = _NON_HEX.sub("", text).upper()
        if not cleaned:
            raise InvalidFormat("Enter a hexadecimal card id")
        return self._check(cleaned)

    def _check(self, cleaned: str) -> str:
        if not self.min_length <= len(cleaned) <= self.max_length or not _HEX.fullmatch(cleaned):
            raise InvalidFormat(
                f"Card id must be {self.min_length}-{self.max_length} hexadecimal characters",
                credential_id=cleaned,
            )
        return cleaned


@dataclass(frozen=True)
class ScanEvent:
    """An accepted frame: the canonical id plus when and where it was read."""

    card_id: str
    timestamp: datetime
    source: ScanSource
