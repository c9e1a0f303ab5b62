"""Person directory sources: the local snapshot, the remote API and connectivity."""

from __future__ import annotations

import asyncio
import json
import socket
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple
from urllib.parse import urlparse

import aiohttp

from .utils.logger import get_logger

LOGGER = get_logger("directory")


@dataclass(frozen=True)
class PersonRecord:
    """Read-only view of a directory entry."""

    person_id: str
    display_name: str
    credential_id: Optional[str] = None
    aliases: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PersonRecord":
        person_id = payload.get("personId") or payload.get("studentId")
        name = payload.get("displayName") or payload.get("name")
        if not person_id or not name:
            raise ValueError("Directory entry must include a person id and a name")
        credential = payload.get("credentialId") or payload.get("rfid")
        aliases: List[str] = [str(alias) for alias in payload.get("aliases") or []]
        if payload.get("id") is not None:
            aliases.insert(0, str(payload["id"]))
        return cls(
            person_id=str(person_id),
            display_name=str(name),
            credential_id=str(credential).upper() if credential else None,
            aliases=tuple(aliases),
        )


class DirectoryCache(Protocol):
    def find_local(self, card_id: str) -> Optional[PersonRecord]:
        """Return the cached person matching ``card_id``, if any."""


class RemoteDirectory(Protocol):
    async def find_by_credential(self, card_id: str) -> Optional[PersonRecord]:
        """Look the credential up over the network; may raise on transport errors."""


class Connectivity(Protocol):
    async def is_online(self) -> bool:
        """Return True when a remote lookup is worth attempting."""


@dataclass(frozen=True)
class _Snapshot:
    by_credential: Dict[str, PersonRecord]
    by_person_id: Dict[str, PersonRecord]
    by_alias: Dict[str, PersonRecord]

    @classmethod
    def build(cls, people: Iterable[PersonRecord]) -> "_Snapshot":
        snapshot = cls({}, {}, {})
        for person in people:
            if person.credential_id:
                existing = snapshot.by_credential.setdefault(person.credential_id, person)
                if existing is not person:
                    LOGGER.warning(
                        "Credential %s is assigned to both %s and %s; keeping %s",
                        person.credential_id,
                        existing.person_id,
                        person.person_id,
                        existing.person_id,
                    )
            snapshot.by_person_id.setdefault(person.person_id.upper(), person)
            for alias in person.aliases:
                snapshot.by_alias.setdefault(alias.upper(), person)
        return snapshot

    def __len__(self) -> int:
        return len(self.by_person_id)


class LocalDirectory:
    """In-memory directory snapshot, optionally backed by a JSON file.

    Lookups read whichever snapshot is current when they start; ``refresh``
    builds a complete replacement and swaps it in, so a reader never sees a
    half-loaded directory.
    """

    def __init__(self, people: Iterable[PersonRecord] = (), path: Optional[Path | str] = None) -> None:
        self._path = Path(path) if path else None
        self._snapshot = _Snapshot.build(people)

    @classmethod
    def from_file(cls, path: Path | str) -> "LocalDirectory":
        directory = cls(path=path)
        directory.refresh()
        return directory

    def __len__(self) -> int:
        return len(self._snapshot)

    def find_local(self, card_id: str) -> Optional[PersonRecord]:
        snapshot = self._snapshot
        key = card_id.upper()
        for index in (snapshot.by_credential, snapshot.by_person_id, snapshot.by_alias):
            person = index.get(key)
            if person is not None:
                return person
        return None

    def replace(self, people: Iterable[PersonRecord]) -> None:
        self._snapshot = _Snapshot.build(people)

    def refresh(self) -> int:
        """Reload the backing file and return the number of people loaded."""
        if self._path is None:
            return len(self._snapshot)
        if not self._path.exists():
            LOGGER.warning("Directory file %s not found; local lookups will miss", self._path)
            self.replace(())
            return 0
        self.replace(self._load_entries(self._path))
        LOGGER.debug("Loaded %d directory entries from %s", len(self._snapshot), self._path)
        return len(self._snapshot)

    @staticmethod
    def _load_entries(path: Path) -> List[PersonRecord]:
        payload = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(payload, dict):
            payload = payload.get("students") or payload.get("people") or []
        if not isinstance(payload, list):
            raise ValueError("Directory JSON must be a list of people")
        people = []
        for entry in payload:
            if not isinstance(entry, dict):
                raise ValueError("Directory entry must be an object")
            people.append(PersonRecord.from_payload(entry))
        return people


class HttpDirectory:
    """Directory API client: ``GET {base_url}/students?rfid=<id>``."""

    def __init__(self, base_url: str, *, timeout: float = 5.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def find_by_credential(self, card_id: str) -> Optional[PersonRecord]:
        url = f"{self._base_url}/students"
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, params={"rfid": card_id}) as response:
                if response.status == 404:
                    return None
                response.raise_for_status()
                payload = await response.json()
        if isinstance(payload, list):
            payload = payload[0] if payload else None
        if not payload:
            return None
        return PersonRecord.from_payload(payload)


class StaticConnectivity:
    def __init__(self, online: bool = True) -> None:
        self.online = online

    async def is_online(self) -> bool:
        return self.online


class ProbeConnectivity:
    """Treat the host as online when a TCP connection to ``host:port`` succeeds.

    The probe runs in a worker thread so a slow DNS lookup never stalls the
    event loop; a probe that outlives ``timeout`` counts as offline for this
    call and its late result is still recorded. Results are remembered for
    ``ttl`` seconds so a burst of scans does not open a socket per frame.
    """

    def __init__(self, host: str, port: int, *, timeout: float = 0.5, ttl: float = 10.0) -> None:
        self.host = host
        self.port = port
        self._timeout = timeout
        self._ttl = ttl
        self._checked_at: Optional[float] = None
        self._online = False
        self._pending: Optional[asyncio.Future[bool]] = None

    @classmethod
    def for_url(cls, url: str, **kwargs: Any) -> "ProbeConnectivity":
        parsed = urlparse(url)
        if not parsed.hostname:
            raise ValueError(f"Cannot derive a probe target from {url!r}")
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        return cls(parsed.hostname, port, **kwargs)

    async def is_online(self) -> bool:
        if self._checked_at is not None and time.monotonic() - self._checked_at < self._ttl:
            return self._online
        if self._pending is None:
            self._pending = asyncio.ensure_future(asyncio.to_thread(self._probe))
            self._pending.add_done_callback(self._record)
        try:
            return await asyncio.wait_for(asyncio.shield(self._pending), timeout=self._timeout)
        except asyncio.TimeoutError:
            LOGGER.debug("Connectivity probe to %s:%s still running; assuming offline", self.host, self.port)
            return False

    def _probe(self) -> bool:
        try:
            with socket.create_connection((self.host, self.port), timeout=self._timeout):
                return True
        except OSError as exc:
            LOGGER.debug("Connectivity probe to %s:%s failed: %s", self.host, self.port, exc)
            return False

    def _record(self, future: "asyncio.Future[bool]") -> None:
        self._pending = None
        if future.cancelled():
            return
        self._online = future.result()
        self._checked_at = time.monotonic()
