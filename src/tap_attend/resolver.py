"""Offline-first identity resolution."""

from __future__ import annotations

import asyncio
from typing import Optional

from .directory import Connectivity, DirectoryCache, PersonRecord, RemoteDirectory, StaticConnectivity
from .utils.logger import get_logger

LOGGER = get_logger("resolver")

DEFAULT_REMOTE_TIMEOUT = 5.0


class IdentityResolver:
    """Map a canonical card id to a person.

    The chain is fixed: the local snapshot is searched first (credential, then
    person id, then alias); the remote directory is only asked when the local
    search misses and the connectivity signal reports the host online. Any
    transport failure or timeout in the remote step degrades to "not found".
    """

    def __init__(
        self,
        cache: DirectoryCache,
        remote: Optional[RemoteDirectory] = None,
        connectivity: Optional[Connectivity] = None,
        *,
        timeout: float = DEFAULT_REMOTE_TIMEOUT,
    ) -> None:
        self._cache = cache
        self._remote = remote
        self._connectivity = connectivity or StaticConnectivity(online=remote is not None)
        self._timeout = timeout

    async def resolve(self, card_id: str) -> Optional[PersonRecord]:
        person = self._cache.find_local(card_id)
        if person is not None:
            LOGGER.debug("Resolved %s locally to %s", card_id, person.person_id)
            return person
        return await self._resolve_remote(card_id)

    async def _resolve_remote(self, card_id: str) -> Optional[PersonRecord]:
        if self._remote is None:
            return None
        if not await self._connectivity.is_online():
            LOGGER.debug("Offline; skipping remote lookup for %s", card_id)
            return None
        try:
            person = await asyncio.wait_for(self._remote.find_by_credential(card_id), timeout=self._timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Remote directory lookup for %s timed out after %.1fs", card_id, self._timeout)
            return None
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Remote directory lookup for %s failed: %s", card_id, exc)
            return None
        if person is not None:
            LOGGER.debug("Resolved %s remotely to %s", card_id, person.person_id)
        return person
