"""Credential persistence for the linked device session."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Protocol

from .errors import CredentialLoadFailed

_LOGGER = logging.getLogger(__name__)

CREDENTIALS_FILENAME = "creds.json"


class CredentialStore(Protocol):
    """Durable storage for session auth material."""

    async def load(self) -> dict[str, Any] | None:
        """Return stored credentials, or None when the device is not paired.

        Raises:
            CredentialLoadFailed: If stored material exists but is unusable.
        """

    async def save(self, credentials: dict[str, Any]) -> None:
        """Persist the latest credentials."""

    async def clear(self) -> None:
        """Discard stored credentials. Must be idempotent."""


class FileCredentialStore:
    """Stores credentials as JSON inside a session directory."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self._path = self.directory / CREDENTIALS_FILENAME

    async def load(self) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._read)

    async def save(self, credentials: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, credentials)
        _LOGGER.debug("Credentials saved to %s", self._path)

    async def clear(self) -> None:
        await asyncio.to_thread(shutil.rmtree, self.directory, True)
        _LOGGER.info("Credentials directory %s removed", self.directory)

    def _read(self) -> dict[str, Any] | None:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as err:
            raise CredentialLoadFailed(f"Cannot read {self._path}: {err}") from err

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as err:
            raise CredentialLoadFailed(f"Malformed credentials in {self._path}") from err
        if not isinstance(data, dict):
            raise CredentialLoadFailed(f"Credentials in {self._path} are not an object")
        return data

    def _write(self, credentials: dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(credentials, indent=2), encoding="utf-8")
        os.replace(tmp, self._path)


class MemoryCredentialStore:
    """Keeps credentials in process memory; nothing survives a restart."""

    def __init__(self, credentials: dict[str, Any] | None = None) -> None:
        self._credentials = copy.deepcopy(credentials)
        self.save_count = 0
        self.clear_count = 0

    @property
    def credentials(self) -> dict[str, Any] | None:
        return copy.deepcopy(self._credentials)

    async def load(self) -> dict[str, Any] | None:
        return copy.deepcopy(self._credentials)

    async def save(self, credentials: dict[str, Any]) -> None:
        self._credentials = copy.deepcopy(credentials)
        self.save_count += 1

    async def clear(self) -> None:
        self._credentials = None
        self.clear_count += 1
