"""Process-local persisted state: key/value stores, cache namespaces, databases."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from pathlib import Path

from sensorreset.core.errors import PlatformSweepStepError
from sensorreset.platform.base import KeyPredicate

PERSISTED_SCOPES = ("session", "local")
DATABASE_SUFFIXES = (".db", ".sqlite", ".sqlite3")
LOGGER = logging.getLogger(__name__)


def default_state_dir() -> Path:
    xdg_state = Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local/state"))
    return xdg_state / "sensorreset"


def default_cache_dir() -> Path:
    xdg_cache = Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache"))
    return xdg_cache / "sensorreset"


class LocalStateStore:
    """Files the client keeps between runs.

    Layout::

        <state_dir>/session.json       short-lived key/value store
        <state_dir>/local.json         long-lived key/value store
        <state_dir>/databases/*.db     structured local databases
        <cache_dir>/<namespace>/       structured cache namespaces
    """

    def __init__(self, state_dir: Path | None = None, cache_dir: Path | None = None) -> None:
        self.state_dir = state_dir or default_state_dir()
        self.cache_dir = cache_dir or default_cache_dir()

    @property
    def database_dir(self) -> Path:
        return self.state_dir / "databases"

    def store_path(self, scope: str) -> Path:
        return self.state_dir / f"{scope}.json"

    def read_store(self, scope: str) -> dict[str, object]:
        path = self.store_path(scope)
        if not path.exists():
            return {}
        try:
            loaded = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PlatformSweepStepError(f"Could not read {scope} store {path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise PlatformSweepStepError(f"{scope} store {path} must contain a JSON object")
        return loaded

    def write_store(self, scope: str, values: dict[str, object]) -> None:
        path = self.store_path(scope)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(values, indent=2, sort_keys=True), encoding="utf-8")

    async def purge_matching_persisted_keys(self, predicate: KeyPredicate) -> int | None:
        return await asyncio.to_thread(self._purge_keys, predicate)

    async def purge_structured_caches(self) -> int | None:
        return await asyncio.to_thread(self._purge_caches)

    async def list_structured_databases(self) -> list[str] | None:
        return await asyncio.to_thread(self._list_databases)

    async def delete_database(self, name: str) -> bool:
        return await asyncio.to_thread(self._delete_database, name)

    def _purge_keys(self, predicate: KeyPredicate) -> int:
        removed = 0
        errors: list[str] = []
        for scope in PERSISTED_SCOPES:
            try:
                removed += self._purge_scope(scope, predicate)
            except PlatformSweepStepError as exc:
                LOGGER.error("Purging %s store failed: %s", scope, exc)
                errors.append(str(exc))
        if errors:
            raise PlatformSweepStepError(
                f"Removed {removed} key(s) but some stores failed: {' | '.join(errors)}"
            )
        return removed

    def _purge_scope(self, scope: str, predicate: KeyPredicate) -> int:
        values = self.read_store(scope)
        doomed = [key for key in values if predicate(key)]
        if not doomed:
            return 0
        for key in doomed:
            LOGGER.debug("Removing %s storage key: %s", scope, key)
            del values[key]
        try:
            self.write_store(scope, values)
        except OSError as exc:
            raise PlatformSweepStepError(f"Could not rewrite {scope} store: {exc}") from exc
        return len(doomed)

    def _purge_caches(self) -> int:
        if not self.cache_dir.is_dir():
            return 0
        cleared = 0
        for namespace in sorted(self.cache_dir.iterdir()):
            try:
                if namespace.is_dir():
                    shutil.rmtree(namespace)
                else:
                    namespace.unlink()
            except OSError as exc:
                raise PlatformSweepStepError(f"Could not clear cache {namespace.name}: {exc}") from exc
            LOGGER.debug("Cleared cache namespace: %s", namespace.name)
            cleared += 1
        return cleared

    def _list_databases(self) -> list[str]:
        if not self.database_dir.is_dir():
            return []
        return sorted(
            p.name for p in self.database_dir.iterdir() if p.is_file() and p.suffix in DATABASE_SUFFIXES
        )

    def _delete_database(self, name: str) -> bool:
        path = self.database_dir / name
        if path.parent != self.database_dir:
            raise PlatformSweepStepError(f"Refusing to delete database outside {self.database_dir}: {name}")
        try:
            path.unlink()
        except FileNotFoundError:
            return True
        except OSError as exc:
            raise PlatformSweepStepError(f"Could not delete database {name}: {exc}") from exc
        return True
