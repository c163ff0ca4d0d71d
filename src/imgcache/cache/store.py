import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from .. import constants
from ..exceptions import CacheCorruptError, CacheError, CachePersistError
from .view import CacheEntry

logger = logging.getLogger(__name__)


class CacheStore:
    """Persisted mapping of artifact name to its last known build result.

    The whole file is read once by ``load()``; ``put()``/``invalidate()``
    only stage changes, and ``flush()`` writes everything back in a single
    atomic replace. Errors never escape: a broken file is a cold cache and a
    failed write only costs the next run some rebuilds.

    The file is assumed to have a single writing process. Concurrent runs
    against one file need an external lock held from ``load()`` to ``flush()``.
    """

    def __init__(self, path: Union[str, os.PathLike], enabled: bool = True):
        self.path = Path(path).expanduser()
        self.enabled = enabled
        self._entries: Dict[str, CacheEntry] = {}
        # None marks a staged removal
        self._staged: Dict[str, Optional[CacheEntry]] = {}
        self._extra: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self.loaded = False

    @classmethod
    def from_options(cls, options) -> "CacheStore":
        return cls(options.cache_path, enabled=options.cache_artifacts)

    def load(self) -> Dict[str, CacheEntry]:
        """
        Load every entry from disk.

        Returns:
            Dict[str, CacheEntry]: all valid entries; empty when the file is
            missing, unreadable or not a cache document
        """
        if not self.enabled:
            logger.debug("Artifact cache disabled, not loading entries")
            return {}

        try:
            raw = self._read()
        except CacheCorruptError as e:
            logger.warning(f"Ignoring unusable cache file, starting cold: {e}")
            raw = {}

        entries = self._parse(raw)
        with self._lock:
            self._entries = entries
            self._staged.clear()
            self._extra = {
                k: v for k, v in raw.items()
                if k not in (constants.CACHE_ARTIFACTS_KEY, constants.CACHE_VERSION_KEY)
            }
            self.loaded = True
        logger.info(f"Loaded {len(entries)} cache entries from {self.path}")
        return dict(entries)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            logger.debug(f"No cache file found at {self.path}")
            return {}
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise CacheCorruptError(f"cannot read {self.path}: {e}") from e
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise CacheCorruptError(f"invalid JSON in {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise CacheCorruptError(f"{self.path} does not contain a JSON object")
        return data

    def _parse(self, raw: Dict[str, Any]) -> Dict[str, CacheEntry]:
        artifacts = raw.get(constants.CACHE_ARTIFACTS_KEY, {})
        if not isinstance(artifacts, dict):
            logger.warning(f"Malformed '{constants.CACHE_ARTIFACTS_KEY}' section in {self.path}, ignoring it")
            return {}

        entries = {}
        for name, value in artifacts.items():
            try:
                entries[name] = CacheEntry.model_validate(value)
            except ValidationError as e:
                logger.warning(f"Dropping malformed cache entry '{name}': {e.error_count()} error(s)")
        return entries

    def lookup(self, name: str) -> Optional[CacheEntry]:
        with self._lock:
            if name in self._staged:
                return self._staged[name]
            return self._entries.get(name)

    def put(self, name: str, entry: CacheEntry):
        """Stage ``entry`` as the new result for ``name``."""
        if not self.enabled:
            return
        with self._lock:
            previous = self._staged.get(name) or self._entries.get(name)
            if previous is not None:
                entry = entry.model_copy(update={"created_at": previous.created_at})
            entry.update_timestamp()
            self._staged[name] = entry
        logger.debug(f"Staged cache entry for '{name}': {entry.digest}")

    def invalidate(self, name: str):
        """Stage removal of ``name``'s entry."""
        if not self.enabled:
            return
        with self._lock:
            if name in self._entries or self._staged.get(name) is not None:
                self._staged[name] = None
                logger.debug(f"Staged removal of cache entry '{name}'")

    def entries(self) -> Dict[str, CacheEntry]:
        """Snapshot of loaded entries with staged changes applied."""
        with self._lock:
            return self._merged()

    def _merged(self) -> Dict[str, CacheEntry]:
        merged = dict(self._entries)
        for name, entry in self._staged.items():
            if entry is None:
                merged.pop(name, None)
            else:
                merged[name] = entry
        return merged

    @property
    def dirty(self) -> bool:
        with self._lock:
            return bool(self._staged)

    def flush(self) -> bool:
        """
        Persist loaded entries plus staged changes atomically.

        Returns:
            bool: whether the file was written
        """
        if not self.enabled:
            return False

        with self._lock:
            if not self._staged:
                logger.debug("No staged cache changes to flush")
                return False
            merged = self._merged()
            payload = dict(self._extra)
            payload[constants.CACHE_VERSION_KEY] = constants.CACHE_SCHEMA_VERSION
            payload[constants.CACHE_ARTIFACTS_KEY] = {
                name: merged[name].model_dump(mode="json") for name in sorted(merged)
            }

        try:
            self._write_atomic(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False))
        except CacheError as e:
            logger.error(f"Failed to persist artifact cache, next run may rebuild: {e}")
            return False

        with self._lock:
            self._entries = merged
            self._staged.clear()
        logger.info(f"Saved {len(merged)} cache entries to {self.path}")
        return True

    def _write_atomic(self, content: str):
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                delete=False,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
            ) as handle:
                tmp_path = Path(handle.name)
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise CachePersistError(f"cannot write {self.path}: {e}") from e
        finally:
            if tmp_path is not None and tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError as e:
                    logger.debug(f"Could not remove temporary cache file {tmp_path}: {e}")

    def clear(self) -> bool:
        """Forget every entry and delete the cache file."""
        with self._lock:
            self._entries.clear()
            self._staged.clear()
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete cache file {self.path}: {e}")
            return False
        logger.info(f"Deleted cache file {self.path}")
        return True
