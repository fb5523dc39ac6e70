"""Durable file-backed tier of the cache.

One JSON file per key in a dedicated directory, each holding
``{data, timestamp, ttl, key}``. Files that fail to decode are treated as
misses and removed; they never raise to callers.
"""

import hashlib
import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Union

from ..errors import CacheCorruptionError
from .entry import CacheEntry

logger = logging.getLogger(__name__)

METADATA_FILE = "_metadata.json"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_MAX_READABLE_LENGTH = 80


def sanitize_key(key: str) -> str:
    """Map a cache key to a safe, collision-free file name.

    The readable prefix keeps files inspectable; the digest of the full key
    keeps two keys that sanitize alike (``a:b`` and ``a_b``) apart.
    """
    readable = _UNSAFE_CHARS.sub("_", key)[:_MAX_READABLE_LENGTH]
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]
    return f"{readable}.{digest}.json"


class DurableStore:
    """Directory of cache entry files."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self._lock = threading.Lock()
        # Keys known to have a file; complete once a full scan has run
        self._index: set[str] = set()
        self._indexed = False

    def _ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.directory / sanitize_key(key)

    def _decode(self, path: Path) -> CacheEntry:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CacheCorruptionError(f"{path.name}: {e}") from e
        return CacheEntry.from_dict(payload)

    def _discard_corrupt(self, path: Path, error: Exception) -> None:
        logger.warning(f"Discarding corrupt cache file {path.name}: {error}")
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to remove corrupt cache file {path.name}: {e}")

    def read(self, key: str) -> Optional[CacheEntry]:
        """Read an entry; missing and corrupt files are both misses."""
        path = self.path_for(key)
        try:
            entry = self._decode(path)
        except FileNotFoundError:
            return None
        except CacheCorruptionError as e:
            self._forget_key(key)
            self._discard_corrupt(path, e)
            return None
        except OSError as e:
            logger.error(f"Failed to read cache file for {key}: {e}")
            return None

        if entry.key != key:
            self._forget_key(key)
            self._discard_corrupt(path, CacheCorruptionError(f"file holds key {entry.key!r}"))
            return None
        return entry

    def _forget_key(self, key: str) -> None:
        with self._lock:
            self._index.discard(key)

    def write(self, entry: CacheEntry, is_current: Optional[Callable[[], bool]] = None) -> bool:
        """Atomically write an entry.

        Args:
            entry: Entry to persist
            is_current: Checked under the store lock; a False answer means the
                entry was superseded or invalidated and the write is skipped

        Returns:
            True if the file was written
        """
        body = json.dumps(entry.to_dict(), indent=2)
        with self._lock:
            if is_current is not None and not is_current():
                logger.debug(f"Skipping superseded cache write for {entry.key}")
                return False

            self._ensure_directory()
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(body)
                os.replace(tmp_path, self.path_for(entry.key))
            except BaseException:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
            self._index.add(entry.key)
        return True

    def delete(self, key: str) -> bool:
        """Remove an entry file. Returns True if one existed."""
        with self._lock:
            self._index.discard(key)
            try:
                self.path_for(key).unlink()
                return True
            except FileNotFoundError:
                return False

    def clear(self) -> int:
        """Remove every entry file (and the metadata sidecar)."""
        removed = 0
        with self._lock:
            self._index.clear()
            self._indexed = True
            if not self.directory.exists():
                return 0
            for path in self.directory.glob("*.json"):
                try:
                    path.unlink()
                    removed += 1
                except FileNotFoundError:
                    pass
                except OSError as e:
                    logger.error(f"Failed to remove cache file {path.name}: {e}")
        return removed

    def _entry_paths(self) -> list[Path]:
        if not self.directory.exists():
            return []
        return [
            p
            for p in self.directory.glob("*.json")
            if not p.name.startswith(("_", ".tmp-"))
        ]

    def iter_entries(self) -> Iterator[CacheEntry]:
        """Yield every decodable entry, discarding corrupt files on the way.

        A complete pass also seeds the key index used by ``keys``.
        """
        seen = set()
        for path in self._entry_paths():
            try:
                entry = self._decode(path)
            except FileNotFoundError:
                continue
            except CacheCorruptionError as e:
                self._discard_corrupt(path, e)
                continue
            seen.add(entry.key)
            yield entry
        with self._lock:
            self._index.update(seen)
            self._indexed = True

    def keys(self) -> list[str]:
        """Keys with a durable file.

        Only the first call scans the directory; writes, deletes and clears
        keep the index current after that.
        """
        if not self._indexed:
            for _ in self.iter_entries():
                pass
        with self._lock:
            return sorted(self._index)

    def write_metadata(self, metadata: dict[str, Any]) -> None:
        """Write the advisory metadata sidecar."""
        with self._lock:
            self._ensure_directory()
            (self.directory / METADATA_FILE).write_text(
                json.dumps(metadata, indent=2), encoding="utf-8"
            )
