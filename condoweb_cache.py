"""
On-disk JSON cache for CondoWeb API responses.

One file per resource, addressed by a relative key such as
'financials/get-all-accounts.json'. Entries are written once and never
rewritten: a present entry is always served from disk, which is what makes
scrape runs resumable.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class JsonCache:
    """JSON files below a root directory, keyed by relative path."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        """Resolve a key to its file path, refusing keys that escape the root."""
        path = self.root / key
        if ".." in Path(key).parts or Path(key).is_absolute():
            raise ValueError(f"Invalid cache key: {key}")
        return path

    def exists(self, key: str) -> bool:
        """Return True if the entry is present. Zero-byte files do not count."""
        path = self.path_for(key)
        return path.is_file() and path.stat().st_size > 0

    def read_json(self, key: str):
        with open(self.path_for(key)) as f:
            return json.load(f)

    def write_json(self, key: str, payload) -> None:
        """
        Write an entry atomically.

        The payload goes to a temporary file in the target directory which is
        then renamed over the key, so an interrupted run never leaves a
        half-written entry behind.
        """
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def keys(self, prefix: str, pattern: str = "*.json") -> list[str]:
        """
        List keys below a prefix, sorted.

        Args:
            prefix: Key prefix (a directory below the root)
            pattern: Glob pattern, e.g. '**/*.json' to recurse

        Returns:
            Sorted list of keys of non-empty entries
        """
        base = self.path_for(prefix)
        if not base.is_dir():
            return []
        found = []
        for path in base.glob(pattern):
            if path.is_file() and path.stat().st_size > 0 and not path.name.startswith("."):
                found.append(path.relative_to(self.root).as_posix())
        return sorted(found)


def download_if_missing(cache: JsonCache, key: str, on_miss) -> tuple:
    """
    Return a cached entry, fetching and storing it first if absent.

    Args:
        cache: Cache to read from and write to
        key: Cache key of the resource
        on_miss: Zero-argument callable returning the payload to store

    Returns:
        Tuple of (payload, fetched) where fetched is True if on_miss ran
    """
    if cache.exists(key):
        logger.debug(f"{key} already exists, skipping")
        return cache.read_json(key), False

    logger.debug(f"{key} does not exist, downloading")
    payload = on_miss()
    cache.write_json(key, payload)
    return payload, True
