# === NAVMAP v1 ===
# {
#   "module": "FoundryPod.ComponentInstall.cache",
#   "purpose": "URL-keyed artifact cache with retrying fetches, metadata sidecars and install fingerprints",
#   "sections": [
#     {"id": "slots", "name": "Cache Slots", "anchor": "SLT", "kind": "helpers"},
#     {"id": "contentcache", "name": "ContentCache", "anchor": "class-contentcache", "kind": "class"},
#     {"id": "fingerprints", "name": "Fingerprint Ledger", "anchor": "FPR", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Artifact cache for manifests and component downloads.

Each URL maps to one deterministic cache slot (a digest of the URL plus its
archive or document suffix) and a JSON metadata sidecar recording the payload
fingerprint, fetch time and validators.  A slot whose file still matches its
recorded fingerprint is served without touching the network; expired slots
are revalidated with a conditional request.  Downloads stream to a ``.part``
file that is renamed into place only when complete, so readers never see a
partially written artifact.

Fetches of the same URL are single-flight: the first caller performs the
fetch while concurrent callers wait on the URL's lock and then receive the
memoised result of that run.

The cache also owns the install fingerprint ledger.  For every published
component directory it records the source digest, the source description and
the digest of the tree as published, so the install engine can skip a
component only when all three still match.  The ledger file is shared by
every run using the cache directory and is rewritten under a file lock.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import random
import tempfile
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional, Tuple
from urllib.parse import urlparse

import httpx
from filelock import FileLock, Timeout
from pydantic import ValidationError as PydanticValidationError

from .errors import FetchError, FilesystemError
from .io.filesystem import atomic_write_text, sha256_directory, sha256_file
from .models import CacheEntry, FetchResult
from .network.retry import RETRYABLE_STATUS_CODES, create_fetch_retry_policy
from .settings import RetrySettings

__all__ = ["ContentCache", "cache_slot_name"]

logger = logging.getLogger("FoundryPod.ComponentInstall")

_KNOWN_SUFFIXES = (
    ".tar.gz",
    ".tar.bz2",
    ".tar.xz",
    ".tgz",
    ".tbz2",
    ".txz",
    ".tar",
    ".zip",
    ".json",
)
_LEDGER_NAME = "install-fingerprints.json"
_LEDGER_LOCK_TIMEOUT_SECONDS = 60.0
_MAX_JITTER_SECONDS = 2.0


def cache_slot_name(url: str) -> str:
    """Return the deterministic cache filename for ``url``.

    Examples:
        >>> cache_slot_name("https://example.org/pkg.tar.gz").endswith(".tar.gz")
        True
    """

    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:32]
    path = urlparse(url).path.lower()
    suffix = next((candidate for candidate in _KNOWN_SUFFIXES if path.endswith(candidate)), ".bin")
    return f"{digest}{suffix}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentCache:
    """Fetch URLs into a local cache directory, reusing unchanged copies.

    One instance is constructed per installer run and passed explicitly to the
    resolver and install engine.

    Args:
        base_dir: Directory owned by the cache; created on first write.
        client: HTTPX client used for network fetches; not closed by the cache.
        retry: Retry bound and backoff for each URL.
        max_age_seconds: Entries older than this are revalidated; ``None``
            keeps valid entries indefinitely.
        stagger_seconds: Delay (plus up to two seconds of jitter) before the
            first network fetch of this instance.
        sleep: Sleep function used for backoff and stagger, replaceable in tests.
    """

    def __init__(
        self,
        base_dir: Path,
        client: httpx.Client,
        *,
        retry: Optional[RetrySettings] = None,
        max_age_seconds: Optional[float] = None,
        stagger_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.base_dir = Path(base_dir)
        self._client = client
        self._retry = retry or RetrySettings()
        self._max_age_seconds = max_age_seconds
        self._stagger_seconds = stagger_seconds
        self._sleep = sleep
        self._clock = clock

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._results: Dict[str, FetchResult] = {}
        self._staggered = False
        self._stagger_lock = threading.Lock()
        self._ledger_lock = threading.Lock()
        self._counter_lock = threading.Lock()
        self.network_fetches = 0

    # --- slots and metadata ------------------------------------------------

    def path_for(self, url: str) -> Path:
        return self.base_dir / cache_slot_name(url)

    def meta_path_for(self, url: str) -> Path:
        return self.base_dir / f"{cache_slot_name(url)}.meta.json"

    def read_meta_for_url(self, url: str) -> Optional[CacheEntry]:
        """Return the persisted metadata for ``url``, or ``None`` if absent or unreadable."""

        meta_path = self.meta_path_for(url)
        if not meta_path.is_file():
            return None
        try:
            entry = CacheEntry.model_validate_json(meta_path.read_text(encoding="utf-8"))
        except (OSError, PydanticValidationError) as exc:
            logger.warning(
                "ignoring unreadable cache metadata",
                extra={"stage": "cache", "url": url, "error": str(exc)},
            )
            return None
        if entry.url != url:
            return None
        return entry

    def _write_meta(self, entry: CacheEntry) -> None:
        atomic_write_text(self.meta_path_for(entry.url), entry.model_dump_json(indent=2))

    def _entry_is_intact(self, entry: CacheEntry) -> bool:
        path = Path(entry.local_file_path)
        if not path.is_file():
            return False
        try:
            return sha256_file(path) == entry.content_fingerprint
        except OSError:
            return False

    def _entry_is_fresh(self, entry: CacheEntry) -> bool:
        if self._max_age_seconds is None:
            return True
        fetched_at = entry.fetched_at
        if fetched_at.tzinfo is None:
            fetched_at = fetched_at.replace(tzinfo=timezone.utc)
        age = (self._clock() - fetched_at).total_seconds()
        return age < self._max_age_seconds

    # --- fetching ----------------------------------------------------------

    def _lock_for(self, url: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(url)
            if lock is None:
                lock = threading.Lock()
                self._locks[url] = lock
            return lock

    def fetch_to_file_with_cache(self, url: str) -> FetchResult:
        """Return a local file holding the content of ``url``.

        Returns:
            ``FetchResult(success=True, path, from_cache)`` when a cached or
            freshly downloaded copy is available, otherwise
            ``FetchResult(success=False, error)`` once retries are exhausted.
        """

        with self._lock_for(url):
            memo = self._results.get(url)
            if memo is not None:
                return memo
            try:
                cache_slot_name(url)
                httpx.URL(url)
            except (ValueError, httpx.InvalidURL) as exc:
                logger.warning(
                    "invalid fetch url",
                    extra={"stage": "cache", "url": url, "error": str(exc)},
                )
                result = FetchResult.failed(f"Invalid URL {url!r}: {exc}")
            else:
                result = self._fetch_locked(url)
            self._results[url] = result
            return result

    def _fetch_locked(self, url: str) -> FetchResult:
        entry = self.read_meta_for_url(url)
        if entry is not None and not self._entry_is_intact(entry):
            logger.info(
                "cached copy changed on disk; refetching",
                extra={"stage": "cache", "url": url},
            )
            entry = None
        if entry is not None and self._entry_is_fresh(entry):
            logger.debug("cache hit", extra={"stage": "cache", "url": url})
            return FetchResult.ok(Path(entry.local_file_path), from_cache=True)

        self._stagger_once()
        policy = create_fetch_retry_policy(self._retry, sleep=self._sleep)
        try:
            for attempt in policy:
                with attempt:
                    path, from_cache = self._download(url, entry)
        except (httpx.HTTPError, httpx.InvalidURL, FetchError, OSError) as exc:
            logger.warning(
                "fetch failed",
                extra={"stage": "cache", "url": url, "error": str(exc)},
            )
            return FetchResult.failed(f"Failed to fetch {url}: {exc}")
        return FetchResult.ok(path, from_cache=from_cache)

    def _stagger_once(self) -> None:
        if self._stagger_seconds <= 0:
            return
        with self._stagger_lock:
            if self._staggered:
                return
            self._staggered = True
            delay = self._stagger_seconds + random.uniform(0.0, _MAX_JITTER_SECONDS)
            logger.info(
                "staggering first fetch",
                extra={"stage": "cache", "delay_sec": round(delay, 2)},
            )
            self._sleep(delay)

    def _download(self, url: str, previous: Optional[CacheEntry]) -> Tuple[Path, bool]:
        headers: Dict[str, str] = {}
        if previous is not None:
            if previous.etag:
                headers["If-None-Match"] = previous.etag
            if previous.last_modified:
                headers["If-Modified-Since"] = previous.last_modified

        with self._counter_lock:
            self.network_fetches += 1
        logger.info("fetching", extra={"stage": "cache", "url": url})
        with self._client.stream("GET", url, headers=headers) as response:
            if response.status_code == 304 and previous is not None:
                refreshed = previous.model_copy(update={"fetched_at": self._clock()})
                self._write_meta(refreshed)
                logger.info("cached copy revalidated", extra={"stage": "cache", "url": url})
                return Path(previous.local_file_path), True
            if response.status_code >= 400:
                raise FetchError(
                    f"HTTP {response.status_code} for {url}",
                    url=url,
                    status_code=response.status_code,
                    retryable=response.status_code in RETRYABLE_STATUS_CODES,
                )
            destination = self.path_for(url)
            fingerprint = self._stream_to_file(response, destination)
            etag = response.headers.get("ETag")
            last_modified = response.headers.get("Last-Modified")

        entry = CacheEntry(
            url=url,
            local_file_path=destination,
            content_fingerprint=fingerprint,
            fetched_at=self._clock(),
            etag=etag,
            last_modified=last_modified,
        )
        self._write_meta(entry)
        return destination, False

    def _stream_to_file(self, response: httpx.Response, destination: Path) -> str:
        destination.parent.mkdir(parents=True, exist_ok=True)
        hasher = hashlib.sha256()
        fd, part_name = tempfile.mkstemp(
            prefix=f".{destination.name}.", suffix=".part", dir=destination.parent
        )
        try:
            with os.fdopen(fd, "wb") as handle:
                for chunk in response.iter_bytes():
                    if not chunk:
                        continue
                    handle.write(chunk)
                    hasher.update(chunk)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(part_name, destination)
        except BaseException:
            Path(part_name).unlink(missing_ok=True)
            raise
        return hasher.hexdigest()

    # --- fingerprints ------------------------------------------------------

    def _ledger_path(self) -> Path:
        return self.base_dir / _LEDGER_NAME

    @contextmanager
    def _locked_ledger(self) -> Iterator[Dict[str, Dict[str, str]]]:
        """Hold the ledger's file lock and yield its current on-disk contents.

        The ledger may be shared by several installer processes through one
        cache directory, so every read-modify-write re-reads the file under a
        :class:`filelock.FileLock`.
        """

        path = self._ledger_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = path.with_name(f"{path.name}.lock")
        with self._ledger_lock:
            try:
                with FileLock(str(lock_path), timeout=_LEDGER_LOCK_TIMEOUT_SECONDS):
                    yield self._read_ledger(path)
            except Timeout as exc:
                raise FilesystemError(
                    f"Timed out waiting for fingerprint ledger lock {lock_path}",
                    path=str(lock_path),
                ) from exc

    def _read_ledger(self, path: Path) -> Dict[str, Dict[str, str]]:
        if not path.is_file():
            return {}
        try:
            loaded = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                "discarding unreadable fingerprint ledger",
                extra={"stage": "cache", "error": str(exc)},
            )
            return {}
        if not isinstance(loaded, dict):
            return {}
        return {key: value for key, value in loaded.items() if isinstance(value, dict)}

    def _write_ledger(self, ledger: Dict[str, Dict[str, str]]) -> None:
        atomic_write_text(self._ledger_path(), json.dumps(ledger, indent=2, sort_keys=True))

    def recorded_fingerprint(self, key: str) -> Optional[Dict[str, str]]:
        """Return the ledger record for ``key``.

        Records carry ``fingerprint`` (source digest), ``source``,
        ``installed`` (digest of the published tree) and ``recorded_at``.
        """

        with self._locked_ledger() as ledger:
            record = ledger.get(key)
            return dict(record) if record is not None else None

    def record_fingerprint(
        self, key: str, fingerprint: str, *, source: str = "", installed: str = ""
    ) -> None:
        """Persist ``fingerprint`` for ``key``, replacing any previous record."""

        with self._locked_ledger() as ledger:
            ledger[key] = {
                "fingerprint": fingerprint,
                "source": source,
                "installed": installed,
                "recorded_at": self._clock().isoformat(),
            }
            self._write_ledger(ledger)

    def forget_fingerprint(self, key: str) -> None:
        with self._locked_ledger() as ledger:
            if ledger.pop(key, None) is not None:
                self._write_ledger(ledger)

    def has_local_file_changed(self, path: Path, key: str) -> Tuple[bool, str]:
        """Compare the digest of file ``path`` with the ledger record for ``key``.

        Returns:
            ``(changed, fingerprint)`` where ``fingerprint`` is the current digest.
        """

        fingerprint = sha256_file(path)
        record = self.recorded_fingerprint(key)
        return record is None or record.get("fingerprint") != fingerprint, fingerprint

    def has_local_directory_changed(self, path: Path, key: str) -> Tuple[bool, str]:
        """Directory counterpart of :meth:`has_local_file_changed`."""

        fingerprint = sha256_directory(path)
        record = self.recorded_fingerprint(key)
        return record is None or record.get("fingerprint") != fingerprint, fingerprint
