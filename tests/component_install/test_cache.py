# === NAVMAP v1 ===
# {
#   "module": "tests.component_install.test_cache",
#   "purpose": "Content cache behaviour against an httpx.MockTransport origin.",
#   "sections": [
#     {"id": "hits", "name": "Cache Hits", "anchor": "HIT", "kind": "tests"},
#     {"id": "retries", "name": "Retries", "anchor": "RTY", "kind": "tests"},
#     {"id": "revalidation", "name": "Revalidation", "anchor": "REV", "kind": "tests"},
#     {"id": "ledger", "name": "Fingerprint Ledger", "anchor": "LED", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Content cache behaviour against an ``httpx.MockTransport`` origin.

Exercises deterministic slots, metadata sidecars, offline reuse, bounded
retries, single-flight fetches, stagger, conditional revalidation and the
install fingerprint ledger."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest

from FoundryPod.ComponentInstall.cache import cache_slot_name
from install_helpers import make_component_dir

URL = "https://cdn.example.org/releases/dice.tar.gz"


def test_cache_slot_name_is_deterministic_and_keeps_suffix() -> None:
    assert cache_slot_name(URL) == cache_slot_name(URL)
    assert cache_slot_name(URL).endswith(".tar.gz")
    assert cache_slot_name("https://example.org/module.json").endswith(".json")
    assert cache_slot_name("https://example.org/download?id=3").endswith(".bin")
    assert cache_slot_name(URL) != cache_slot_name(URL + "?v=2")


def test_first_fetch_downloads_and_writes_metadata(server, make_cache) -> None:
    server.add_bytes(URL, b"payload", ETag='"v1"')
    cache = make_cache()

    result = cache.fetch_to_file_with_cache(URL)

    assert result.success and not result.from_cache
    assert result.path == cache.path_for(URL)
    assert result.path.read_bytes() == b"payload"
    entry = cache.read_meta_for_url(URL)
    assert entry is not None
    assert entry.etag == '"v1"'
    assert Path(entry.local_file_path) == result.path
    assert not list(cache.base_dir.glob("*.part"))


def test_second_instance_reuses_cache_without_network(server, make_cache) -> None:
    server.add_bytes(URL, b"payload")
    make_cache().fetch_to_file_with_cache(URL)

    second = make_cache()
    result = second.fetch_to_file_with_cache(URL)

    assert result.success and result.from_cache
    assert second.network_fetches == 0
    assert server.hits(URL) == 1


def test_tampered_cache_file_is_refetched(server, make_cache) -> None:
    server.add_bytes(URL, b"payload")
    cache = make_cache()
    cache.fetch_to_file_with_cache(URL)
    cache.path_for(URL).write_bytes(b"corrupted")

    result = make_cache().fetch_to_file_with_cache(URL)

    assert not result.from_cache
    assert result.path.read_bytes() == b"payload"
    assert server.hits(URL) == 2


def test_retryable_status_then_success(server, make_cache, sleeps) -> None:
    server.add(URL, httpx.Response(503), httpx.Response(500), httpx.Response(200, content=b"ok"))
    cache = make_cache()

    result = cache.fetch_to_file_with_cache(URL)

    assert result.success
    assert result.path.read_bytes() == b"ok"
    assert server.hits(URL) == 3
    assert len(sleeps) == 2


def test_transport_errors_are_retried(server, make_cache) -> None:
    calls = {"count": 0}

    def flaky(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, content=b"ok")

    server.add(URL, flaky)

    assert make_cache().fetch_to_file_with_cache(URL).success
    assert calls["count"] == 2


def test_exhausted_retries_return_failed_result(server, make_cache, sleeps) -> None:
    server.add(URL, httpx.Response(502))
    cache = make_cache()

    result = cache.fetch_to_file_with_cache(URL)

    assert not result.success
    assert result.path is None
    assert "502" in (result.error or "")
    assert server.hits(URL) == 3
    assert not cache.path_for(URL).exists()


def test_client_errors_are_not_retried(server, make_cache, sleeps) -> None:
    server.add(URL, httpx.Response(404))

    result = make_cache().fetch_to_file_with_cache(URL)

    assert not result.success
    assert server.hits(URL) == 1
    assert sleeps == []


def test_concurrent_callers_share_one_fetch(server, make_cache) -> None:
    gate = threading.Event()

    def slow(request: httpx.Request) -> httpx.Response:
        gate.wait(timeout=5)
        return httpx.Response(200, content=b"shared")

    server.add(URL, slow)
    cache = make_cache()

    with ThreadPoolExecutor(max_workers=4) as pool:
        futures = [pool.submit(cache.fetch_to_file_with_cache, URL) for _ in range(4)]
        gate.set()
        results = [future.result() for future in futures]

    assert server.hits(URL) == 1
    assert cache.network_fetches == 1
    assert len({result.path for result in results}) == 1
    assert all(result.success for result in results)


def test_stagger_sleeps_once_before_first_network_fetch(server, make_cache, sleeps, monkeypatch) -> None:
    monkeypatch.setattr("FoundryPod.ComponentInstall.cache.random.uniform", lambda a, b: b)
    server.add_bytes(URL, b"a")
    server.add_bytes(URL + ".sig", b"b")
    cache = make_cache(stagger_seconds=3.0)

    cache.fetch_to_file_with_cache(URL)
    cache.fetch_to_file_with_cache(URL + ".sig")

    assert sleeps == [5.0]


def test_stagger_skipped_for_cache_hits(server, make_cache, sleeps) -> None:
    server.add_bytes(URL, b"a")
    make_cache().fetch_to_file_with_cache(URL)

    make_cache(stagger_seconds=3.0).fetch_to_file_with_cache(URL)

    assert sleeps == []


def test_expired_entry_revalidates_with_conditional_request(server, make_cache) -> None:
    seen_headers = []

    def origin(request: httpx.Request) -> httpx.Response:
        seen_headers.append(dict(request.headers))
        if request.headers.get("If-None-Match") == '"v1"':
            return httpx.Response(304)
        return httpx.Response(200, content=b"body", headers={"ETag": '"v1"'})

    server.add(URL, origin)
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    make_cache(max_age_seconds=60, clock=lambda: start).fetch_to_file_with_cache(URL)

    later = start + timedelta(minutes=5)
    cache = make_cache(max_age_seconds=60, clock=lambda: later)
    result = cache.fetch_to_file_with_cache(URL)

    assert result.success and result.from_cache
    assert result.path.read_bytes() == b"body"
    assert seen_headers[1].get("if-none-match") == '"v1"'
    assert cache.read_meta_for_url(URL).fetched_at == later


def test_fresh_entry_is_not_revalidated(server, make_cache) -> None:
    server.add_bytes(URL, b"body")
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    make_cache(max_age_seconds=600, clock=lambda: now).fetch_to_file_with_cache(URL)

    make_cache(max_age_seconds=600, clock=lambda: now + timedelta(seconds=30)).fetch_to_file_with_cache(URL)

    assert server.hits(URL) == 1


def test_fingerprint_ledger_tracks_changes(tmp_path, make_cache) -> None:
    cache = make_cache()
    tree = make_component_dir(tmp_path / "module", {"module.json": "{}"})

    changed, fingerprint = cache.has_local_directory_changed(tree, "modules/dice")
    assert changed is True

    cache.record_fingerprint("modules/dice", fingerprint, source="local directory")
    assert make_cache().has_local_directory_changed(tree, "modules/dice") == (False, fingerprint)

    (tree / "module.json").write_text('{"v": 2}')
    assert make_cache().has_local_directory_changed(tree, "modules/dice")[0] is True

    cache.forget_fingerprint("modules/dice")
    assert make_cache().recorded_fingerprint("modules/dice") is None


def test_file_fingerprint_records_source(tmp_path, make_cache) -> None:
    cache = make_cache()
    archive = tmp_path / "world.tar"
    archive.write_bytes(b"tar-bytes")

    changed, fingerprint = cache.has_local_file_changed(archive, "worlds/campaign")
    cache.record_fingerprint("worlds/campaign", fingerprint, source="local archive")

    record = make_cache().recorded_fingerprint("worlds/campaign")
    assert changed is True
    assert record["fingerprint"] == fingerprint
    assert record["source"] == "local archive"


def test_unreadable_ledger_is_discarded(tmp_path, make_cache, caplog) -> None:
    (tmp_path / "cache").mkdir()
    (tmp_path / "cache" / "install-fingerprints.json").write_text("{oops")

    with caplog.at_level("WARNING", logger="FoundryPod.ComponentInstall"):
        assert make_cache().recorded_fingerprint("systems/x") is None

    assert any("fingerprint ledger" in record.getMessage() for record in caplog.records)


def test_unreadable_metadata_is_ignored(server, make_cache) -> None:
    server.add_bytes(URL, b"payload")
    cache = make_cache()
    cache.fetch_to_file_with_cache(URL)
    cache.meta_path_for(URL).write_text("not json")

    result = make_cache().fetch_to_file_with_cache(URL)

    assert result.success and not result.from_cache
    assert server.hits(URL) == 2


@pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
def test_all_retryable_statuses_are_retried(server, make_cache, status) -> None:
    server.add(URL, httpx.Response(status), httpx.Response(200, content=b"ok"))

    assert make_cache().fetch_to_file_with_cache(URL).success
    assert server.hits(URL) == 2


@pytest.mark.parametrize("url", ["https://[oops/pkg.tar.gz", "https://example.org:notaport/pkg.tar.gz"])
def test_invalid_url_returns_failed_result(server, make_cache, url) -> None:
    cache = make_cache()

    result = cache.fetch_to_file_with_cache(url)

    assert not result.success
    assert "Invalid URL" in (result.error or "")
    assert server.requests == []
    assert cache.network_fetches == 0


def test_ledger_updates_from_separate_instances_are_merged(tmp_path, make_cache) -> None:
    first, second = make_cache(), make_cache()
    assert first.recorded_fingerprint("a") is None

    second.record_fingerprint("b", "digest-b", source="local directory", installed="tree-b")
    first.record_fingerprint("a", "digest-a", source="local directory", installed="tree-a")

    reader = make_cache()
    assert reader.recorded_fingerprint("a")["installed"] == "tree-a"
    assert reader.recorded_fingerprint("b")["fingerprint"] == "digest-b"

    second.forget_fingerprint("b")
    assert reader.recorded_fingerprint("a") is not None
    assert reader.recorded_fingerprint("b") is None


def test_network_fetch_count_is_exact_across_threads(server, make_cache) -> None:
    urls = [f"https://cdn.example.org/releases/pkg-{index}.tar.gz" for index in range(16)]
    for url in urls:
        server.add_bytes(url, url.encode("utf-8"))
    cache = make_cache()

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(cache.fetch_to_file_with_cache, urls))

    assert all(result.success for result in results)
    assert cache.network_fetches == len(urls)
