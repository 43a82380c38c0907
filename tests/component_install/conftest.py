"""Shared fixtures for the component_install test suite."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Union

import httpx
import pytest

from FoundryPod.ComponentInstall.cache import ContentCache
from FoundryPod.ComponentInstall.network.client import create_http_client
from FoundryPod.ComponentInstall.settings import InstallSettings, RetrySettings

Route = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class StubServer:
    """In-memory HTTP origin for ``httpx.MockTransport``.

    Each URL maps to a queue of responses; the last one is repeated once the
    queue is drained.  Every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: Dict[str, List[Route]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, url: str, *responses: Route) -> None:
        self.routes[url] = list(responses)

    def add_json(self, url: str, payload: object) -> None:
        self.add(url, httpx.Response(200, content=json.dumps(payload).encode("utf-8")))

    def add_bytes(self, url: str, payload: bytes, **headers: str) -> None:
        self.add(url, httpx.Response(200, content=payload, headers=headers))

    def hits(self, url: str) -> int:
        return sum(1 for request in self.requests if str(request.url) == url)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(str(request.url))
        if not queue:
            return httpx.Response(404)
        route = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(route) and not isinstance(route, httpx.Response):
            return route(request)
        return httpx.Response(route.status_code, headers=route.headers, content=route.content)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def server() -> StubServer:
    return StubServer()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def make_cache(tmp_path: Path, server: StubServer, sleeps: List[float]):
    """Factory building a :class:`ContentCache` wired to ``server``."""

    clients: List[httpx.Client] = []

    def _factory(**kwargs: object) -> ContentCache:
        client = create_http_client(transport=server.transport())
        clients.append(client)
        kwargs.setdefault("retry", RetrySettings(max_attempts=3, backoff_base=0.01, backoff_max=0.05))
        kwargs.setdefault("sleep", sleeps.append)
        base_dir = kwargs.pop("base_dir", tmp_path / "cache")
        return ContentCache(base_dir, client, **kwargs)  # type: ignore[arg-type]

    yield _factory
    for client in clients:
        client.close()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "Data"
    path.mkdir()
    return path


@pytest.fixture
def make_settings(tmp_path: Path, data_dir: Path):
    """Factory for :class:`InstallSettings` isolated from the process environment."""

    def _factory(**overrides: object) -> InstallSettings:
        values: Dict[str, object] = {
            "foundry_version": "13.307",
            "data_dir": data_dir,
            "config_path": tmp_path / "container-config.json",
            "cache_dir": tmp_path / "cache",
            "retry": RetrySettings(max_attempts=2, backoff_base=0.0, backoff_max=0.0),
        }
        values.update(overrides)
        return InstallSettings(**values)

    return _factory


@pytest.fixture(autouse=True)
def _clean_install_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep container variables from the host out of every test."""

    for name in (
        "FOUNDRY_VERSION",
        "FOUNDRY_DATA_DIR",
        "CONTAINER_CONFIG_PATH",
        "CONTAINER_CACHE",
        "PATCH_DISABLE_PURGE",
        "PATCH_DRY_RUN",
        "PATCH_DEBUG",
        "FETCH_STAGGER_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _propagate_install_logs() -> Iterable[None]:
    """Ensure ``caplog`` sees installer records and drop handlers a test installed."""

    logger = logging.getLogger("FoundryPod.ComponentInstall")
    previous = (logger.propagate, logger.level)
    logger.propagate = True
    yield
    for handler in list(logger.handlers):
        if getattr(handler, "_component_install_managed", False):
            logger.removeHandler(handler)
            handler.close()
    logger.propagate, logger.level = previous

