"""Shared test fixtures and marker registration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from remote_mirror._cache import SnapshotCache
from remote_mirror._config import MirrorConfig, Repository
from remote_mirror._mirror import Mirror
from tests.fake_remote import FakeClient

if TYPE_CHECKING:
    from pathlib import Path


def pytest_configure(config: object) -> None:
    """Register custom markers."""
    if isinstance(config, pytest.Config):
        config.addinivalue_line("markers", "integration: talks to an in-process FTP server")


@pytest.fixture
def repository() -> Repository:
    return Repository(host="ftp.example.org", port=21, username="anonymous", stable_id="repo-1", name="Example")


@pytest.fixture
def config(tmp_path: Path) -> MirrorConfig:
    return MirrorConfig(cache_dir=tmp_path / "cache", scan_concurrency=2, transfer_concurrency=2, pacing_delay=0)


@pytest.fixture
def fake() -> FakeClient:
    return FakeClient(
        {
            "/@CBA/addons/a.pbo": b"aaaa",
            "/@CBA/addons/b.pbo": b"bbbbbbbb",
            "/@CBA/mod.cpp": b"name=cba",
            "/@ACE/addons/ace.pbo": b"ace!",
            "/readme.txt": b"hello",
        }
    )


@pytest.fixture
def mirror(config: MirrorConfig, fake: FakeClient) -> Mirror:
    return Mirror(config, cache=SnapshotCache(config.cache_dir), client_factory=lambda repo, cfg: fake)
