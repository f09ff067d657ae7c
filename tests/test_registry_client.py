"""
Tests for the remote registry client.
"""

import json
import threading
from concurrent.futures import CancelledError

import pytest
import requests

from conftest import REGISTRY_URL, FakeHttp, FakeResponse, manifest_dict
from registry_cache import RegistryCacheStore
from registry_client import RegistryClient, RegistryFetchError

TREE_MAIN = "https://api.github.com/repos/example/community/git/trees/main?recursive=1"
TREE_MASTER = "https://api.github.com/repos/example/community/git/trees/master?recursive=1"


def raw_url(path, branch="main"):
    return f"https://raw.githubusercontent.com/example/community/{branch}/{path}"


def tree(*entries, truncated=False):
    return FakeResponse(json_data={"sha": "root", "truncated": truncated, "tree": [
        {"path": path, "type": "blob", "sha": sha} for path, sha in entries
    ]})


def manifest_response(name, **kwargs):
    return FakeResponse(content=json.dumps(manifest_dict(name, **kwargs)).encode("utf-8"))


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cache_store(tmp_path):
    return RegistryCacheStore(tmp_path / "registry-cache.json")


@pytest.fixture
def client(fake_http, cache_store, clock):
    client = RegistryClient(REGISTRY_URL, cache_store, http=fake_http, clock=clock)
    yield client
    client.close()


def standard_registry(fake_http, branch="main"):
    tree_url = TREE_MAIN if branch == "main" else TREE_MASTER
    fake_http.add(tree_url, tree(
        ("Audio/extension.json", "sha-audio"),
        ("Audio/Script/Audio.cs", "sha-code"),
        ("Input/extension.json", "sha-input"),
        ("README.md", "sha-readme"),
        ("extension.json", "sha-root"),
    ))
    fake_http.add(raw_url("Audio/extension.json", branch), manifest_response("audio", version="1.0.0"))
    fake_http.add(raw_url("Input/extension.json", branch), manifest_response("input", version="2.0.0"))


class TestFetchRegistry:
    def test_fetch_builds_remote_packages(self, client, fake_http, cache_store):
        standard_registry(fake_http)

        packages = client.fetch_registry().result(timeout=5)

        assert [p.name for p in packages] == ["audio", "input"]
        audio = packages[0]
        assert audio.remote_folder_name == "Audio"
        assert audio.download_url == "https://github.com/example/community/tree/main/Audio"
        assert not audio.is_installed
        assert [r.path for r in cache_store.load().records] == ["Audio/extension.json", "Input/extension.json"]

    def test_second_call_within_ttl_hits_no_network(self, client, fake_http, clock):
        standard_registry(fake_http)
        first = client.fetch_registry().result(timeout=5)
        calls_before = len(fake_http.calls)

        clock.now += 60
        fetch = client.fetch_registry()

        assert fetch.fresh
        assert fetch.done()
        assert fetch.result() == first
        assert len(fake_http.calls) == calls_before

    def test_force_refresh_ignores_ttl(self, client, fake_http):
        standard_registry(fake_http)
        client.fetch_registry().result(timeout=5)

        client.fetch_registry(force_refresh=True).result(timeout=5)

        assert len(fake_http.calls_to("git/trees")) == 2

    def test_unchanged_manifests_come_from_cache(self, client, fake_http, clock):
        standard_registry(fake_http)
        client.fetch_registry().result(timeout=5)

        clock.now += 301
        fake_http.add(TREE_MAIN, tree(("Audio/extension.json", "sha-audio"), ("Input/extension.json", "sha-input-2")))
        fake_http.add(raw_url("Input/extension.json"), manifest_response("input", version="2.1.0"))
        packages = client.fetch_registry().result(timeout=5)

        assert len(fake_http.calls_to("Audio/extension.json")) == 1
        assert len(fake_http.calls_to("Input/extension.json")) == 2
        assert {p.name: p.version for p in packages} == {"audio": "1.0.0", "input": "2.1.0"}

    def test_removed_manifests_drop_out_of_cache(self, client, fake_http, cache_store):
        standard_registry(fake_http)
        client.fetch_registry().result(timeout=5)

        fake_http.add(TREE_MAIN, tree(("Input/extension.json", "sha-input")))
        packages = client.fetch_registry(force_refresh=True).result(timeout=5)

        assert [p.name for p in packages] == ["input"]
        assert [r.path for r in cache_store.load().records] == ["Input/extension.json"]

    def test_falls_back_to_master(self, client, fake_http):
        standard_registry(fake_http, branch="master")

        packages = client.fetch_registry().result(timeout=5)

        assert [p.name for p in packages] == ["audio", "input"]
        assert packages[0].download_url.endswith("/tree/master/Audio")
        assert fake_http.calls[0] == TREE_MAIN

    def test_transport_error_on_both_branches(self, client, fake_http, cache_store):
        fake_http.add(TREE_MAIN, requests.ConnectionError("offline"))
        fake_http.add(TREE_MASTER, requests.Timeout("timed out"))

        fetch = client.fetch_registry()

        with pytest.raises(RegistryFetchError):
            fetch.result(timeout=5)
        assert not cache_store.cache_file.exists()
        assert client.snapshot is None

    def test_failed_refresh_keeps_previous_snapshot_and_cache(self, client, fake_http, cache_store):
        standard_registry(fake_http)
        first = client.fetch_registry().result(timeout=5)
        cache_before = cache_store.cache_file.read_text(encoding="utf-8")

        fake_http.add(TREE_MAIN, FakeResponse(500))
        fetch = client.fetch_registry(force_refresh=True)

        assert fetch.snapshot == first
        with pytest.raises(RegistryFetchError):
            fetch.result(timeout=5)
        assert client.snapshot == first
        assert cache_store.cache_file.read_text(encoding="utf-8") == cache_before

    def test_single_download_failure_does_not_block_others(self, client, fake_http):
        standard_registry(fake_http)
        fake_http.add(raw_url("Audio/extension.json"), requests.ConnectionError("reset"))
        fake_http.add(raw_url("Input/extension.json"), manifest_response("input"))

        packages = client.fetch_registry().result(timeout=5)

        assert [p.name for p in packages] == ["input"]

    def test_unparsable_manifest_is_excluded(self, client, fake_http):
        standard_registry(fake_http)
        fake_http.add(raw_url("Audio/extension.json"), FakeResponse(content=b"{broken"))

        packages = client.fetch_registry().result(timeout=5)

        assert [p.name for p in packages] == ["input"]

    def test_disk_cache_is_served_while_refreshing(self, fake_http, cache_store, clock):
        standard_registry(fake_http)
        warm = RegistryClient(REGISTRY_URL, cache_store, http=fake_http, clock=clock)
        warm.fetch_registry().result(timeout=5)
        warm.close()

        cold = RegistryClient(REGISTRY_URL, cache_store, http=FakeHttp(), clock=clock)
        try:
            fetch = cold.fetch_registry()
            assert [p.name for p in fetch.snapshot] == ["audio", "input"]
            assert all(p.from_cache for p in fetch.snapshot)
            with pytest.raises(RegistryFetchError):
                fetch.result(timeout=5)
        finally:
            cold.close()

    def test_callback_receives_result(self, client, fake_http):
        standard_registry(fake_http)
        done = threading.Event()
        received = {}

        def callback(result):
            received.update(result)
            done.set()

        client.fetch_registry(callback=callback)

        assert done.wait(5)
        assert received["success"] is True
        assert [p.name for p in received["packages"]] == ["audio", "input"]

    def test_callback_reports_failure(self, client, fake_http):
        done = threading.Event()
        received = {}

        def callback(result):
            received.update(result)
            done.set()

        client.fetch_registry(callback=callback)

        assert done.wait(5)
        assert received["success"] is False
        assert received["error"]


class GatedHttp(FakeHttp):
    """Holds tree listings until released, to observe overlapping fetches."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def get(self, url, headers=None, timeout=None, stream=False):
        if "git/trees" in url:
            self.release.wait(5)
        return super().get(url, headers=headers, timeout=timeout, stream=stream)


def test_overlapping_fetches_share_one_refresh(cache_store, clock):
    http = GatedHttp()
    standard_registry(http)
    client = RegistryClient(REGISTRY_URL, cache_store, http=http, clock=clock)
    try:
        first = client.fetch_registry()
        second = client.fetch_registry(force_refresh=True)
        assert first.future is second.future

        http.release.set()
        assert [p.name for p in second.result(timeout=5)] == ["audio", "input"]
        assert len(http.calls_to("git/trees")) == 1
    finally:
        client.close()


def test_cancel_leaves_cache_and_snapshot_untouched(fake_http, cache_store, clock):
    standard_registry(fake_http)
    warm = RegistryClient(REGISTRY_URL, cache_store, http=fake_http, clock=clock)
    warm.fetch_registry().result(timeout=5)
    warm.close()
    cache_before = cache_store.cache_file.read_text(encoding="utf-8")

    http = GatedHttp()
    http.add(TREE_MAIN, tree(("Audio/extension.json", "sha-audio-2"), ("Input/extension.json", "sha-input-2")))
    http.add(raw_url("Audio/extension.json"), manifest_response("audio", version="9.0.0"))
    http.add(raw_url("Input/extension.json"), manifest_response("input", version="9.0.0"))
    client = RegistryClient(REGISTRY_URL, cache_store, http=http, clock=clock)
    done = threading.Event()
    received = {}

    def callback(result):
        received.update(result)
        done.set()

    try:
        fetch = client.fetch_registry(callback=callback)
        fetch.cancel()
        http.release.set()

        with pytest.raises(CancelledError):
            fetch.result(timeout=5)
        assert done.wait(5)
        assert received["success"] is False
        assert [p.version for p in received["packages"]] == ["1.0.0", "2.0.0"]
        assert client.snapshot is None
        assert cache_store.cache_file.read_text(encoding="utf-8") == cache_before
        assert http.calls_to("raw.githubusercontent.com") == []
    finally:
        client.close()
