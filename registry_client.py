"""
Registry Client
Synchronizes the remote extension catalog with an on-disk cache
"""

import logging
import posixpath
import threading
import time
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, as_completed

import requests

from github_api import DEFAULT_BRANCHES, GitHubRepo, build_headers
from manifest import MANIFEST_FILENAME, ManifestResult, RemotePackage, parse_manifest
from registry_cache import CacheData, CacheRecord

logger = logging.getLogger(__name__)

REGISTRY_TTL_SECONDS = 5 * 60


class RegistryFetchError(Exception):
    pass


class RegistryFetch:
    """Handle returned by RegistryClient.fetch_registry.

    snapshot is what can be shown right now (fresh, stale or cached data);
    future completes with the refreshed package list or raises
    RegistryFetchError.
    """

    def __init__(self, snapshot, future, fresh=False, cancel_event=None):
        self.snapshot = snapshot
        self.future = future
        self.fresh = fresh
        self._cancel_event = cancel_event

    def result(self, timeout=None):
        return self.future.result(timeout=timeout)

    def done(self):
        return self.future.done()

    def cancel(self):
        """Ask the in-flight refresh to stop before it replaces the cache"""
        if self._cancel_event is not None:
            self._cancel_event.set()
        self.future.cancel()


class RegistryClient:
    def __init__(self, repo_url, cache_store, http=None, token=None, timeout=15,
                 max_workers=8, ttl=REGISTRY_TTL_SECONDS, clock=time.monotonic):
        """Initialize registry client.

        Args:
            repo_url: str - GitHub URL of the community repository
            cache_store: RegistryCacheStore - Owner of the on-disk cache file
            http: Optional object with a requests-style get(); defaults to requests
            token: Optional str - GitHub token for API rate limits
            timeout: int - Seconds per network request
            max_workers: int - Concurrent manifest downloads
            ttl: int - Seconds an in-memory snapshot stays fresh
            clock: callable - Monotonic time source
        """
        self.repo = GitHubRepo(repo_url)
        self.cache_store = cache_store
        self.http = http or requests
        self.token = token
        self.timeout = timeout
        self.max_workers = max_workers
        self.ttl = ttl
        self.clock = clock

        self._lock = threading.Lock()
        self._snapshot = None
        self._snapshot_time = None
        self._inflight = None
        self._inflight_cancel = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='registry-refresh')

    @property
    def snapshot(self):
        with self._lock:
            return list(self._snapshot) if self._snapshot is not None else None

    def _snapshot_is_fresh(self):
        return (
            self._snapshot is not None
            and self._snapshot_time is not None
            and self.clock() - self._snapshot_time < self.ttl
        )

    def fetch_registry(self, force_refresh=False, callback=None):
        """Return the remote catalog, refreshing it in the background when stale.

        Args:
            force_refresh: bool - Ignore the in-memory TTL
            callback: Optional callable - Called with {'success', 'packages', 'error'}
                once the refresh settles

        Returns:
            RegistryFetch - Immediate snapshot plus a future for the refreshed list
        """
        fresh = False
        cancel_event = None
        with self._lock:
            immediate = list(self._snapshot) if self._snapshot is not None else None

            if not force_refresh and self._snapshot_is_fresh():
                fresh = True
                future = Future()
                future.set_result(immediate)
            elif self._inflight is not None and not self._inflight.done():
                future, cancel_event = self._inflight, self._inflight_cancel
            else:
                cancel_event = threading.Event()
                future = self._executor.submit(self.refresh, cancel_event)
                self._inflight, self._inflight_cancel = future, cancel_event

        if immediate is None:
            immediate = self.cached_packages()

        # callbacks may run synchronously, so they are attached outside the lock
        fetch = RegistryFetch(immediate, future, fresh=fresh, cancel_event=cancel_event)
        self._attach_callback(fetch, callback)
        return fetch

    def _attach_callback(self, fetch, callback):
        if callback is None:
            return

        def _done(future):
            if future.cancelled():
                callback({'success': False, 'packages': fetch.snapshot, 'error': 'Registry fetch cancelled'})
                return
            error = future.exception()
            if error is not None:
                callback({'success': False, 'packages': fetch.snapshot, 'error': str(error)})
            else:
                callback({'success': True, 'packages': future.result(), 'error': None})

        fetch.future.add_done_callback(_done)

    def cached_packages(self):
        """Packages from the on-disk cache, for display before the network answers"""
        cache = self.cache_store.load()
        return [self._to_remote_package(record, cache.branch, from_cache=True) for record in cache.records]

    def refresh(self, cancel_event=None):
        """Synchronously refresh the catalog from the remote repository.

        Args:
            cancel_event: Optional threading.Event - Set to abandon the refresh

        Returns:
            list - RemotePackage entries

        Raises:
            RegistryFetchError - when the tree listing fails on every branch
            CancelledError - when cancelled before the cache is replaced
        """
        branch, entries = self._fetch_tree()

        cached = self.cache_store.load().by_path()
        manifest_entries = [e for e in entries if self._is_manifest_entry(e)]

        records = {}
        to_download = []
        for entry in manifest_entries:
            record = cached.get(entry['path'])
            if record is not None and record.sha == entry.get('sha'):
                records[entry['path']] = record
            else:
                to_download.append(entry)

        logger.info(
            "Registry %s@%s: %d manifests, %d cached, %d to download",
            self.repo, branch, len(manifest_entries), len(records), len(to_download)
        )

        if to_download:
            records.update(self._download_manifests(to_download, branch, cancel_event))

        if cancel_event is not None and cancel_event.is_set():
            raise CancelledError('Registry refresh cancelled')

        ordered = [records[e['path']] for e in manifest_entries if e['path'] in records]
        self.cache_store.save(CacheData(records=ordered, branch=branch))

        packages = [self._to_remote_package(record, branch) for record in ordered]
        with self._lock:
            self._snapshot = packages
            self._snapshot_time = self.clock()
        return list(packages)

    def _fetch_tree(self):
        """Fetch the recursive file tree, trying each conventional branch once"""
        headers = build_headers(self.token, accept='application/vnd.github.v3+json')
        errors = []
        for branch in DEFAULT_BRANCHES:
            url = self.repo.tree_url(branch)
            try:
                response = self.http.get(url, headers=headers, timeout=self.timeout)
                if response.status_code != 200:
                    errors.append(f'{branch}: HTTP {response.status_code}')
                    logger.warning("Tree listing for %s@%s failed with HTTP %s", self.repo, branch, response.status_code)
                    continue
                data = response.json()
                tree = data.get('tree') if isinstance(data, dict) else None
                if not isinstance(tree, list):
                    errors.append(f'{branch}: malformed tree listing')
                    continue
                if data.get('truncated'):
                    logger.warning("Tree listing for %s@%s is truncated; some extensions may be missing", self.repo, branch)
                return branch, tree
            except (requests.RequestException, ValueError) as e:
                errors.append(f'{branch}: {e}')
                logger.warning("Tree listing for %s@%s failed: %s", self.repo, branch, e)

        message = f"Could not list registry {self.repo.web_url} ({'; '.join(errors)})"
        logger.error(message)
        raise RegistryFetchError(message)

    def _is_manifest_entry(self, entry):
        path = entry.get('path') or ''
        if entry.get('type', 'blob') != 'blob' or '/' not in path:
            return False
        folder = path.split('/')[0]
        return posixpath.basename(path) == MANIFEST_FILENAME and not folder.startswith('.')

    def _download_manifests(self, entries, branch, cancel_event):
        downloaded = {}
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='manifest') as pool:
            futures = {}
            for entry in entries:
                if cancel_event is not None and cancel_event.is_set():
                    break
                futures[pool.submit(self._download_manifest, entry['path'], branch)] = entry

            for future in as_completed(futures):
                entry = futures[future]
                result = future.result()
                if result.ok:
                    downloaded[entry['path']] = CacheRecord(entry['path'], entry.get('sha', ''), result.manifest)
                else:
                    logger.warning("Skipping remote manifest %s: %s", entry['path'], result.error)
        return downloaded

    def _download_manifest(self, path, branch):
        url = self.repo.raw_file_url(path, branch)
        try:
            response = self.http.get(url, headers=build_headers(self.token), timeout=self.timeout)
        except requests.RequestException as e:
            return ManifestResult(error=f'{url}: {e}')
        if response.status_code != 200:
            return ManifestResult(error=f'{url}: HTTP {response.status_code}')
        return parse_manifest(response.content)

    def _to_remote_package(self, record, branch, from_cache=False):
        folder = record.path.split('/')[0]
        return RemotePackage.from_manifest(
            record.manifest,
            record.path,
            self.repo.browse_url(branch, folder),
            from_cache=from_cache
        )

    def close(self):
        self._executor.shutdown(wait=False, cancel_futures=True)
