"""
Shared test fixtures: an in-process HTTP fake and package builders.
"""

import io
import json
import threading
import zipfile
from pathlib import Path

import pytest
import requests

from settings_store import ExtensionSettings, SettingsStore

REGISTRY_URL = 'https://github.com/example/community'


class FakeResponse:
    def __init__(self, status_code=200, content=b'', json_data=None):
        self.status_code = status_code
        if json_data is not None:
            content = json.dumps(json_data).encode('utf-8')
        self.content = content

    @property
    def text(self):
        return self.content.decode('utf-8')

    def json(self):
        return json.loads(self.content.decode('utf-8'))

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'HTTP {self.status_code}')

    def iter_content(self, chunk_size=8192):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start:start + chunk_size]


class FakeHttp:
    """Stands in for the requests module: routes URLs to canned responses.

    Unrouted URLs answer 404. A route may be an exception instance, which is
    raised instead of answering.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []
        self._lock = threading.Lock()

    def add(self, url, response):
        self.routes[url] = response

    def get(self, url, headers=None, timeout=None, stream=False):
        with self._lock:
            self.calls.append(url)
        response = self.routes.get(url)
        if response is None:
            return FakeResponse(404)
        if isinstance(response, Exception):
            raise response
        return response

    def calls_to(self, fragment):
        return [url for url in self.calls if fragment in url]


def manifest_dict(name, version='1.0.0', category='', dependencies=None, **extra):
    data = {
        'name': name,
        'displayName': extra.pop('displayName', name.title()),
        'version': version,
        'description': extra.pop('description', ''),
        'author': 'tester',
        'category': category,
        'downloadUrl': '',
        'sourceUrl': extra.pop('sourceUrl', ''),
        'dependencies': dependencies or [],
    }
    data.update(extra)
    return data


def dep(name, version='', gitUrl='', installPath=''):
    return {'name': name, 'gitUrl': gitUrl, 'installPath': installPath, 'version': version}


def write_package(directory, name, **kwargs):
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    (directory / 'extension.json').write_text(json.dumps(manifest_dict(name, **kwargs)), encoding='utf-8')
    return directory


def make_zip(files):
    """Build zip bytes from a {archive path: text} mapping"""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as zf:
        for path, content in files.items():
            zf.writestr(path, content)
    return buffer.getvalue()


@pytest.fixture
def fake_http():
    return FakeHttp()


@pytest.fixture
def project(tmp_path):
    root = tmp_path / 'project'
    root.mkdir()
    return root


@pytest.fixture
def settings(project):
    store = SettingsStore(project / '.extension-manager' / 'settings.json')
    settings = ExtensionSettings(store, project)
    settings.community_url = REGISTRY_URL
    return settings
