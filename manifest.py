"""
Manifest
Extension manifest model and extension.json parsing
"""

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = 'extension.json'

ORIGIN_LOCAL = 'local'
ORIGIN_REMOTE = 'remote'
ORIGIN_CACHED = 'cached'

# python attribute -> extension.json key
_MANIFEST_KEYS = (
    ('name', 'name'),
    ('display_name', 'displayName'),
    ('version', 'version'),
    ('description', 'description'),
    ('author', 'author'),
    ('category', 'category'),
    ('download_url', 'downloadUrl'),
    ('source_url', 'sourceUrl'),
)
_DEPENDENCY_KEYS = (
    ('name', 'name'),
    ('git_url', 'gitUrl'),
    ('install_path', 'installPath'),
    ('version', 'version'),
)


class ManifestParseError(Exception):
    pass


def _text(value):
    if value is None:
        return ''
    if isinstance(value, (dict, list)):
        raise ManifestParseError(f'Expected a string, got {type(value).__name__}')
    return str(value)


@dataclass(frozen=True)
class Dependency:
    name: str = ''
    git_url: str = ''
    install_path: str = ''
    version: str = ''

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise ManifestParseError('Dependency entries must be objects')
        return cls(**{attr: _text(data.get(key)) for attr, key in _DEPENDENCY_KEYS})

    def to_dict(self):
        return {key: getattr(self, attr) for attr, key in _DEPENDENCY_KEYS}


@dataclass
class PackageManifest:
    name: str = ''
    display_name: str = ''
    version: str = ''
    description: str = ''
    author: str = ''
    category: str = ''
    download_url: str = ''
    source_url: str = ''
    dependencies: List[Dependency] = field(default_factory=list)
    extra: dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise ManifestParseError('Manifest root must be an object')

        values = {attr: _text(data.get(key)) for attr, key in _MANIFEST_KEYS}
        if not values['name']:
            raise ManifestParseError('Manifest has no "name"')

        raw_deps = data.get('dependencies') or []
        if not isinstance(raw_deps, list):
            raise ManifestParseError('"dependencies" must be a list')
        values['dependencies'] = [Dependency.from_dict(d) for d in raw_deps]

        known = {key for _, key in _MANIFEST_KEYS} | {'dependencies'}
        values['extra'] = {k: v for k, v in data.items() if k not in known}
        return cls(**values)

    def to_dict(self):
        data = {key: getattr(self, attr) for attr, key in _MANIFEST_KEYS}
        data['dependencies'] = [d.to_dict() for d in self.dependencies]
        data.update(self.extra)
        return data

    def manifest_fields(self):
        """Copy of the plain manifest fields, for building derived package types"""
        return {f.name: getattr(self, f.name) for f in fields(PackageManifest)}

    @property
    def label(self):
        return self.display_name or self.name


@dataclass(frozen=True)
class PackageRef:
    """Source-independent handle on a package: what the resolver compares."""
    name: str
    version: str
    origin: str
    package: object = field(default=None, compare=False, repr=False)


@dataclass
class InstalledPackage(PackageManifest):
    folder_path: str = ''
    is_installed: bool = True

    @classmethod
    def from_manifest(cls, manifest, folder_path):
        return cls(folder_path=str(folder_path), is_installed=True, **manifest.manifest_fields())

    def to_ref(self):
        return PackageRef(self.name, self.version, ORIGIN_LOCAL, self)


@dataclass
class RemotePackage(PackageManifest):
    remote_folder_name: str = ''
    manifest_path: str = ''
    is_installed: bool = False
    from_cache: bool = False

    @classmethod
    def from_manifest(cls, manifest, manifest_path, download_url, from_cache=False):
        values = manifest.manifest_fields()
        values['download_url'] = download_url
        return cls(
            remote_folder_name=manifest_path.split('/')[0],
            manifest_path=manifest_path,
            is_installed=False,
            from_cache=from_cache,
            **values
        )

    def to_ref(self):
        return PackageRef(self.name, self.version, ORIGIN_CACHED if self.from_cache else ORIGIN_REMOTE, self)


@dataclass
class ManifestResult:
    manifest: Optional[PackageManifest] = None
    error: Optional[str] = None

    @property
    def ok(self):
        return self.manifest is not None


def parse_manifest(text):
    """Parse extension.json content.

    Args:
        text: str/bytes - Raw manifest content

    Returns:
        ManifestResult - manifest on success, error message otherwise
    """
    try:
        if isinstance(text, bytes):
            text = text.decode('utf-8-sig')
        elif text.startswith('\ufeff'):
            text = text[1:]
        return ManifestResult(manifest=PackageManifest.from_dict(json.loads(text)))
    except (ValueError, ManifestParseError) as e:
        return ManifestResult(error=str(e))


def read_manifest(directory):
    """Read and parse the manifest stored in a package directory.

    Args:
        directory: str/Path - Package directory

    Returns:
        ManifestResult - error is set when the file is missing or malformed
    """
    manifest_path = Path(directory) / MANIFEST_FILENAME
    try:
        content = manifest_path.read_bytes()
    except FileNotFoundError:
        return ManifestResult(error=f'No {MANIFEST_FILENAME} in {directory}')
    except OSError as e:
        return ManifestResult(error=f'Cannot read {manifest_path}: {e}')
    return parse_manifest(content)


def write_manifest(directory, manifest):
    """Write a manifest back to a package directory"""
    manifest_path = Path(directory) / MANIFEST_FILENAME
    with open(manifest_path, 'w', encoding='utf-8') as f:
        json.dump(manifest.to_dict(), f, indent=4, ensure_ascii=False)
        f.write('\n')


def update_source_url(directory, url):
    """Record the origin URL in an installed package's manifest.

    Args:
        directory: str/Path - Installed package directory
        url: str - Origin used for later conflict detection

    Returns:
        bool - True if the manifest was rewritten
    """
    result = read_manifest(directory)
    if not result.ok:
        logger.warning("Cannot update sourceUrl in %s: %s", directory, result.error)
        return False

    manifest = result.manifest
    manifest.source_url = url
    try:
        write_manifest(directory, manifest)
        return True
    except OSError as e:
        logger.error("Failed to update sourceUrl for %s: %s", manifest.name, e)
        return False


def normalize_url(url):
    """Reduce a repository URL to host/path for loose origin comparison"""
    if not url:
        return ''
    url = url.strip()
    for scheme in ('https://', 'http://'):
        if url.startswith(scheme):
            url = url[len(scheme):]
    url = url.rstrip('/')
    if url.endswith('.git'):
        url = url[:-4]
    return url.rstrip('/')
