"""
Catalog Scanner
Discovers installed extensions and builds the local catalog
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from manifest import MANIFEST_FILENAME, InstalledPackage, read_manifest
from version_compare import is_version_newer

logger = logging.getLogger(__name__)

CORE_CATEGORY = 'Core'

ROOT_EXTENSIONS = 'extensions'
ROOT_CORE = 'core'
ROOT_PACKAGES = 'packages'
ROOT_SELF = 'self'


@dataclass
class ScanRoot:
    """One place to look for installed extensions.

    extensions/packages roots are searched one level deep, the core root is
    checked itself and one level deep, a self root is checked only itself.
    """
    path: Path
    kind: str = ROOT_EXTENSIONS


def _same_path(a, b):
    def norm(p):
        return os.path.normcase(os.path.abspath(str(p))).rstrip('/\\')
    return norm(a) == norm(b)


class CatalogScanner:
    def __init__(self, roots):
        """Initialize catalog scanner.

        Args:
            roots: list - ScanRoot entries in traversal order; earlier roots win duplicates
        """
        self.roots = list(roots)
        self.conflicts = []

    @classmethod
    def from_settings(cls, settings, self_dir=None):
        """Build the standard root list from extension settings.

        Args:
            settings: ExtensionSettings - Configured paths
            self_dir: Optional str/Path - Directory the manager itself is installed in
        """
        if self_dir is None:
            self_dir = Path(__file__).resolve().parent
        roots = [
            ScanRoot(settings.get_full_path(settings.extension_root_path), ROOT_EXTENSIONS),
            ScanRoot(settings.get_full_path(settings.core_install_path), ROOT_CORE),
            ScanRoot(settings.packages_path, ROOT_PACKAGES),
            ScanRoot(Path(self_dir), ROOT_SELF),
        ]
        return cls(roots)

    def scan_all(self):
        """Scan every root and return one catalog entry per package name.

        Returns:
            list - InstalledPackage entries in discovery order
        """
        catalog = []
        by_name = {}
        self.conflicts = []

        for root in self.roots:
            root_path = Path(root.path)
            try:
                if not root_path.is_dir():
                    continue
            except OSError as e:
                logger.warning("Cannot access %s: %s", root_path, e)
                continue

            is_core = root.kind == ROOT_CORE
            candidates = []
            if root.kind in (ROOT_CORE, ROOT_SELF):
                candidates.append(root_path)
            if root.kind != ROOT_SELF:
                candidates.extend(self._subdirectories(root_path))

            for directory in candidates:
                self._try_load(directory, catalog, by_name, is_core)

        return catalog

    def _subdirectories(self, root_path):
        try:
            entries = sorted(root_path.iterdir())
        except OSError as e:
            logger.warning("Cannot list %s: %s", root_path, e)
            return []

        subdirs = []
        for entry in entries:
            try:
                if entry.is_dir():
                    subdirs.append(entry)
            except OSError as e:
                logger.warning("Skipping %s: %s", entry, e)
        return subdirs

    def _try_load(self, directory, catalog, by_name, is_core):
        try:
            if not (directory / MANIFEST_FILENAME).is_file():
                return
        except OSError as e:
            logger.warning("Skipping %s: %s", directory, e)
            return

        result = read_manifest(directory)
        if not result.ok:
            logger.warning("Skipping %s: %s", directory, result.error)
            return

        package = InstalledPackage.from_manifest(result.manifest, directory.as_posix())
        if is_core and not package.category:
            package.category = CORE_CATEGORY

        existing = by_name.get(package.name)
        if existing is not None:
            if not _same_path(existing.folder_path, package.folder_path):
                logger.warning(
                    "Duplicate extension %s\n  location 1: %s\n  location 2: %s\nKeeping the first one loaded.",
                    package.name, existing.folder_path, package.folder_path
                )
                self.conflicts.append((package.name, existing.folder_path, package.folder_path))
            return

        by_name[package.name] = package
        catalog.append(package)


def find_local_package(catalog, target):
    """Find the installed counterpart of a package.

    Matches by name first, then by installed folder name against the remote
    folder name.
    """
    if target is None:
        return None
    for package in catalog:
        if package.name and package.name == target.name:
            return package

    folder_name = getattr(target, 'remote_folder_name', '')
    if folder_name:
        for package in catalog:
            if package.folder_path and Path(package.folder_path).name == folder_name:
                return package

    if getattr(target, 'is_installed', False):
        return target
    return None


def filter_catalog(packages, search='', category=None):
    """Filter packages by free-text search and category.

    Args:
        packages: list - Catalog entries
        search: str - Case-insensitive text matched against display name, name and description
        category: Optional str - Category to keep; '' keeps uncategorized packages, None keeps all
    """
    needle = (search or '').lower()
    result = []
    for package in packages:
        if needle and not any(
            needle in (value or '').lower()
            for value in (package.display_name, package.name, package.description)
        ):
            continue
        if category is not None and (package.category or '') != category:
            continue
        result.append(package)
    return result


def list_categories(packages):
    return sorted({package.category for package in packages if package.category})


def pending_updates(local_catalog, remote_catalog):
    """Pair installed packages with newer remote versions.

    Returns:
        list - (InstalledPackage, RemotePackage) tuples
    """
    remote_by_name = {}
    for remote in remote_catalog:
        remote_by_name.setdefault(remote.name, remote)

    updates = []
    for local in local_catalog:
        remote = remote_by_name.get(local.name)
        if remote is not None and is_version_newer(remote.version, local.version):
            updates.append((local, remote))
    return updates
