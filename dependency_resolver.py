"""
Dependency Resolver
Turns a package's dependency graph into an ordered install plan
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional

from manifest import InstalledPackage, RemotePackage, normalize_url, read_manifest
from version_compare import compare_versions

logger = logging.getLogger(__name__)


@dataclass
class InstallPlanItem:
    name: str
    version: str = ''
    display_name: str = ''
    git_url: str = ''
    install_path: str = ''
    remote: Optional[RemotePackage] = None
    is_upgrade: bool = False
    installed_path: str = ''

    @property
    def source_url(self):
        """Origin recorded as sourceUrl once the item is installed"""
        if self.remote is not None:
            return self.remote.download_url
        return self.git_url

    @property
    def label(self):
        return self.display_name or self.name

    @classmethod
    def for_package(cls, package, local=None):
        """Plan item for installing a registry package directly"""
        return cls(
            name=package.name,
            version=package.version,
            display_name=package.label,
            remote=package,
            is_upgrade=local is not None,
            installed_path=local.folder_path if local is not None else ''
        )


def _index(packages):
    """Map name -> PackageRef, keeping the first package of each name"""
    refs = {}
    for package in packages or []:
        if package.name and package.name not in refs:
            refs[package.name] = package.to_ref()
    return refs


def _sources_conflict(wanted, installed):
    wanted = normalize_url(wanted)
    installed = normalize_url(installed)
    if not wanted or not installed:
        return False
    return wanted not in installed and installed not in wanted


class DependencyResolver:
    def __init__(self, local_catalog, remote_catalog, resolve_path=None):
        """Initialize resolver.

        Args:
            local_catalog: list - InstalledPackage entries
            remote_catalog: list - RemotePackage entries, possibly a partial or cached set
            resolve_path: Optional callable - Maps a dependency installPath to an absolute Path
        """
        self.local = _index(local_catalog)
        self.remote = _index(remote_catalog)
        self.resolve_path = resolve_path
        self.unresolved = []
        self.source_conflicts = []

    def _installed_at_path(self, dep):
        if not dep.install_path or self.resolve_path is None:
            return None
        path = self.resolve_path(dep.install_path)
        if path is None:
            return None
        result = read_manifest(path)
        if not result.ok:
            return None
        return InstalledPackage.from_manifest(result.manifest, path).to_ref()

    def resolve(self, root):
        """Resolve everything root needs that is missing or too old.

        Walks declared dependencies breadth first. Each name is handled once,
        so cycles terminate and the root never appears in its own plan. Only
        remote manifests are walked further; installed packages already
        satisfy their own dependencies.

        Args:
            root: PackageManifest - Package being installed

        Returns:
            list - InstallPlanItem entries, empty when nothing is needed
        """
        self.unresolved = []
        self.source_conflicts = []

        visited = {root.name}
        queue = deque(root.dependencies)
        plan = {}

        while queue:
            dep = queue.popleft()
            if not dep.name:
                logger.warning("Ignoring dependency without a name declared under %s", root.name)
                continue
            if dep.name in visited:
                continue
            visited.add(dep.name)

            local = self.local.get(dep.name) or self._installed_at_path(dep)
            is_upgrade = False
            if local is not None:
                if dep.version and compare_versions(local.version, dep.version) < 0:
                    logger.warning(
                        "Dependency %s installed at %s is older than required %s",
                        dep.name, local.version or '?', dep.version
                    )
                    is_upgrade = True
                else:
                    if dep.git_url and _sources_conflict(dep.git_url, local.package.source_url):
                        logger.warning(
                            "Source conflict for %s: required from %s, installed from %s",
                            dep.name, dep.git_url, local.package.source_url
                        )
                        self.source_conflicts.append((dep.name, dep.git_url, local.package.source_url))
                    continue

            remote = self.remote.get(dep.name)
            if remote is not None:
                queue.extend(remote.package.dependencies)
                display_name = remote.package.label
            elif dep.git_url:
                display_name = dep.name
            else:
                logger.warning(
                    "Dependency %s of %s has no gitUrl and is not in the registry; skipping",
                    dep.name, root.name
                )
                self.unresolved.append(dep.name)
                continue

            plan[dep.name] = InstallPlanItem(
                name=dep.name,
                version=dep.version,
                display_name=display_name,
                git_url=dep.git_url,
                install_path=dep.install_path,
                remote=remote.package if remote is not None else None,
                is_upgrade=is_upgrade,
                installed_path=local.package.folder_path if local is not None else ''
            )

        return list(plan.values())


def resolve_dependencies(root, local_catalog, remote_catalog, resolve_path=None):
    return DependencyResolver(local_catalog, remote_catalog, resolve_path).resolve(root)
