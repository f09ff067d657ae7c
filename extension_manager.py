"""
Extension Manager
Entry point tying together scanning, registry sync, dependency resolution and installs
"""

import argparse
import logging
import shutil
import sys
from pathlib import Path

from archive_downloader import ArchiveDownloader
from catalog_scanner import CatalogScanner, find_local_package, pending_updates
from dependency_resolver import DependencyResolver, InstallPlanItem
from directory_reconciler import remove_directory_safe, remove_file_safe, sidecar_path
from install_executor import InstallExecutor
from manifest import MANIFEST_FILENAME
from registry_cache import RegistryCacheStore
from registry_client import RegistryClient, RegistryFetchError
from settings_store import STATE_DIR_NAME, ExtensionSettings, SettingsStore

logger = logging.getLogger(__name__)

DOC_DIR_NAME = 'Doc'


class ExtensionManager:
    def __init__(self, project_root, settings=None, http=None, self_dir=None):
        """Initialize extension manager.

        Args:
            project_root: str/Path - Project the extensions are installed into
            settings: Optional ExtensionSettings - Defaults to a JSON store under the project
            http: Optional object with a requests-style get(); defaults to requests
            self_dir: Optional str/Path - Directory the manager itself is installed in
        """
        self.project_root = Path(project_root)
        if settings is None:
            store = SettingsStore(self.project_root / STATE_DIR_NAME / 'settings.json')
            settings = ExtensionSettings(store, self.project_root)
        self.settings = settings
        self.http = http
        self.self_dir = self_dir
        self.cache_store = RegistryCacheStore(settings.cache_file)
        self.local_catalog = []
        self._registry = None
        self._executor = None

    @property
    def registry(self):
        if self._registry is None:
            self._registry = RegistryClient(
                self.settings.community_url,
                self.cache_store,
                http=self.http,
                token=self.settings.github_token
            )
        return self._registry

    @property
    def executor(self):
        if self._executor is None:
            self._executor = InstallExecutor(
                self.settings,
                self.settings.community_url,
                downloader=ArchiveDownloader(http=self.http, token=self.settings.github_token),
                local_catalog=lambda: self.local_catalog
            )
        return self._executor

    def scan_all(self):
        """Rebuild the local catalog.

        Returns:
            list - InstalledPackage entries
        """
        scanner = CatalogScanner.from_settings(self.settings, self_dir=self.self_dir)
        self.local_catalog = scanner.scan_all()
        return self.local_catalog

    def fetch_registry(self, force_refresh=False, callback=None):
        return self.registry.fetch_registry(force_refresh=force_refresh, callback=callback)

    def remote_catalog(self):
        """Best remote catalog available without waiting on the network"""
        snapshot = self.registry.snapshot
        if snapshot is not None:
            return snapshot
        return self.registry.cached_packages()

    def resolve(self, root, local=None, remote=None):
        """Resolve the dependencies of root that still need installing.

        Returns:
            list - InstallPlanItem entries
        """
        return self._resolver(local, remote).resolve(root)

    def _resolver(self, local=None, remote=None):
        if local is None:
            local = self.scan_all()
        if remote is None:
            remote = self.remote_catalog()
        return DependencyResolver(local, remote, resolve_path=self.settings.resolve_install_path)

    def build_install_plan(self, package):
        """Plan for installing a registry package: missing dependencies first, then the package.

        Returns:
            dict - plan, unresolved dependency names, source conflicts
        """
        local = self.scan_all()
        resolver = self._resolver(local=local)
        plan = resolver.resolve(package)
        plan.append(InstallPlanItem.for_package(package, find_local_package(local, package)))
        return {'plan': plan, 'unresolved': resolver.unresolved, 'conflicts': resolver.source_conflicts}

    def execute(self, plan, callback=None, progress=None):
        """Run an install plan and refresh the catalog afterwards.

        With a callback the plan runs on the install worker and a Future is
        returned; otherwise the result dict is returned directly.
        """
        if callback is None:
            result = self.executor.execute(plan, progress=progress)
            self.scan_all()
            return result

        def _finished(result):
            self.scan_all()
            callback(result)

        return self.executor.execute_async(plan, callback=_finished, progress=progress)

    def install_package(self, package, callback=None, progress=None):
        planned = self.build_install_plan(package)
        if planned['unresolved']:
            logger.warning(
                "%s: unresolved dependencies will be skipped: %s",
                package.name, ', '.join(planned['unresolved'])
            )
        return self.execute(planned['plan'], callback=callback, progress=progress)

    def uninstall(self, package):
        """Delete an installed package's folder and its sidecar.

        Returns:
            dict - success plus message or error
        """
        folder = Path(package.folder_path) if package.folder_path else None
        if folder is None or not folder.is_dir():
            return {'success': False, 'error': f'Extension "{package.name}" is not installed'}

        try:
            remove_directory_safe(folder)
            remove_file_safe(sidecar_path(folder))
        except OSError as e:
            logger.error("Uninstall of %s failed: %s", package.name, e)
            return {'success': False, 'error': str(e)}

        self.scan_all()
        return {'success': True, 'message': f'Extension "{package.name}" removed successfully'}

    def pending_updates(self):
        return pending_updates(self.local_catalog or self.scan_all(), self.remote_catalog())

    def find_documentation(self, package):
        """Locate the documentation entry point of an installed package.

        Returns:
            Path - README.md in the Doc folder if present, else the first markdown
            file there, else the Doc folder itself; None without a Doc folder
        """
        if not package.folder_path:
            return None
        doc_dir = Path(package.folder_path) / DOC_DIR_NAME
        if not doc_dir.is_dir():
            return None

        markdown = sorted(doc_dir.glob('*.md'))
        for doc in markdown:
            if doc.name.lower() == 'readme.md':
                return doc
        if markdown:
            return markdown[0]
        return doc_dir

    def migrate_extensions(self, old_root, new_root):
        """Move installed extensions from one root to another.

        Only folders holding a manifest move, each with its sidecar. A folder
        whose destination already exists is skipped.

        Returns:
            dict - moved, skipped and errors lists
        """
        result = {'moved': [], 'skipped': [], 'errors': []}
        old_path = self.settings.get_full_path(old_root)
        new_path = self.settings.get_full_path(new_root)
        if old_path is None or new_path is None or old_path == new_path or not old_path.is_dir():
            return result

        new_path.mkdir(parents=True, exist_ok=True)
        for folder in sorted(d for d in old_path.iterdir() if d.is_dir()):
            if not (folder / MANIFEST_FILENAME).is_file():
                continue
            dest = new_path / folder.name
            if dest.exists():
                logger.warning("Destination already exists, not migrating %s", folder.name)
                result['skipped'].append(folder.name)
                continue
            try:
                shutil.move(str(folder), str(dest))
                meta = sidecar_path(folder)
                if meta.is_file():
                    shutil.move(str(meta), str(sidecar_path(dest)))
                result['moved'].append(folder.name)
                logger.info("Migrated %s", folder.name)
            except OSError as e:
                logger.error("Migration of %s failed: %s", folder.name, e)
                result['errors'].append(f'{folder.name}: {e}')
        return result

    def set_extension_root(self, path, migrate=True):
        old_root = self.settings.extension_root_path
        self.settings.extension_root_path = path
        result = self.migrate_extensions(old_root, path) if migrate else None
        self.scan_all()
        return result

    def set_core_root(self, path, migrate=True):
        old_root = self.settings.core_install_path
        self.settings.core_install_path = path
        result = self.migrate_extensions(old_root, path) if migrate else None
        self.scan_all()
        return result

    def set_community_url(self, url):
        """Point the manager at another registry repository"""
        self.settings.community_url = url
        self.close()

    def reset_settings(self):
        self.settings.reset_settings()
        self.close()

    def close(self):
        if self._registry is not None:
            self._registry.close()
            self._registry = None
        if self._executor is not None:
            self._executor.close()
            self._executor = None


def _print_packages(packages):
    for package in packages:
        category = f" [{package.category}]" if package.category else ''
        print(f"{package.name:<30} {package.version or '-':<10}{category} {package.label}")


def _find_remote(packages, name):
    for package in packages:
        if package.name == name or package.remote_folder_name == name:
            return package
    return None


def main(argv=None):
    parser = argparse.ArgumentParser(prog='extension-manager', description='Manage editor extensions')
    parser.add_argument('--project', default='.', help='Project root (default: current directory)')
    parser.add_argument('-v', '--verbose', action='store_true')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('list', help='List installed extensions')
    registry_parser = sub.add_parser('registry', help='List extensions in the community registry')
    registry_parser.add_argument('--refresh', action='store_true', help='Ignore the in-memory snapshot')
    install_parser = sub.add_parser('install', help='Install an extension and its dependencies')
    install_parser.add_argument('name')
    uninstall_parser = sub.add_parser('uninstall', help='Remove an installed extension')
    uninstall_parser.add_argument('name')
    sub.add_parser('updates', help='List installed extensions with newer registry versions')
    config_parser = sub.add_parser('config', help='Show or change settings')
    config_parser.add_argument('key', nargs='?', choices=['extension_root', 'core_root', 'community_url'])
    config_parser.add_argument('value', nargs='?')

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s'
    )

    manager = ExtensionManager(args.project)
    try:
        if args.command == 'list':
            _print_packages(manager.scan_all())
            return 0

        if args.command == 'config':
            return _run_config(manager, args.key, args.value)

        if args.command == 'uninstall':
            package = next((p for p in manager.scan_all() if p.name == args.name), None)
            if package is None:
                print(f'Extension "{args.name}" is not installed', file=sys.stderr)
                return 1
            result = manager.uninstall(package)
            print(result.get('message') or result.get('error'))
            return 0 if result['success'] else 1

        try:
            remote = manager.fetch_registry(force_refresh=getattr(args, 'refresh', False)).result()
        except (RegistryFetchError, ValueError) as e:
            print(f'Registry unavailable: {e}', file=sys.stderr)
            return 1

        if args.command == 'registry':
            _print_packages(remote)
            return 0

        if args.command == 'updates':
            for local, newer in manager.pending_updates():
                print(f"{local.name:<30} {local.version} -> {newer.version}")
            return 0

        package = _find_remote(remote, args.name)
        if package is None:
            print(f'Extension "{args.name}" not found in the registry', file=sys.stderr)
            return 1
        result = manager.install_package(package, progress=print)
        if result['success']:
            print(f"Installed: {', '.join(result['installed'])}")
            return 0
        print(f"Install failed: {result['error']}", file=sys.stderr)
        return 1
    finally:
        manager.close()


def _run_config(manager, key, value):
    settings = manager.settings
    attributes = {
        'extension_root': 'extension_root_path',
        'core_root': 'core_install_path',
        'community_url': 'community_url',
    }
    if key is None:
        for name, attribute in attributes.items():
            print(f"{name} = {getattr(settings, attribute)}")
        return 0
    if value is None:
        print(getattr(settings, attributes[key]))
        return 0
    if key == 'community_url':
        manager.set_community_url(value)
        return 0

    if key == 'extension_root':
        result = manager.set_extension_root(value)
    else:
        result = manager.set_core_root(value)
    if result and result['moved']:
        print(f"Migrated: {', '.join(result['moved'])}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
