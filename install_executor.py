"""
Install Executor
Runs an install plan: download, extract and merge each package in order
"""

import logging
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from archive_downloader import ArchiveDownloader, ArchiveError
from directory_reconciler import reconcile
from folder_structure_detector import FolderStructureDetector
from github_api import DEFAULT_BRANCHES, GitHubRepo
from manifest import read_manifest, update_source_url

logger = logging.getLogger(__name__)

CORE_CATEGORIES = ('Core', 'Framework', '框架')


class InstallError(Exception):
    pass


class InstallExecutor:
    def __init__(self, settings, registry_url, downloader=None, detector=None,
                 local_catalog=None, temp_root=None):
        """Initialize install executor.

        Args:
            settings: ExtensionSettings - Install roots and path resolution
            registry_url: str - Community repository registry packages come from
            downloader: Optional ArchiveDownloader
            detector: Optional FolderStructureDetector
            local_catalog: Optional callable - Returns the current InstalledPackage list
            temp_root: Optional str/Path - Where archives are unpacked
        """
        self.settings = settings
        self.registry_url = registry_url
        self.downloader = downloader or ArchiveDownloader()
        self.detector = detector or FolderStructureDetector()
        self.local_catalog = local_catalog or (lambda: [])
        self.temp_root = temp_root
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='install')

    def execute(self, plan, progress=None):
        """Install plan items one after another, stopping at the first failure.

        Items installed before a failure stay installed.

        Args:
            plan: list - InstallPlanItem entries in install order
            progress: Optional callable - Called with a status message per step

        Returns:
            dict - Result with keys:
            - success: bool - True when every item installed
            - installed: list - Names installed, in order
            - failed: str - Name of the item that failed, or None
            - skipped: list - Names never attempted because of the failure
            - error: str - Error message if failed
        """
        installed = []
        for index, item in enumerate(plan):
            if progress:
                progress(f"Installing {item.label} ({index + 1}/{len(plan)})...")

            result = self.install_item(item)
            if not result['success']:
                skipped = [later.name for later in plan[index + 1:]]
                logger.error("Install of %s failed: %s", item.name, result['error'])
                if skipped:
                    logger.error("Aborting remaining plan items: %s", ', '.join(skipped))
                return {
                    'success': False,
                    'installed': installed,
                    'failed': item.name,
                    'skipped': skipped,
                    'error': f'{item.label}: {result["error"]}'
                }
            installed.append(item.name)

        return {'success': True, 'installed': installed, 'failed': None, 'skipped': [], 'error': None}

    def execute_async(self, plan, callback=None, progress=None):
        """Run execute() on the install worker thread.

        Returns:
            Future - Resolves to the execute() result dict
        """
        future = self._executor.submit(self.execute, plan, progress)
        if callback is not None:
            def _done(f):
                error = f.exception()
                if error is not None:
                    logger.error("Install plan crashed: %s", error)
                    callback({'success': False, 'installed': [], 'failed': None, 'skipped': [], 'error': str(error)})
                else:
                    callback(f.result())
            future.add_done_callback(_done)
        return future

    def install_item(self, item):
        """Install a single plan item, trying each conventional branch.

        Returns:
            dict - success, path of the installed folder, error
        """
        try:
            repo, folder_name = self._archive_source(item)
        except (InstallError, ValueError) as e:
            return {'success': False, 'path': None, 'error': str(e)}

        errors = []
        for branch in DEFAULT_BRANCHES:
            try:
                target = self._install_from_branch(item, repo, folder_name, branch)
                return {'success': True, 'path': target, 'error': None}
            except (ArchiveError, InstallError, OSError) as e:
                logger.warning("Installing %s from %s@%s failed: %s", item.name, repo.web_url, branch, e)
                errors.append(f'{branch}: {e}')
        return {'success': False, 'path': None, 'error': '; '.join(errors)}

    def _archive_source(self, item):
        if item.remote is not None:
            return GitHubRepo(self.registry_url), item.remote.remote_folder_name or item.name
        if item.git_url:
            return GitHubRepo(item.git_url), None
        raise InstallError(f'No source for {item.name}: not in the registry and no gitUrl')

    def _install_from_branch(self, item, repo, folder_name, branch):
        with tempfile.TemporaryDirectory(prefix='extension_', dir=self.temp_root) as temp_dir:
            extract_path = self.downloader.fetch(repo.archive_url(branch), temp_dir)

            repo_root = self.detector.find_repo_root(extract_path)
            if repo_root is None:
                raise InstallError('Archive contained no files')

            if folder_name:
                source_dir = self.detector.find_package_folder(repo_root, folder_name)
                if source_dir is None:
                    raise InstallError(f'Extension folder "{folder_name}" not found in repository')
            else:
                source_dir = self.detector.detect_package_dir(repo_root, item.name)

            target_dir = self.resolve_target_dir(item, source_dir)
            failures = reconcile(source_dir, target_dir)
            if failures:
                logger.warning("%s installed with %d leftover file(s) that could not be removed", item.name, len(failures))

        if item.source_url:
            update_source_url(target_dir, item.source_url)
        logger.info("Installed %s into %s", item.name, target_dir)
        return target_dir

    def resolve_target_dir(self, item, source_dir):
        """Decide where a package is installed.

        Explicit installPath first, then the folder of an existing install,
        then the default root for the package's category.

        Returns:
            Path - Absolute install directory
        """
        if item.install_path:
            return self.settings.resolve_install_path(item.install_path)

        name = item.name
        category = ''
        result = read_manifest(source_dir)
        if result.ok:
            name = result.manifest.name or name
            category = result.manifest.category

        if item.installed_path and Path(item.installed_path).is_dir():
            return Path(item.installed_path)

        for package in self.local_catalog():
            if package.name == name and package.folder_path and Path(package.folder_path).is_dir():
                return Path(package.folder_path)

        if category in CORE_CATEGORIES:
            root = self.settings.core_install_path
        else:
            root = self.settings.extension_root_path
        folder_name = item.remote.remote_folder_name if item.remote is not None and item.remote.remote_folder_name else item.name
        return self.settings.get_full_path(root) / folder_name

    def close(self):
        self._executor.shutdown(wait=False)
