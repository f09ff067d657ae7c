"""
Folder Structure Detector
Locates extension folders inside extracted repository archives
"""

from pathlib import Path

from manifest import MANIFEST_FILENAME, read_manifest


class FolderStructureDetector:
    def find_repo_root(self, extract_path):
        """Find the repository root inside an extracted archive.

        GitHub archives wrap everything in one <repo>-<branch>/ folder; when
        that wrapper is present it is the root, otherwise the extraction
        directory itself is.

        Args:
            extract_path: Path - Directory the archive was extracted into

        Returns:
            Path - Repository root, or None if nothing was extracted
        """
        extract_path = Path(extract_path)
        subdirs = [d for d in extract_path.iterdir() if d.is_dir() and not d.name.startswith('.')]
        files = [f for f in extract_path.iterdir() if f.is_file()]
        if len(subdirs) == 1 and not files:
            return subdirs[0]
        if subdirs or files:
            return extract_path
        return None

    def detect_all_packages(self, repo_root):
        """Detect every top-level extension folder in a repository (for monorepos).

        Returns:
            list - dicts with name, folder and path for each folder holding a manifest
        """
        repo_root = Path(repo_root)
        packages = []
        for folder in sorted(d for d in repo_root.iterdir() if d.is_dir() and not d.name.startswith('.')):
            if not (folder / MANIFEST_FILENAME).is_file():
                continue
            result = read_manifest(folder)
            if result.ok:
                packages.append({'name': result.manifest.name, 'folder': folder.name, 'path': folder})
        return packages

    def find_package_folder(self, repo_root, folder_name):
        """Find a registry extension folder by its folder name.

        Returns:
            Path - Folder inside the repository, or None if it is missing
        """
        candidate = Path(repo_root) / folder_name
        if candidate.is_dir():
            return candidate
        return None

    def detect_package_dir(self, repo_root, package_name):
        """Pick the content directory for a package fetched from its own repository.

        A manifest at the repository root means the whole repository is the
        package. Otherwise a folder named after the package, or a folder whose
        manifest declares that name, is used. Falls back to the root.

        Args:
            repo_root: Path - Extracted repository root
            package_name: str - Name the dependency was declared with

        Returns:
            Path - Directory to install from
        """
        repo_root = Path(repo_root)
        if (repo_root / MANIFEST_FILENAME).is_file():
            return repo_root

        named = repo_root / package_name
        if named.is_dir():
            return named

        for package in self.detect_all_packages(repo_root):
            if package['name'] == package_name:
                return package['path']

        return repo_root
