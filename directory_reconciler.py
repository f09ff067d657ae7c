"""
Directory Reconciler
Makes an installed package directory match freshly extracted content
"""

import logging
import os
import shutil
import stat
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX = '.meta'


def _handle_remove_readonly(func, path, exc):
    """Retry a failed delete once after clearing the read-only bit.

    Args:
        func: callable - Function that raised the error
        path: str - File path causing the error
        exc: Exception - Exception (or exc_info tuple on older Pythons)
    """
    os.chmod(path, stat.S_IWRITE)
    func(path)


def remove_directory_safe(path):
    """Remove a directory tree, clearing read-only files on the way.

    Raises:
        OSError - if the tree still cannot be removed
    """
    path = Path(path)
    if not path.exists():
        return
    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=_handle_remove_readonly)
    else:
        shutil.rmtree(path, onerror=_handle_remove_readonly)


def remove_file_safe(path):
    path = Path(path)
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except PermissionError:
        os.chmod(path, stat.S_IWRITE)
        path.unlink()


def sidecar_path(path):
    path = Path(path)
    return path.with_name(path.name + SIDECAR_SUFFIX)


def _try_remove(path, is_dir, errors):
    try:
        if is_dir:
            remove_directory_safe(path)
        else:
            remove_file_safe(path)
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)
        errors.append(f'{path}: {e}')
        return

    meta = sidecar_path(path)
    if meta.is_file():
        try:
            remove_file_safe(meta)
        except OSError as e:
            logger.warning("Could not remove %s: %s", meta, e)
            errors.append(f'{meta}: {e}')


def reconcile(source_dir, target_dir):
    """Synchronize target_dir with source_dir.

    New and changed files are copied over, subdirectories are merged
    recursively, and anything in the target that the source no longer has is
    deleted. Sidecar .meta files are left alone unless their owner goes.
    Delete failures are logged and skipped; copy failures propagate.

    Args:
        source_dir: str/Path - Extracted package content
        target_dir: str/Path - Installed package directory

    Returns:
        list - Paths that could not be deleted, with the reason
    """
    source_dir = Path(source_dir)
    target_dir = Path(target_dir)
    errors = []

    if target_dir.exists() and not target_dir.is_dir():
        remove_file_safe(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    source_files = set()
    source_dirs = set()
    for entry in source_dir.iterdir():
        if entry.is_dir():
            source_dirs.add(entry.name)
        else:
            source_files.add(entry.name)

    for name in sorted(source_files):
        dest = target_dir / name
        if dest.is_dir():
            remove_directory_safe(dest)
        shutil.copy2(source_dir / name, dest)

    for name in sorted(source_dirs):
        errors.extend(reconcile(source_dir / name, target_dir / name))

    for entry in sorted(target_dir.iterdir()):
        if entry.is_dir():
            if entry.name not in source_dirs:
                _try_remove(entry, True, errors)
        elif entry.name not in source_files and not entry.name.endswith(SIDECAR_SUFFIX):
            _try_remove(entry, False, errors)

    return errors
