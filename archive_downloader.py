"""
Archive Downloader
Downloads repository zip archives and extracts them
"""

import logging
import os
import zipfile
from pathlib import Path

import requests

from github_api import build_headers

logger = logging.getLogger(__name__)

ZIP_MAGIC = b'PK'


class ArchiveError(Exception):
    pass


class ArchiveDownloader:
    def __init__(self, http=None, token=None, timeout=60):
        """Initialize archive downloader.

        Args:
            http: Optional object with a requests-style get(); defaults to requests
            token: Optional str - GitHub token sent with every request
            timeout: int - Seconds before a stalled download is abandoned
        """
        self.http = http or requests
        self.token = token
        self.timeout = timeout

    def download(self, url, zip_path):
        """Stream an archive to disk and check it looks like a zip.

        Raises:
            ArchiveError - on HTTP failure, empty payload or non-zip content
        """
        zip_path = Path(zip_path)
        try:
            response = self.http.get(url, headers=build_headers(self.token), stream=True, timeout=self.timeout)
            response.raise_for_status()
            with open(zip_path, 'wb') as f:
                for chunk in response.iter_content(chunk_size=8192):
                    if chunk:
                        f.write(chunk)
        except requests.RequestException as e:
            raise ArchiveError(f'Download failed for {url}: {e}') from e
        except OSError as e:
            raise ArchiveError(f'Cannot write {zip_path}: {e}') from e

        with open(zip_path, 'rb') as f:
            header = f.read(4)
        if not header:
            raise ArchiveError(f'Empty archive from {url}')
        if not header.startswith(ZIP_MAGIC):
            raise ArchiveError(f'Downloaded file from {url} is not a zip archive')
        return zip_path

    def extract(self, zip_path, extract_path):
        """Extract an archive, refusing entries that would land outside extract_path.

        Raises:
            ArchiveError - on a corrupt archive or an unsafe entry
        """
        extract_path = Path(extract_path)
        extract_path.mkdir(parents=True, exist_ok=True)
        base = os.path.realpath(extract_path)
        try:
            with zipfile.ZipFile(zip_path, 'r') as zip_ref:
                for member in zip_ref.namelist():
                    target = os.path.realpath(os.path.join(base, member))
                    if target != base and not target.startswith(base + os.sep):
                        raise ArchiveError(f'Unsafe path in archive: {member}')
                zip_ref.extractall(extract_path)
        except zipfile.BadZipFile as e:
            raise ArchiveError(f'Corrupt archive {zip_path}: {e}') from e
        except OSError as e:
            raise ArchiveError(f'Extraction of {zip_path} failed: {e}') from e
        return extract_path

    def fetch(self, url, work_dir):
        """Download url into work_dir and extract it.

        Returns:
            Path - Directory holding the extracted content
        """
        work_dir = Path(work_dir)
        work_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading %s", url)
        zip_path = self.download(url, work_dir / 'download.zip')
        return self.extract(zip_path, work_dir / 'extracted')
