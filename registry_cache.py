"""
Registry Cache
On-disk cache of remote manifests keyed by path and content hash
"""

import json
import logging
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from manifest import ManifestParseError, PackageManifest

logger = logging.getLogger(__name__)


@dataclass
class CacheRecord:
    path: str
    sha: str
    manifest: PackageManifest

    def to_dict(self):
        return {'path': self.path, 'sha': self.sha, 'manifest': self.manifest.to_dict()}


@dataclass
class CacheData:
    records: List[CacheRecord] = field(default_factory=list)
    last_updated: Optional[str] = None
    branch: str = 'main'

    def by_path(self):
        return {record.path: record for record in self.records}


class RegistryCacheStore:
    def __init__(self, cache_file):
        self.cache_file = Path(cache_file)
        self._write_lock = threading.Lock()

    def load(self):
        """Load cached registry records.

        Returns:
            CacheData - Empty when the file is missing or unreadable; broken
            records are dropped individually
        """
        if not self.cache_file.is_file():
            return CacheData()

        try:
            with open(self.cache_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Registry cache %s unreadable, starting empty: %s", self.cache_file, e)
            return CacheData()

        if not isinstance(data, dict) or not isinstance(data.get('records'), list):
            logger.warning("Registry cache %s has an unexpected layout, starting empty", self.cache_file)
            return CacheData()

        records = []
        for raw in data['records']:
            try:
                records.append(CacheRecord(
                    path=str(raw['path']),
                    sha=str(raw['sha']),
                    manifest=PackageManifest.from_dict(raw['manifest'])
                ))
            except (KeyError, TypeError, ManifestParseError) as e:
                logger.warning("Dropping cache record %r: %s", raw, e)

        return CacheData(
            records=records,
            last_updated=data.get('last_updated'),
            branch=data.get('branch') or 'main'
        )

    def save(self, cache_data):
        """Write the cache atomically.

        Returns:
            bool - True on success; failures are logged, never raised
        """
        cache_data.last_updated = datetime.now().isoformat()
        payload = {
            'last_updated': cache_data.last_updated,
            'branch': cache_data.branch,
            'records': [record.to_dict() for record in cache_data.records]
        }

        with self._write_lock:
            tmp = None
            try:
                self.cache_file.parent.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(
                    'w', encoding='utf-8', dir=self.cache_file.parent,
                    prefix='.registry_', suffix='.tmp', delete=False
                ) as f:
                    tmp = Path(f.name)
                    json.dump(payload, f, indent=2, ensure_ascii=False)
                tmp.replace(self.cache_file)
                return True
            except OSError as e:
                logger.error("Error saving registry cache %s: %s", self.cache_file, e)
                if tmp is not None:
                    tmp.unlink(missing_ok=True)
                return False
