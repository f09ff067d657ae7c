"""
Settings Store
Persists the extension manager's named settings in a small JSON file
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

KEY_COMMUNITY_URL = 'ExtensionManager_CommunityUrl'
KEY_EXTENSION_ROOT = 'ExtensionManager_ExtensionRootPath'
KEY_CORE_INSTALL_PATH = 'ExtensionManager_CoreInstallPath'
KEY_GITHUB_TOKEN = 'github_token'

DEFAULT_COMMUNITY_URL = 'https://github.com/xiajie321/EUFramworkerCommunity'
DEFAULT_EXTENSION_ROOT = 'Assets/Extensions'
DEFAULT_CORE_INSTALL_PATH = 'Assets/Core'
ASSETS_DIR_NAME = 'Assets'
PACKAGES_DIR_NAME = 'Packages'
STATE_DIR_NAME = '.extension-manager'
CACHE_FILE_NAME = 'registry-cache.json'


class SettingsStore:
    def __init__(self, settings_file):
        self.settings_file = Path(settings_file)
        self.settings = self._load_settings()

    def _load_settings(self):
        """Load settings from the JSON file"""
        if self.settings_file.exists():
            try:
                with open(self.settings_file, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if isinstance(data, dict) and isinstance(data.get('settings'), dict):
                    return data['settings']
                logger.warning("Ignoring malformed settings file %s", self.settings_file)
            except (OSError, ValueError) as e:
                logger.warning("Cannot read settings file %s: %s", self.settings_file, e)
        return {}

    def save_settings(self):
        """Save settings to the JSON file"""
        payload = {
            'last_updated': datetime.now().isoformat(),
            'settings': self.settings
        }
        try:
            self.settings_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.settings_file, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            return True
        except OSError as e:
            logger.error("Error saving settings to %s: %s", self.settings_file, e)
            return False

    def get_setting(self, key, default=None):
        """Get a setting value"""
        return self.settings.get(key, default)

    def set_setting(self, key, value):
        """Set a setting value"""
        self.settings[key] = value
        return self.save_settings()

    def delete_setting(self, key):
        """Remove a setting so its default applies again"""
        if key in self.settings:
            del self.settings[key]
            return self.save_settings()
        return False

    def get_all_settings(self):
        """Get all settings"""
        return dict(self.settings)


class ExtensionSettings:
    """Named settings consumed by the extension manager.

    The backing store only needs get_setting/set_setting/delete_setting, so a
    host can hand in its own preference storage instead of SettingsStore.
    """

    def __init__(self, store, project_root):
        """Initialize settings view.

        Args:
            store: SettingsStore - Key/value store supplied by the host
            project_root: str/Path - Root directory relative paths resolve against
        """
        self.store = store
        self.project_root = Path(project_root)

    @property
    def extension_root_path(self):
        return self.store.get_setting(KEY_EXTENSION_ROOT) or DEFAULT_EXTENSION_ROOT

    @extension_root_path.setter
    def extension_root_path(self, value):
        self.store.set_setting(KEY_EXTENSION_ROOT, str(value))

    @property
    def core_install_path(self):
        return self.store.get_setting(KEY_CORE_INSTALL_PATH) or DEFAULT_CORE_INSTALL_PATH

    @core_install_path.setter
    def core_install_path(self, value):
        self.store.set_setting(KEY_CORE_INSTALL_PATH, str(value))

    @property
    def community_url(self):
        return self.store.get_setting(KEY_COMMUNITY_URL) or DEFAULT_COMMUNITY_URL

    @community_url.setter
    def community_url(self, value):
        self.store.set_setting(KEY_COMMUNITY_URL, str(value).strip())

    @property
    def github_token(self):
        token = self.store.get_setting(KEY_GITHUB_TOKEN)
        if not token:
            token = os.environ.get('GITHUB_TOKEN')
        return token or None

    @property
    def packages_path(self):
        return self.project_root / PACKAGES_DIR_NAME

    @property
    def cache_file(self):
        return self.project_root / STATE_DIR_NAME / CACHE_FILE_NAME

    def get_full_path(self, path):
        """Resolve a configured path against the project root.

        Args:
            path: str/Path - Absolute path or path relative to the project root

        Returns:
            Path - Absolute path, or None for an empty value
        """
        if not path:
            return None
        path = Path(str(path).replace('\\', '/'))
        if path.is_absolute():
            return path
        return Path(os.path.normpath(self.project_root / path))

    def resolve_install_path(self, install_path):
        """Resolve a manifest installPath.

        Paths under Assets or Packages are taken relative to the project root,
        anything else relative to the Assets folder.

        Args:
            install_path: str - installPath as declared in extension.json

        Returns:
            Path - Absolute install directory, or None for an empty value
        """
        if not install_path:
            return None
        install_path = str(install_path).replace('\\', '/')
        if Path(install_path).is_absolute():
            return Path(install_path)
        if install_path.startswith(ASSETS_DIR_NAME) or install_path.startswith(PACKAGES_DIR_NAME):
            return self.get_full_path(install_path)
        return self.get_full_path(f'{ASSETS_DIR_NAME}/{install_path}')

    def reset_settings(self):
        """Drop the stored overrides so every named value falls back to its default"""
        for key in (KEY_COMMUNITY_URL, KEY_EXTENSION_ROOT, KEY_CORE_INSTALL_PATH):
            self.store.delete_setting(key)
