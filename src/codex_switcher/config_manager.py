"""
Configuration Manager for Codex Switcher

Handles storage and retrieval of:
- Usage refresh settings (cache TTL, delay between fetches, request timeout)
- Locations of the config root and the saved account credentials
- Read access to the accounts registry (accounts.json)

Settings use a simple key=value file for easy manual editing. The accounts
registry itself is written by the account management commands, not here.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Dict, Any, List

from .usage_types import (
    DEFAULT_CACHE_TTL,
    DEFAULT_FETCH_DELAY,
    REQUEST_TIMEOUT,
    USAGE_ENDPOINT,
    Profile,
)


CONFIG_FILE_NAME = "switcher.conf"
ACCOUNTS_FILE_NAME = "accounts.json"

logger = logging.getLogger("ConfigManager")


class ConfigManager:
    """Manages configuration for Codex Switcher"""

    def __init__(self):
        self.config_root = self._get_config_root()
        self.accounts_root = self._get_accounts_root()

        self.config_file = self.config_root / CONFIG_FILE_NAME
        self.accounts_file = self.config_root / ACCOUNTS_FILE_NAME

        self._config = self._load_config()

    def _get_config_root(self) -> Path:
        """Directory holding switcher.conf, accounts.json and the usage cache"""
        if os.environ.get('CODEX_SWITCHER_HOME'):
            return Path(os.environ['CODEX_SWITCHER_HOME'])
        return Path.home() / '.codex_switcher'

    def _get_accounts_root(self) -> Path:
        """Directory holding each profile's saved auth.json"""
        if os.environ.get('CODEX_ACCOUNTS_HOME'):
            return Path(os.environ['CODEX_ACCOUNTS_HOME'])
        return Path.home() / '.codex_accounts'

    def ensure_dirs(self):
        self.config_root.mkdir(parents=True, exist_ok=True)

    def _parse_config_file(self, content: str) -> Dict[str, Any]:
        """Parse key=value config file format"""
        config = {}

        for line in content.splitlines():
            line = line.strip()

            # Skip empty lines and comments
            if not line or line.startswith('#'):
                continue

            # Skip malformed lines silently
            if '=' not in line:
                continue

            key, value = line.split('=', 1)
            key = key.strip()
            value = value.strip()

            if value.startswith('"') and value.endswith('"'):
                value = value[1:-1]
            elif value.startswith("'") and value.endswith("'"):
                value = value[1:-1]

            config[key] = self._convert_config_value(value)

        return config

    def _convert_config_value(self, value: str) -> Any:
        """Convert string config value to appropriate Python type"""
        if not value:
            return ""

        if value.lower() in ('true', 'yes', 'on'):
            return True
        elif value.lower() in ('false', 'no', 'off'):
            return False

        try:
            if '.' not in value:
                return int(value)
            else:
                return float(value)
        except ValueError:
            pass

        return value

    def _format_config_file(self, config: Dict[str, Any]) -> str:
        """Format config as key=value file"""
        lines = [
            "# Codex Switcher Configuration File",
            "# Edit this file to customize your settings",
            "",
            "# Usage Settings",
        ]

        for key in sorted(config):
            value = config[key]
            if isinstance(value, bool):
                value = 'true' if value else 'false'
            elif isinstance(value, str) and (' ' in value or '"' in value or "'" in value):
                value = f'"{value}"'
            lines.append(f"{key} = {value}")

        return "\n".join(lines) + "\n"

    def _load_config(self) -> Dict[str, Any]:
        """Load settings from the config file merged over defaults"""
        config = self._get_default_config()

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    content = f.read()
                config.update(self._parse_config_file(content))
            except (IOError, UnicodeDecodeError) as e:
                # If config file is unreadable, run with defaults
                logger.warning(f"Could not read {self.config_file}: {e}")

        return config

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration"""
        return {
            'usage_cache_ttl': DEFAULT_CACHE_TTL,        # 15 minutes
            'usage_fetch_delay': DEFAULT_FETCH_DELAY,    # 2 seconds
            'usage_request_timeout': REQUEST_TIMEOUT,    # 5 seconds
            'usage_endpoint': USAGE_ENDPOINT,
            'debug': False,
        }

    def _save_config(self):
        """Save configuration to config file atomically"""
        temp_path = None
        try:
            self.ensure_dirs()
            content = self._format_config_file(self._config)

            with tempfile.NamedTemporaryFile(
                mode='w',
                dir=self.config_root,
                delete=False,
                suffix='.tmp',
                encoding='utf-8',
                newline='\n'
            ) as tmp_file:
                temp_path = tmp_file.name
                tmp_file.write(content)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())

            os.replace(temp_path, self.config_file)

        except (IOError, OSError) as e:
            if temp_path:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
            raise OSError(f"Failed to save configuration: {e}") from e

    # Property accessors for common config values

    @property
    def usage_cache_ttl(self) -> float:
        """Get usage cache TTL in seconds"""
        return self._config.get('usage_cache_ttl', DEFAULT_CACHE_TTL)

    @property
    def usage_fetch_delay(self) -> float:
        """Get delay between usage fetches in seconds"""
        return self._config.get('usage_fetch_delay', DEFAULT_FETCH_DELAY)

    @property
    def usage_request_timeout(self) -> float:
        """Get usage request timeout in seconds"""
        return self._config.get('usage_request_timeout', REQUEST_TIMEOUT)

    @property
    def usage_endpoint(self) -> str:
        return self._config.get('usage_endpoint', USAGE_ENDPOINT)

    @property
    def debug(self) -> bool:
        return bool(self._config.get('debug', False))

    # Configuration management methods

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value"""
        return self._config.get(key, default)

    def set(self, key: str, value: Any):
        """Set a configuration value"""
        self._config[key] = value
        self._save_config()

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values"""
        return self._config.copy()

    def validate_config(self) -> List[str]:
        """Validate current configuration and return any issues"""
        issues = []

        for key in ['usage_cache_ttl', 'usage_fetch_delay']:
            value = self._config.get(key, 0)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                issues.append(f"{key} must be a number")
            elif value < 0:
                issues.append(f"{key} cannot be negative")

        timeout = self._config.get('usage_request_timeout', REQUEST_TIMEOUT)
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            issues.append("usage_request_timeout must be a positive number")

        if not str(self.usage_endpoint).startswith(('http://', 'https://')):
            issues.append(f"Invalid usage_endpoint '{self.usage_endpoint}'")

        return issues

    # Accounts registry (read-only)

    def get_auth_file_path(self, profile_name: str) -> Path:
        """Default location of a profile's saved auth.json"""
        return self.accounts_root / f"{profile_name}.auth.json"

    def _load_registry(self) -> Dict[str, Any]:
        if not self.accounts_file.exists():
            return {}
        try:
            with open(self.accounts_file, 'r', encoding='utf-8') as f:
                registry = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read {self.accounts_file}: {e}")
            return {}
        return registry if isinstance(registry, dict) else {}

    def load_accounts(self) -> Dict[str, Profile]:
        """Profiles from accounts.json, keyed by name

        Legacy records (a directory string) and records without an
        authFile resolve to the default auth.json location.
        """
        accounts = self._load_registry().get('accounts')
        if not isinstance(accounts, dict):
            return {}

        profiles = {}
        for name, record in accounts.items():
            auth_file = None
            if isinstance(record, dict) and isinstance(record.get('authFile'), str) and record['authFile']:
                auth_file = record['authFile']
            if not auth_file:
                auth_file = str(self.get_auth_file_path(name))
            profiles[name] = Profile(name=name, auth_file=auth_file)
        return profiles

    @property
    def active_account(self) -> Optional[str]:
        active = self._load_registry().get('active')
        return active if isinstance(active, str) and active else None

    def get_config_info(self) -> Dict[str, Any]:
        """Get information about the configuration"""
        return {
            'config_file': str(self.config_file),
            'config_root': str(self.config_root),
            'accounts_root': str(self.accounts_root),
            'accounts_file': str(self.accounts_file),
            'config_exists': self.config_file.exists(),
            'validation_issues': self.validate_config(),
        }
