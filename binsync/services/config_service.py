"""
Configuration service for binsync
"""

import json
import yaml
from typing import Optional
from pathlib import Path

from ..exceptions import ConfigurationError
from ..models.config import SyncConfig


class ConfigService:
    """Service for loading and validating configuration"""

    def __init__(self):
        self._config: Optional[SyncConfig] = None

    def load_config(self, config_path: str) -> SyncConfig:
        """Load configuration from a JSON or YAML file"""
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                if config_path.suffix.lower() == '.json':
                    config_dict = json.load(f)
                elif config_path.suffix.lower() in ['.yml', '.yaml']:
                    config_dict = yaml.safe_load(f)
                else:
                    raise ConfigurationError(f"Unsupported configuration format: {config_path.suffix}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON configuration: {e}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML configuration: {e}")
        except OSError as e:
            raise ConfigurationError(f"Error reading configuration: {e}")

        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration root must be a mapping")

        self._config = SyncConfig.from_dict(config_dict)
        return self._config

    def get_config(self) -> SyncConfig:
        """Get current configuration"""
        if self._config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._config

    def validate_config(self, config: SyncConfig) -> None:
        """
        Check the parts of the configuration that are only resolved at startup

        Raises:
            ConfigurationError: on an invalid connection string or mapping
        """
        config.source_config()
        config.target_config()
        config.build_mapping_table()
