# log4shell_scanner/config.py
import logging
from pathlib import Path
from typing import Optional
import yaml
from platformdirs import user_config_path

logger = logging.getLogger(__name__)

APP_NAME = "log4shell-scanner"
CONFIG_FILENAME = "config.yaml"

DEFAULTS = {
    'trace': False,
    'format': 'text',
    'exclude_paths': [],
}


def candidate_config_paths(explicit: Optional[str] = None) -> list[Path]:
    """--config first, then ./config.yaml, then the per-user config directory."""
    if explicit:
        return [Path(explicit)]
    return [Path(CONFIG_FILENAME), user_config_path(appname=APP_NAME) / CONFIG_FILENAME]


def load_config(config_path: Optional[str] = None) -> dict:
    """
    Returns DEFAULTS overlaid with the first config file found. Unreadable or
    malformed files are logged and ignored.
    """
    config = dict(DEFAULTS)
    for path in candidate_config_paths(config_path):
        if not path.is_file():
            continue
        logger.debug(f"Attempting to load configuration from '{path.resolve()}'...")
        try:
            with open(path, 'r', encoding='utf-8') as f:
                loaded_yaml = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML configuration file '{path.resolve()}': {e}")
            return config
        except OSError as e:
            logger.error(f"Could not read configuration '{path.resolve()}': {e}")
            return config

        if loaded_yaml is None:
            return config
        if not isinstance(loaded_yaml, dict):
            logger.warning(f"Config file '{path.resolve()}' does not contain a valid dictionary structure.")
            return config

        for key, value in loaded_yaml.items():
            if key not in DEFAULTS:
                logger.warning(f"Ignoring unknown configuration key '{key}' in {path}")
                continue
            config[key] = value
        exclude_paths = config['exclude_paths'] or []
        if isinstance(exclude_paths, str):
            exclude_paths = [exclude_paths]
        config['exclude_paths'] = [str(p) for p in exclude_paths]
        logger.info(f"Loaded configuration from {path.resolve()}")
        return config

    if config_path:
        logger.warning(f"Configuration file '{config_path}' not found. Using defaults/CLI args.")
    return config
