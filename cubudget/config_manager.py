"""
Configuration management for the ClickUp budget monitor
"""

import json
import logging
import os
import shutil
from pathlib import Path

from .models import Config

logger = logging.getLogger(__name__)

DEFAULTS_DIR = Path(__file__).parent / 'defaults'
PACKAGE_LOGGER = "cubudget"


class ConfigurationError(Exception):
    """Raised when there's an issue with configuration"""
    pass


def merge_json_defaults(default_path: Path, user_path: Path) -> bool:
    """Add keys missing from ``user_path`` using ``default_path``; existing values are kept."""
    if not default_path.exists():
        return False

    if not user_path.exists():
        user_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy(default_path, user_path)
        logger.info(f"Created {user_path} from defaults")
        return True

    with open(default_path, 'r') as f:
        default_data = json.load(f)
    with open(user_path, 'r') as f:
        user_data = json.load(f)

    changed = False
    for key, value in default_data.items():
        if key not in user_data:
            user_data[key] = value
            changed = True

    if changed:
        with open(user_path, 'w') as f:
            json.dump(user_data, f, indent=2)
        logger.info(f"Updated {user_path} with new settings")

    return changed


def update_config_files(config_path: str) -> bool:
    """Create or extend the user configuration file from the packaged defaults."""
    return merge_json_defaults(DEFAULTS_DIR / 'config.json', Path(config_path))


def validate_config_data(config_data: dict) -> None:
    """Validate configuration data structure and values"""
    if not isinstance(config_data, dict):
        raise ConfigurationError("Configuration must be a JSON object")

    base_url = config_data.get('clickup_base_url', 'https://api.clickup.com/api/v2')
    if not isinstance(base_url, str) or not base_url.startswith(('http://', 'https://')):
        raise ConfigurationError("Invalid ClickUp base URL format. Must start with http:// or https://")

    log_level = config_data.get('log_level', 'INFO')
    if not isinstance(log_level, str) or not isinstance(logging.getLevelName(log_level.upper()), int):
        raise ConfigurationError(f"Unknown log level: {log_level}")

    poll_seconds = config_data.get('scheduler_poll_seconds', 60)
    if not isinstance(poll_seconds, int) or isinstance(poll_seconds, bool) or poll_seconds <= 0:
        raise ConfigurationError("Scheduler poll interval must be a positive integer")


def load_config(config_file: str) -> Config:
    """Load and validate configuration from JSON file, with environment overrides"""
    try:
        with open(config_file, 'r') as f:
            config_data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Config file not found: {config_file}")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in config file: {e}")

    validate_config_data(config_data)

    base_url = os.getenv('CLICKUP_API_BASE_URL') or config_data.get('clickup_base_url', 'https://api.clickup.com/api/v2')

    # Relative state directories resolve next to the config file
    state_dir = Path(config_data.get('state_dir', '.'))
    if not state_dir.is_absolute():
        state_dir = Path(config_file).resolve().parent / state_dir

    try:
        return Config(
            clickup_base_url=base_url,
            state_dir=str(state_dir),
            log_level=config_data.get('log_level', 'INFO'),
            log_file=config_data.get('log_file', 'cu-budget.log'),
            scheduler_poll_seconds=config_data.get('scheduler_poll_seconds', 60),
            api_token=os.getenv('CLICKUP_API_TOKEN') or None,
        )
    except ValueError as e:
        raise ConfigurationError(f"Error loading config: {e}")


def setup_logging(config: Config) -> None:
    """Setup logging configuration"""
    package_logger = logging.getLogger(PACKAGE_LOGGER)

    # Clear existing handlers
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
        handler.close()

    log_level = getattr(logging, config.log_level.upper(), logging.INFO)
    package_logger.setLevel(log_level)
    package_logger.propagate = False

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if config.log_file:
        file_handler = logging.FileHandler(config.log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)
