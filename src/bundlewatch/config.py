"""Configuration file loading for bundlewatch."""

import logging
from pathlib import Path

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

from bundlewatch.options import UserConfig

logger = logging.getLogger(__name__)

# Default config template for a single-entry project
DEFAULT_CONFIG_TEMPLATE = """\
# Auto-generated bundlewatch.toml

input = { main = "src/main.js" }
log_level = "info"

[output]
dir = "dist"

[watch]
skip_write = false
exclude = ["**/node_modules/**", "**/.git/**"]
"""


def create_default_config(config_path: Path) -> bool:
    """
    Create a default config file if it doesn't exist.

    Args:
        config_path: Path where config should be created

    Returns:
        True if config was created, False if it already exists

    Raises:
        PermissionError: If unable to write to the directory
        OSError: If other file system errors occur
    """
    if config_path.exists():
        return False

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG_TEMPLATE)
    return True


def load_watch_config(path: str | Path) -> UserConfig:
    """Load a user configuration from a TOML file.

    Relative ``cwd`` values are resolved against the config file's directory,
    which is also the default cwd.

    Args:
        path: Path to TOML config file

    Returns:
        UserConfig

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not valid TOML
        ConfigurationError: If it contains unknown options
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}\nRun 'bundlewatch' without arguments to auto-create a default config."
        )

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Failed to parse config file {path}: {e}") from e

    base_dir = path.parent.resolve()
    cwd = Path(raw.get("cwd", "."))
    raw["cwd"] = str(cwd if cwd.is_absolute() else (base_dir / cwd).resolve())

    config = UserConfig.from_dict(raw)
    logger.debug(f"Loaded config from {path} (cwd={config.cwd})")
    return config
