"""
Configuration for the face verification client.

Settings live in config.yaml at the project root and are read once per
process. Set FACE_CLIENT_CONFIG to point at another YAML file (for example
a per-machine camera index or a staging backend URL).

Usage:
    from core.config import get_config, get_section
    camera_config = get_section("camera")
    timeout = get_config()["api"]["timeout_sec"]
"""

import logging
import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional, Union


CONFIG_ENV_VAR = "FACE_CLIENT_CONFIG"

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

DEFAULT_MODEL_DIR = "storage/models"

# Loaded configuration, shared by every caller
_config_instance: Optional[Dict[str, Any]] = None


def get_project_root() -> Path:
    """
    Locate the directory holding config.yaml.

    Searches this module's directory and each of its parents.

    Raises:
        FileNotFoundError: If no parent directory has a config.yaml.
    """
    here = Path(__file__).resolve().parent

    for directory in (here, *here.parents):
        if (directory / "config.yaml").exists():
            return directory

    raise FileNotFoundError(
        f"No config.yaml found above {here}. "
        f"Run from the project checkout or set {CONFIG_ENV_VAR}."
    )


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Parse a YAML configuration file.

    Args:
        config_path: File to read. Defaults to $FACE_CLIENT_CONFIG, then
                     config.yaml in the project root.

    Returns:
        The parsed mapping (empty for an empty file).

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    config_path = config_path or os.environ.get(CONFIG_ENV_VAR)
    path = Path(config_path) if config_path else get_project_root() / "config.yaml"

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_config(reload: bool = False) -> Dict[str, Any]:
    """Return the process-wide configuration, loading it on first use."""
    global _config_instance

    if _config_instance is None or reload:
        _config_instance = load_config()

    return _config_instance


def get_section(section_name: str) -> Dict[str, Any]:
    """
    Return one top-level section, e.g. "camera" or "verification".

    Raises:
        KeyError: If the section is missing.
    """
    config = get_config()
    try:
        return config[section_name]
    except KeyError:
        raise KeyError(
            f"Configuration section '{section_name}' not found. "
            f"Available sections: {sorted(config)}"
        ) from None


def get_camera_config() -> Dict[str, Any]:
    return get_section("camera")


def get_face_detection_config() -> Dict[str, Any]:
    return get_section("face_detection")


def get_presence_config() -> Dict[str, Any]:
    return get_section("presence")


def get_verification_config() -> Dict[str, Any]:
    return get_section("verification")


def get_api_config() -> Dict[str, Any]:
    return get_section("api")


def resolve_path(path: Union[str, Path]) -> Path:
    """Resolve a configured path. Relative paths are taken from the project root."""
    path = Path(path)
    return path if path.is_absolute() else get_project_root() / path


def get_model_dir(detection_config: Optional[Dict[str, Any]] = None) -> Path:
    """Directory holding the face detection model files."""
    if detection_config is None:
        detection_config = get_face_detection_config()
    return resolve_path(detection_config.get("model_dir", DEFAULT_MODEL_DIR))


def get_logging_config() -> Dict[str, Any]:
    """Logging section, or {} so entry points still start without one."""
    return get_config().get("logging", {})


def configure_logging(level: Optional[str] = None) -> None:
    """
    Set up root logging once, from the `logging` section.

    An explicit level (e.g. from --log-level) wins over the file.
    """
    log_config = get_logging_config()
    level_name = (level or log_config.get("level", "INFO")).upper()

    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=log_config.get("format", DEFAULT_LOG_FORMAT),
    )


if __name__ == "__main__":
    config = get_config()
    print(f"Loaded sections: {sorted(config)}")

    camera = get_camera_config()
    print(f"Camera: {camera['width']}x{camera['height']} @ {camera['frame_rate']} fps")
    print(f"API base URL: {get_api_config()['base_url']}")
