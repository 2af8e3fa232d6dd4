"""
Configuration Loading

Settings live in config.yaml at the project root, one top-level section per
component (pose, capture, embedding, matching, camera, face_detection,
storage, api). The file is parsed once and cached for the process.

Set FACEID_CONFIG to load a different file, e.g. a site-specific camera index
or looser thresholds for a kiosk.

Components never read this module on their own: they take a plain dict
(usually one section) and use built-in defaults for missing keys, so tests
can construct them without any file.

Usage:
    from faceid.config import get_matching_config
    engine = MatchEngine(get_matching_config())
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import yaml

CONFIG_FILENAME = "config.yaml"
CONFIG_ENV_VAR = "FACEID_CONFIG"

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000

_config_instance: Optional[Dict[str, Any]] = None


def get_project_root() -> Path:
    """
    Directory holding config.yaml, searched upwards from this package.

    Raises:
        FileNotFoundError: If no parent directory has a config.yaml.
    """
    here = Path(__file__).resolve().parent
    for directory in (here, *here.parents):
        if (directory / CONFIG_FILENAME).exists():
            return directory

    raise FileNotFoundError(
        f"No {CONFIG_FILENAME} found above {here}. "
        f"Run from the project checkout or set {CONFIG_ENV_VAR}."
    )


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Parse a YAML config file.

    Args:
        config_path: File to read. Defaults to $FACEID_CONFIG, then the
                     project's config.yaml.

    Returns:
        The parsed mapping; an empty file gives {}.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR)
    path = Path(config_path) if config_path else get_project_root() / CONFIG_FILENAME

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_config(reload: bool = False) -> Dict[str, Any]:
    """Cached configuration; reload=True re-reads the file."""
    global _config_instance

    if _config_instance is None or reload:
        _config_instance = load_config()

    return _config_instance


def get_section(section_name: str) -> Dict[str, Any]:
    """
    One top-level section of the configuration.

    A section that is present but empty yields {}.

    Raises:
        KeyError: If the section is missing altogether.
    """
    config = get_config()
    if section_name not in config:
        raise KeyError(
            f"Configuration section '{section_name}' not found "
            f"(available: {', '.join(config) or 'none'})"
        )
    return config[section_name] or {}


def get_pose_config() -> Dict[str, Any]:
    return get_section("pose")


def get_capture_config() -> Dict[str, Any]:
    return get_section("capture")


def get_embedding_config() -> Dict[str, Any]:
    return get_section("embedding")


def get_matching_config() -> Dict[str, Any]:
    return get_section("matching")


def get_camera_config() -> Dict[str, Any]:
    return get_section("camera")


def get_face_detection_config() -> Dict[str, Any]:
    return get_section("face_detection")


def get_storage_config() -> Dict[str, Any]:
    return get_section("storage")


def get_api_config() -> Dict[str, Any]:
    return get_section("api")


def get_storage_path() -> Path:
    """Registry database path; relative paths are taken from the project root."""
    db_path = Path(get_storage_config().get("db_path", "storage/identities.sqlite"))
    return db_path if db_path.is_absolute() else get_project_root() / db_path


def get_server_config() -> Dict[str, Any]:
    """
    Host and port for uvicorn.

    Explicit api.host / api.port win. Otherwise both come from api.base_url,
    with localhost served on all interfaces and port 8000 when none is given.
    """
    api_config = get_api_config()
    parts = urlsplit(api_config.get("base_url", f"http://localhost:{DEFAULT_PORT}"))

    host = parts.hostname
    if host in (None, "localhost", "127.0.0.1"):
        host = DEFAULT_HOST
    try:
        port = parts.port or DEFAULT_PORT
    except ValueError:
        port = DEFAULT_PORT

    return {
        "host": api_config.get("host", host),
        "port": int(api_config.get("port", port)),
    }
