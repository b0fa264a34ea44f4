"""Centralized configuration for the adventure archiver.

This module provides:
- PROJECT_ROOT and SRC_DIR paths
- Environment variable access with get_env()
- Automatic .env loading
- Typed accessors for relay, storage and archive settings

Usage:
    from config import get_env, get_max_folder_depth

    relay_url = get_env("FOUNDRY_RELAY_URL")
    depth = get_max_folder_depth()
"""

import os
from pathlib import Path
from typing import Optional, Tuple
from dotenv import load_dotenv

# Calculate paths once at import time
SRC_DIR = Path(__file__).parent.resolve()
PROJECT_ROOT = SRC_DIR.parent.resolve()

# Load .env from project root
_env_path = PROJECT_ROOT / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

# Version stamped into adventure.json
SCHEMA_VERSION = 2

# Extension of packed adventure archives
ARCHIVE_EXTENSION = ".fvttadv"

DEFAULT_MAX_FOLDER_DEPTH = 3
DEFAULT_CORE_ASSET_PREFIXES = "icons/,ui/"


def get_env(key: str, default: Optional[str] = None) -> str:
    """Get environment variable value.

    Args:
        key: Environment variable name
        default: Default value if not set. If None and key not found, raises KeyError.

    Returns:
        Environment variable value or default

    Raises:
        KeyError: If key not found and no default provided
    """
    value = os.environ.get(key)
    if value is not None:
        return value
    if default is not None:
        return default
    raise KeyError(f"Environment variable '{key}' not set and no default provided")


def get_relay_url() -> str:
    """Get relay server URL."""
    return get_env("FOUNDRY_RELAY_URL")


def get_foundry_url() -> str:
    """Get FoundryVTT URL."""
    return get_env("FOUNDRY_URL", default="http://localhost:30000")


def get_api_key() -> str:
    """Get relay API key."""
    return get_env("FOUNDRY_API_KEY")


def get_client_id() -> str:
    """Get relay client ID of the connected world."""
    return get_env("FOUNDRY_CLIENT_ID")


def get_forge_api_key() -> Optional[str]:
    """Get The Forge API key, if configured."""
    return os.environ.get("FORGE_API_KEY") or None


def get_storage_target() -> str:
    """
    Get the storage backend target.

    Returns:
        "forge" when FOUNDRY_TARGET is "forge" or a Forge API key is present,
        otherwise "local"
    """
    target = get_env("FOUNDRY_TARGET", default="").strip().lower()
    if target in ("local", "forge"):
        return target
    return "forge" if get_forge_api_key() else "local"


def get_max_folder_depth() -> int:
    """Get the maximum folder nesting depth supported by the host."""
    raw = get_env("FOLDER_MAX_DEPTH", default=str(DEFAULT_MAX_FOLDER_DEPTH))
    try:
        depth = int(raw)
    except ValueError:
        raise ValueError(f"FOLDER_MAX_DEPTH must be an integer, got '{raw}'")
    if depth < 1:
        raise ValueError(f"FOLDER_MAX_DEPTH must be at least 1, got {depth}")
    return depth


def get_core_asset_prefixes() -> Tuple[str, ...]:
    """Get path prefixes of core-library assets that are never packed."""
    raw = get_env("CORE_ASSET_PREFIXES", default=DEFAULT_CORE_ASSET_PREFIXES)
    return tuple(prefix.strip() for prefix in raw.split(",") if prefix.strip())
