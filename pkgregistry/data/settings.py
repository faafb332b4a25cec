from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional
import logging

from pydantic import ValidationError

from pkgregistry.domain.models import RegistryConfig
from pkgregistry.services.authentication import normalize_api_keys

logger = logging.getLogger(__name__)

DATA_ROOT_ENV_VAR = "PKGREGISTRY_DATA_DIR"
CONFIG_FILE_NAME = "registry.json"

# Resolve repository root (project root, not the Python package root)
_REPO_ROOT = Path(__file__).resolve().parents[2]
_DEFAULT_DATA_DIR = _REPO_ROOT / "data"


def get_data_dir() -> Path:
    """
    Determine the data directory path.

    Priority:
    1. Environment variable PKGREGISTRY_DATA_DIR
    2. '<repository root>/data'
    """
    env_path = os.environ.get(DATA_ROOT_ENV_VAR)
    if env_path:
        data_dir = Path(env_path).expanduser()
    else:
        data_dir = _DEFAULT_DATA_DIR

    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def load_registry_config(data_dir: Optional[Path] = None) -> RegistryConfig:
    """
    Load registry.json, merging with defaults for any missing fields,
    and write it back so any new fields are persisted.
    Cleartext API keys are hashed before the file is written back.
    """
    data_dir = data_dir or get_data_dir()
    path = data_dir / CONFIG_FILE_NAME

    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            config = RegistryConfig(**raw)
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            # Unreadable files fall back to defaults.
            logger.warning(f"Ignoring unreadable {path}: {e}")
            config = RegistryConfig()
    else:
        config = RegistryConfig()

    cleartext = sum(1 for cred in config.api_keys if cred.type == "cleartext")
    if cleartext:
        logger.info(f"Hashing {cleartext} cleartext API key(s) from {path}")
        config.api_keys = normalize_api_keys(config.api_keys)

    save_registry_config(config, data_dir)
    return config


def save_registry_config(config: RegistryConfig, data_dir: Optional[Path] = None) -> None:
    data_dir = data_dir or get_data_dir()
    path = data_dir / CONFIG_FILE_NAME
    path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
