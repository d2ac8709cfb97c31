"""User configuration loaded from ``<vault home>/config.yaml``."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from .models import ClassifierRules, VaultConfig
from .vault_store import vault_home_dir

logger = logging.getLogger("secretvault.config")

CONFIG_NAME = "config.yaml"


def load_config(home: Optional[Path] = None) -> VaultConfig:
    """Load configuration, falling back to defaults on a missing or bad file.

    ``SECRETVAULT_OP_VAULT`` overrides the configured document-store vault.

    Args:
        home: Vault home. Defaults to the resolved vault home.

    Returns:
        VaultConfig.
    """
    config_file = (home or vault_home_dir()) / CONFIG_NAME
    config = VaultConfig()
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            config = VaultConfig(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as exc:
            logger.warning("Failed to load config: %s, using defaults", exc)

    env_vault = os.environ.get("SECRETVAULT_OP_VAULT", "").strip()
    if env_vault:
        config.op_vault = env_vault
    return config


def load_rules(home: Optional[Path] = None) -> ClassifierRules:
    """Classifier rules with the user's configured additions applied."""
    return ClassifierRules.from_config(load_config(home))
