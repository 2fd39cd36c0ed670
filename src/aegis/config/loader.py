# SPDX-License-Identifier: Apache-2.0
"""Centralized policy loader with version validation."""

from __future__ import annotations

import logging
import os
import warnings
from pathlib import Path
from typing import Any, Dict, Union

import yaml
from pydantic import ValidationError

from .policy import CURRENT_CONFIG_VERSION, MIN_SUPPORTED_VERSION, DispatchPolicy

PathLike = Union[str, Path]

logger = logging.getLogger(__name__)


class ConfigVersionError(RuntimeError):
    """Error when configuration version is incompatible."""
    pass


def load_policy(path: PathLike) -> DispatchPolicy:
    """Load and validate a dispatch policy from a YAML file.

    Args:
        path: Path to YAML policy file

    Returns:
        DispatchPolicy instance

    Raises:
        ConfigVersionError: If config version is missing, too old, or incompatible
        FileNotFoundError: If the YAML file doesn't exist
        ValueError: If the YAML is invalid or contains an invalid policy
    """
    yaml_path = Path(path)
    if not yaml_path.exists():
        raise FileNotFoundError(f"Policy file not found: {path}")

    try:
        yaml_content = yaml_path.read_text()

        # Expand environment variables
        expanded_content = os.path.expandvars(yaml_content)

        cfg_dict = yaml.safe_load(expanded_content)
        if not isinstance(cfg_dict, dict):
            raise ValueError("YAML file must contain a dictionary at the root level")

        normalized_data = _normalize_yaml_keys(cfg_dict)

        # Version validation
        ver = str(normalized_data.get("config_version", ""))
        if not ver:
            raise ConfigVersionError(
                "config_version missing. Add `config_version: \"1\"` to your YAML."
            )

        if ver < MIN_SUPPORTED_VERSION:
            raise ConfigVersionError(
                f"Config version {ver} is too old. "
                f"Minimum supported is {MIN_SUPPORTED_VERSION}. "
                "Please upgrade your configuration."
            )

        if ver > CURRENT_CONFIG_VERSION:
            warnings.warn(
                f"This binary understands config_version {CURRENT_CONFIG_VERSION}, "
                f"but file is {ver}. Attempting best-effort parse.",
                UserWarning,
                stacklevel=2,
            )

        normalized_data["config_version"] = ver
        policy = DispatchPolicy(**normalized_data)
        logger.debug("Loaded dispatch policy from %s", yaml_path)
        return policy

    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in policy file: {e}") from e
    except ValidationError as e:
        raise ValueError(f"Invalid dispatch policy in {path}: {e}") from e


def _normalize_yaml_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize YAML keys from kebab-case to snake_case."""
    return {str(key).replace("-", "_"): value for key, value in data.items()}
