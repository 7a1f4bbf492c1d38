"""YAML configuration loading.

Uses ``yaml.safe_load`` so configuration files can only produce plain
scalars, lists and mappings. Consumed by the ``from_yaml()`` factories of
[RelayPool][nostrpapers.client.pool.RelayPool] and
[Session][nostrpapers.client.session.Session].
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


def load_yaml(config_path: str | Path) -> dict[str, Any]:
    """Load a YAML file whose top level is a mapping.

    Returns:
        The parsed mapping, or an empty dict for an empty file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the YAML is invalid or its top level is not
            a mapping.

    Note:
        The result is not schema-checked; pass it to the relevant Pydantic
        config model.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with path.open(encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Expected a mapping at the top of {config_path}, got {type(data).__name__}"
        )
    return data
