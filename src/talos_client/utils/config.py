"""
Configuration utilities for loading upgrade settings from YAML.

The file holds default settings at the top level and optional per-node
overrides under ``nodes``::

    talosconfig: ~/.talos/config
    kubeconfig: ~/.kube/config
    timeout_minutes: 5
    nodes:
      node-a:
        reboot_mode: powercycle
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..errors import ConfigNotFoundError
from ..models import UpgradeSettings


def read_config_file(yaml_file_path: str) -> Dict[str, Any]:
    """
    Read the YAML configuration file.

    Raises:
        FileNotFoundError: If the YAML file cannot be found
        yaml.YAMLError: If the YAML file is malformed
        ConfigNotFoundError: If the document is not a mapping
    """
    path = Path(yaml_file_path).expanduser()
    try:
        with open(path, "r") as file:
            config = yaml.safe_load(file)
    except FileNotFoundError:
        raise FileNotFoundError(f"YAML file not found at path: {path}")
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Error parsing YAML file: {e}")

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigNotFoundError(f"Expected a mapping at the top of {path}")
    return config


def get_node_settings(config: Dict[str, Any], node: Optional[str] = None) -> Dict[str, Any]:
    """Merge the top-level settings with the overrides for ``node``."""
    settings = {key: value for key, value in config.items() if key != "nodes"}

    nodes = config.get("nodes") or {}
    if not isinstance(nodes, dict):
        raise ConfigNotFoundError("'nodes' must be a mapping of node name to settings")

    if node is not None and node in nodes:
        overrides = nodes[node] or {}
        if not isinstance(overrides, dict):
            raise ConfigNotFoundError(f"Settings for node '{node}' must be a mapping")
        settings.update(overrides)
    return settings


def load_settings(
    config_file: Optional[str] = None,
    node: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> UpgradeSettings:
    """
    Build the effective settings: defaults, then the YAML file, then ``overrides``.

    Overrides whose value is None are ignored so unset CLI flags keep the
    file values.
    """
    values: Dict[str, Any] = {}
    if config_file:
        values.update(get_node_settings(read_config_file(config_file), node))
    if overrides:
        values.update({key: value for key, value in overrides.items() if value is not None})
    return UpgradeSettings(**values)
