#!/usr/bin/env python3
"""
Configuration loading for bid history tracing.

Network endpoints, the traced contract and its ABI live in a YAML file
(`config.yaml` next to this module by default). `${VAR}` references in the
file are expanded from the environment before parsing. A few settings can
be overridden from the environment with the `TRACE_BACK_` prefix.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import field_validator
from pydantic_settings import BaseSettings

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"
DEFAULT_ABI_NAME = "pod_auction_house"


class Settings(BaseSettings):
    """Environment overrides for the trace-back command"""

    config: Optional[str] = None
    network: Optional[str] = None
    rpc_url: Optional[str] = None
    log_level: Optional[str] = None

    @field_validator('log_level', mode='before')
    @classmethod
    def parse_log_level(cls, v):
        if v == '' or v is None:
            return None
        return str(v).upper()

    model_config = {
        "env_prefix": "TRACE_BACK_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load and expand environment variables in config"""
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    try:
        with open(path, 'r') as f:
            config_content = f.read()
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    config_content = os.path.expandvars(config_content)
    try:
        config = yaml.safe_load(config_content) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(config.get('networks'), dict) or not config['networks']:
        raise ConfigError(f"No networks defined in {path}")
    config['_path'] = str(path)
    logger.info(f"Loaded configuration for {len(config['networks'])} networks")
    return config


def get_trace_config(config: Dict[str, Any]) -> Dict[str, Any]:
    trace = config.get('trace_back') or {}
    if not isinstance(trace, dict):
        raise ConfigError("trace_back section must be a mapping")
    return trace


def get_network_config(config: Dict[str, Any], network_name: Optional[str] = None,
                       rpc_url: Optional[str] = None) -> Dict[str, Any]:
    """Return the config of a named network, falling back to trace_back.network"""
    network_name = network_name or get_trace_config(config).get('network')
    if not network_name:
        raise ConfigError("No network selected")

    network_config = config['networks'].get(network_name)
    if network_config is None:
        available = ', '.join(sorted(config['networks']))
        raise ConfigError(f"Unknown network {network_name} (available: {available})")

    network_config = dict(network_config, name=network_name)
    if rpc_url:
        network_config['rpc_url'] = rpc_url
    url = network_config.get('rpc_url')
    if not url:
        raise ConfigError(f"Network {network_name} has no rpc_url")
    if '$' in str(url):
        raise ConfigError(f"Network {network_name} rpc_url references an unset variable: {url}")
    return network_config


def load_abi(config: Dict[str, Any], name: str = DEFAULT_ABI_NAME) -> List[Dict]:
    """Load a contract ABI listed under `abis`, relative to the config file"""
    abis = config.get('abis') or {}
    if name not in abis:
        raise ConfigError(f"ABI {name} is not listed in config")

    base_dir = Path(config.get('_path', DEFAULT_CONFIG_PATH)).parent
    full_path = base_dir / abis[name]
    try:
        with open(full_path, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to load ABI {name} from {full_path}: {e}") from e

    # Handle both formats: array or build artifact dict with 'abi' key
    if isinstance(data, dict) and 'abi' in data:
        return data['abi']
    if isinstance(data, list):
        return data
    raise ConfigError(f"Invalid ABI format for {name}")
