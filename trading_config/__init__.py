"""
Trading Configuration Management Module

Main Components:
- settings: environment settings (database, Telegram, control API)
- config_yaml: YAML file loading/saving and FundingArbConfig construction
"""

from .config_yaml import (
    build_funding_arb_config,
    load_config_from_yaml,
    load_funding_arb_config,
    merge_configs,
    save_config_to_yaml,
)
from .settings import Settings, load_settings

__all__ = [
    'Settings',
    'load_settings',
    'save_config_to_yaml',
    'load_config_from_yaml',
    'load_funding_arb_config',
    'build_funding_arb_config',
    'merge_configs',
]
