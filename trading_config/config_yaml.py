"""
YAML Configuration File Support

Handles loading and saving engine configurations to/from YAML files.

File layout:

    strategy: funding_arbitrage
    version: "1.0"
    config:
      instruments: [BTC, ETH]
      venues:
        bybit:
          client_class: my_adapters.bybit:BybitClient
          taker_fee: 0.00055
      risk:
        total_capital: 5000

Floats are read as Decimal so money and rate values never pass through
binary floating point.
"""

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from strategies.implementations.funding_arbitrage.config import FundingArbConfig


SUPPORTED_STRATEGIES = ("funding_arbitrage",)


# ============================================================================
# YAML Custom Representers (for Decimal serialization)
# ============================================================================

class DecimalSafeLoader(yaml.SafeLoader):
    """SafeLoader that constructs YAML floats as Decimal."""


class DecimalSafeDumper(yaml.SafeDumper):
    """SafeDumper that writes Decimal as a plain YAML float."""


def decimal_representer(dumper, data):
    """Custom representer for Decimal type."""
    return dumper.represent_scalar('tag:yaml.org,2002:float', str(data))


def decimal_constructor(loader, node):
    """Custom constructor for Decimal type."""
    value = loader.construct_scalar(node)
    return Decimal(value.replace("_", ""))


DecimalSafeDumper.add_representer(Decimal, decimal_representer)
DecimalSafeLoader.add_constructor('tag:yaml.org,2002:float', decimal_constructor)


# ============================================================================
# YAML Config Operations
# ============================================================================

def save_config_to_yaml(strategy_name: str, config: Dict[str, Any], file_path: Path) -> None:
    """
    Save configuration to YAML file.

    Args:
        strategy_name: Name of the strategy
        config: Configuration dictionary
        file_path: Path to save to
    """
    full_config = {
        "strategy": strategy_name,
        "created_at": datetime.now().isoformat(),
        "version": "1.0",
        "config": config
    }

    with open(file_path, 'w') as f:
        yaml.dump(
            full_config,
            f,
            Dumper=DecimalSafeDumper,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
            indent=2
        )


def load_config_from_yaml(file_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        file_path: Path to config file

    Returns:
        Dictionary with 'strategy', 'config' and 'metadata' keys

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If config structure is invalid
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with open(file_path, 'r') as f:
        full_config = yaml.load(f, Loader=DecimalSafeLoader)

    # Validate structure
    if not isinstance(full_config, dict):
        raise ValueError("Invalid config file: must be a YAML dictionary")

    if "strategy" not in full_config:
        raise ValueError("Invalid config file: missing 'strategy' field")

    if "config" not in full_config or not isinstance(full_config["config"], dict):
        raise ValueError("Invalid config file: missing 'config' mapping")

    if full_config["strategy"] not in SUPPORTED_STRATEGIES:
        raise ValueError(
            f"Unknown strategy: {full_config['strategy']}. Supported: {', '.join(SUPPORTED_STRATEGIES)}"
        )

    return {
        "strategy": full_config["strategy"],
        "config": full_config["config"],
        "metadata": {
            "created_at": full_config.get("created_at"),
            "version": full_config.get("version", "1.0")
        }
    }


def merge_configs(base_config: Dict, overrides: Dict) -> Dict:
    """
    Merge two configurations (for CLI override support).

    Only non-None override values replace base values.
    """
    merged = base_config.copy()

    for key, value in overrides.items():
        if value is not None:
            merged[key] = value

    return merged


def build_funding_arb_config(
    raw_config: Dict[str, Any],
    overrides: Optional[Dict[str, Any]] = None,
) -> FundingArbConfig:
    """
    Validate a raw config mapping into ``FundingArbConfig``.

    Raises:
        pydantic.ValidationError: If a value is missing or out of range
    """
    merged = merge_configs(raw_config, overrides or {})
    return FundingArbConfig(**merged)


def load_funding_arb_config(file_path: Union[str, Path]) -> FundingArbConfig:
    """Load and validate a funding arbitrage YAML config in one step."""
    loaded = load_config_from_yaml(file_path)
    return build_funding_arb_config(loaded["config"])
