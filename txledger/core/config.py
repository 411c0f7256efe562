"""
Ledger configuration parameters for txledger.

Defines validation policy and operational settings. Values come from
defaults, then an optional JSON file, then TXLEDGER_* environment
variables (a .env file in the working directory is honoured).
"""

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv


ENV_PREFIX = "TXLEDGER_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass
class LedgerConfig:
    """Ledger-wide configuration parameters"""

    # Validation policy
    # Inputs may exceed outputs; the difference is an implicit fee that is
    # not credited anywhere. False rejects any excess.
    allow_implicit_fee: bool = True

    # Logging
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    log_to_file: bool = False

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        self.log_level = self.log_level.upper()


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name}: expected a boolean, got {raw!r}")


def _coerce(name: str, f, value):
    """Check or convert one setting to the field's type."""
    if f.type in (bool, "bool"):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return _parse_bool(name, value)
    elif isinstance(value, str):
        return value
    raise ValueError(f"{name}: expected {getattr(f.type, '__name__', f.type)}, got {value!r}")


def load_config(config_path: Optional[str] = None) -> LedgerConfig:
    """
    Load configuration from file and environment, or use defaults.

    Args:
        config_path: Optional path to a JSON config file

    Returns:
        LedgerConfig instance

    Raises:
        ValueError: on unknown keys or unparsable values
    """
    values = {}

    if config_path:
        data = json.loads(Path(config_path).read_text())
        if not isinstance(data, dict):
            raise ValueError(f"{config_path}: expected a JSON object")
        by_name = {f.name: f for f in fields(LedgerConfig)}
        unknown = set(data) - set(by_name)
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        for key, value in data.items():
            values[key] = _coerce(key, by_name[key], value)

    load_dotenv(find_dotenv(usecwd=True))
    for f in fields(LedgerConfig):
        raw = os.environ.get(ENV_PREFIX + f.name.upper())
        if raw is None:
            continue
        values[f.name] = _coerce(ENV_PREFIX + f.name.upper(), f, raw)

    return LedgerConfig(**values)
