"""Configuration and logging setup.

Configuration is a nested dictionary with three sections:
- lm: log base, sentence boundary tokens, epsilon symbol, warning cap,
  ARPA text encoding
- output: arc sorting and file names written next to G.fst
- logging: log level
"""

import copy
import json
import logging
from typing import Any, Dict, Optional


DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    'lm': {
        'natural_log': True,  # ARPA log10 -> natural log costs
        'bos': '<s>',
        'eos': '</s>',
        'epsilon': '<eps>',
        'max_warnings': 30,   # negative means unlimited
        'encoding': 'utf-8',  # of ARPA text files
    },
    'output': {
        'arc_sort': True,
        'write_symbols': True,
        'fst_name': 'G.fst',
        'symbols_name': 'words.txt',
    },
    'logging': {
        'level': 'INFO',
    },
}


def merge_config(base: Dict, overrides: Optional[Dict]) -> Dict:
    """Recursively merge overrides into a copy of base.

    Args:
        base: Base configuration
        overrides: Values to override, may be None

    Returns:
        Merged configuration
    """
    merged = copy.deepcopy(base)
    if not overrides:
        return merged

    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)

    return merged


def get_config(overrides: Optional[Dict] = None) -> Dict:
    """Get the default configuration with optional overrides applied."""
    return merge_config(DEFAULT_CONFIG, overrides)


def load_config(path: str) -> Dict:
    """Load configuration from a JSON file.

    Keys missing from the file fall back to DEFAULT_CONFIG.

    Args:
        path: Path to JSON configuration

    Returns:
        Configuration dictionary
    """
    with open(path, 'r') as f:
        overrides = json.load(f)

    if not isinstance(overrides, dict):
        raise ValueError(f"Configuration in {path} must be a JSON object")

    return get_config(overrides)


def save_config(config: Dict, path: str) -> str:
    """Save configuration as JSON.

    Args:
        config: Configuration dictionary
        path: Output path

    Returns:
        Path to saved configuration
    """
    with open(path, 'w') as f:
        json.dump(config, f, indent=2)

    return path


def setup_logging(config: Optional[Dict] = None) -> None:
    """Setup logging."""
    config = get_config(config)
    level = config['logging']['level']
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
