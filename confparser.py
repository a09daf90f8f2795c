"""
Configuration loader for plain .conf files with environment overrides.

Format:
- Lines starting with # are comments
- Empty lines are ignored
- Key-value pairs: key = value
- Boolean values: key = true/false/yes/no
- Integers are converted unless the key is listed as a string key

Environment variables (mapped per key) take precedence over the file.
"""

import os
from typing import Any, Dict, Iterable, Mapping, Optional


def parse_value(value: str) -> Any:
    """Parse a string value into bool, int, float or string.

    Args:
        value: Raw string value from config file or environment

    Returns:
        Parsed value
    """
    value = value.strip()

    if not value:
        return ''

    if value.lower() in ('true', 'yes', 'on'):
        return True
    if value.lower() in ('false', 'no', 'off'):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def load_config(filepath: str, defaults: Optional[Dict[str, Any]] = None,
                env_keys: Optional[Mapping[str, str]] = None,
                environ: Optional[Mapping[str, str]] = None,
                string_keys: Iterable[str] = ()) -> Dict[str, Any]:
    """Load configuration from a plain .conf file, then apply environment overrides.

    Args:
        filepath: Path to the configuration file (may not exist)
        defaults: Optional dictionary of default values
        env_keys: Maps config keys to the environment variables overriding them
        environ: Environment to read, os.environ by default
        string_keys: Keys whose values are kept as raw strings

    Returns:
        Dictionary with configuration values
    """
    config = dict(defaults) if defaults else {}
    string_keys = set(string_keys)
    environ = os.environ if environ is None else environ

    def convert(key: str, raw: str) -> Any:
        return raw.strip() if key in string_keys else parse_value(raw)

    if os.path.exists(filepath):
        with open(filepath, 'r') as f:
            for line in f:
                line = line.strip()

                if not line or line.startswith('#'):
                    continue

                if '=' not in line:
                    continue

                key, _, value = line.partition('=')
                key = key.strip()
                if not key:
                    continue

                config[key] = convert(key, value)

    for key, env_name in (env_keys or {}).items():
        raw = environ.get(env_name)
        if raw is not None and raw.strip():
            config[key] = convert(key, raw)

    return config


def create_default_config(filepath: str, template: str):
    """Write a default configuration file from a template string."""
    with open(filepath, 'w') as f:
        f.write(template)
