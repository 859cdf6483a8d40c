"""Environment configuration loader and validator"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Any

import yaml
from rich.console import Console
from rich.table import Table

from utils.paths import SignalPaths

logger = logging.getLogger(__name__)

console = Console()

# Default configuration values
DEFAULTS = {
    # Logging
    'LOG_LEVEL': 'INFO',
    'SIGNALS_LOG_PATH': str(SignalPaths.get_audit_log()),

    # Orchestration
    'SIGNALS_RETRY_DELAY_MS': '500',
    'SIGNALS_MAX_ATTEMPTS': '2',
    'SIGNALS_CRITICAL': 'hardwareErrors,cpuTemperature,driverStability',
    'SIGNALS_DISABLED': '',

    # Optional YAML overrides (timeouts, critical set, ...)
    'SIGNALS_CONFIG_PATH': str(SignalPaths.get_config_file()),

    # Collectors
    'ALLOW_EXTERNAL_NETWORK_TESTS': 'false',
    'NETWORK_PING_COUNT': '4',
    'SIGNALS_SAMPLE_SECONDS': '3',
}

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


def find_env_file() -> Optional[Path]:
    """Find the .env file in standard locations"""
    # Check locations in order of priority
    search_paths = [
        Path.cwd() / '.env',
        SignalPaths.get_config_dir() / 'signalscope.env',
        Path('/etc/signalscope/signalscope.env'),
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_env_file(env_path: Optional[Path] = None) -> Dict[str, str]:
    """Load environment variables from .env file

    Values already present in the environment are not overridden.

    Args:
        env_path: Optional path to .env file. If None, auto-discovers.

    Returns:
        Dictionary of loaded environment variables
    """
    loaded_vars = {}

    if env_path is None:
        env_path = find_env_file()

    if env_path is None or not env_path.exists():
        return loaded_vars

    try:
        with open(env_path, 'r') as f:
            for line in f:
                line = line.strip()

                # Skip empty lines and comments
                if not line or line.startswith('#') or '=' not in line:
                    continue

                key, _, value = line.partition('=')
                key = key.strip()
                value = value.strip()

                # Remove quotes if present
                if len(value) >= 2 and value[0] in ('"', "'") and value[-1] == value[0]:
                    value = value[1:-1]

                if key:
                    loaded_vars[key] = value
                    os.environ.setdefault(key, value)

    except OSError as e:
        logger.warning(f"Could not load .env file {env_path}: {e}")

    return loaded_vars


def get_config(key: str, default: Optional[str] = None) -> str:
    """Get configuration value from environment or defaults

    Priority:
    1. Environment variable
    2. Provided default
    3. Built-in default
    """
    if default is None:
        default = DEFAULTS.get(key, '')
    return os.environ.get(key, default)


def get_config_bool(key: str, default: bool = False) -> bool:
    """Get boolean configuration value"""
    value = get_config(key, DEFAULTS.get(key, str(default).lower()))
    return value.lower() in ('true', 'yes', '1', 'on')


def get_config_int(key: str, default: int = 0) -> int:
    """Get integer configuration value"""
    try:
        return int(get_config(key, DEFAULTS.get(key, str(default))))
    except ValueError:
        return default


def get_config_list(key: str) -> FrozenSet[str]:
    """Comma-separated configuration value as a set of names"""
    return frozenset(item.strip() for item in get_config(key).split(',') if item.strip())


@dataclass
class SignalSettings:
    """
    Effective settings for a signals run.

    Built by load_signal_settings() from built-in defaults, the
    environment (.env included) and an optional YAML file, in that order.
    """
    log_level: str = 'INFO'
    audit_log_path: Optional[Path] = None
    retry_delay_ms: int = 500
    max_attempts: int = 2
    critical: FrozenSet[str] = frozenset()
    disabled: FrozenSet[str] = frozenset()
    timeouts: Dict[str, float] = field(default_factory=dict)
    allow_external_network_tests: bool = False
    ping_count: int = 4
    sample_seconds: int = 3
    config_file: Optional[Path] = None


def load_yaml_overrides(path: Path) -> Dict[str, Any]:
    """Read the optional YAML override file. Missing file -> empty dict."""
    if not path or not path.exists():
        return {}
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Ignoring unreadable config {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {path}: top level must be a mapping")
        return {}
    return data


def _name_set(value: Any, key: str, current: FrozenSet[str]) -> FrozenSet[str]:
    """A YAML collector list; a single name may be given as a plain string."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        return frozenset({value.strip()}) if value.strip() else frozenset()
    if isinstance(value, (list, tuple, set)):
        return frozenset(str(v).strip() for v in value if str(v).strip())
    logger.warning(f"Ignoring '{key}' override: expected a list of collector names")
    return current


def load_signal_settings(config_path: Optional[Path] = None) -> SignalSettings:
    """Resolve settings from defaults, environment and YAML overrides"""
    path = Path(config_path) if config_path else Path(get_config('SIGNALS_CONFIG_PATH'))

    settings = SignalSettings(
        log_level=get_config('LOG_LEVEL').upper(),
        audit_log_path=Path(get_config('SIGNALS_LOG_PATH')) if get_config('SIGNALS_LOG_PATH') else None,
        retry_delay_ms=get_config_int('SIGNALS_RETRY_DELAY_MS', 500),
        max_attempts=get_config_int('SIGNALS_MAX_ATTEMPTS', 2),
        critical=get_config_list('SIGNALS_CRITICAL'),
        disabled=get_config_list('SIGNALS_DISABLED'),
        allow_external_network_tests=get_config_bool('ALLOW_EXTERNAL_NETWORK_TESTS'),
        ping_count=get_config_int('NETWORK_PING_COUNT', 4),
        sample_seconds=get_config_int('SIGNALS_SAMPLE_SECONDS', 3),
    )

    overrides = load_yaml_overrides(path)
    if overrides:
        settings.config_file = path
        if 'critical' in overrides:
            settings.critical = _name_set(overrides['critical'], 'critical', settings.critical)
        if 'disabled' in overrides:
            settings.disabled = _name_set(overrides['disabled'], 'disabled', settings.disabled)
        if isinstance(overrides.get('timeouts'), dict):
            settings.timeouts = {str(k): float(v) for k, v in overrides['timeouts'].items()}
        if 'retry_delay_ms' in overrides:
            settings.retry_delay_ms = int(overrides['retry_delay_ms'])
        if 'max_attempts' in overrides:
            settings.max_attempts = int(overrides['max_attempts'])
        if 'allow_external_network_tests' in overrides:
            settings.allow_external_network_tests = bool(overrides['allow_external_network_tests'])
        if 'ping_count' in overrides:
            settings.ping_count = int(overrides['ping_count'])
        if 'sample_seconds' in overrides:
            settings.sample_seconds = int(overrides['sample_seconds'])
        logger.debug(f"Applied {len(overrides)} overrides from {path}")

    return settings


def validate_config() -> Dict[str, Any]:
    """Validate current configuration and return status

    Returns:
        Dictionary with validation results
    """
    results = {
        'valid': True,
        'warnings': [],
        'errors': [],
        'config': {}
    }

    # Check log level
    log_level = get_config('LOG_LEVEL').upper()
    if log_level not in VALID_LOG_LEVELS:
        results['errors'].append(f"Invalid LOG_LEVEL: {log_level}")
        results['valid'] = False
    results['config']['log_level'] = log_level

    # Check audit log location
    log_path = Path(get_config('SIGNALS_LOG_PATH'))
    if not log_path.parent.exists():
        results['warnings'].append(f"Audit log directory will be created: {log_path.parent}")
    results['config']['audit_log'] = str(log_path)

    # Retry policy
    attempts = get_config_int('SIGNALS_MAX_ATTEMPTS', 2)
    if attempts < 1 or attempts > 2:
        results['errors'].append(f"SIGNALS_MAX_ATTEMPTS must be 1 or 2, got {attempts}")
        results['valid'] = False
    results['config']['max_attempts'] = attempts

    delay = get_config_int('SIGNALS_RETRY_DELAY_MS', 500)
    if delay < 0 or delay > 5000:
        results['warnings'].append(f"Unusual SIGNALS_RETRY_DELAY_MS: {delay}")
    results['config']['retry_delay_ms'] = delay

    # Collector names
    from core.signals.collectors import COLLECTOR_NAMES
    for key in ('SIGNALS_CRITICAL', 'SIGNALS_DISABLED'):
        unknown = sorted(get_config_list(key) - set(COLLECTOR_NAMES))
        if unknown:
            results['warnings'].append(f"{key} names unknown collectors: {', '.join(unknown)}")
        results['config'][key.lower()] = sorted(get_config_list(key))

    results['config']['external_tests'] = get_config_bool('ALLOW_EXTERNAL_NETWORK_TESTS')

    return results


def show_config_summary():
    """Display current configuration summary"""
    table = Table(title="Signals Configuration", show_header=True, header_style="bold cyan")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Source", style="yellow")

    env_file = find_env_file()

    for key in sorted(DEFAULTS.keys()):
        env_value = os.environ.get(key)

        if env_value is not None:
            value = env_value
            source = "env"
        else:
            value = DEFAULTS[key]
            source = "default"

        table.add_row(key, value, source)

    console.print(table)

    if env_file:
        console.print(f"\n[dim]Loaded from: {env_file}[/dim]")
    else:
        console.print("\n[dim]No .env file found, using defaults[/dim]")


def initialize_config() -> Dict[str, Any]:
    """Initialize configuration by loading .env file

    Call this at application startup
    """
    env_file = find_env_file()
    loaded = load_env_file(env_file)

    if loaded:
        logger.info(f"Loaded {len(loaded)} settings from {env_file}")

    return validate_config()
