"""
SignalScope Path Constants

Centralized path definitions for configuration and audit logs.

Always use get_real_user_home() instead of Path.home() for per-user files:
kernel logs and some sensors need root, and when the tool runs under sudo
the audit trail should still land in the invoking user's home, not /root.
"""

from pathlib import Path
import os


def get_real_user_home() -> Path:
    """
    Get the real user's home directory, even when running as root via sudo.

    Returns:
        Path to the real user's home directory
    """
    sudo_user = os.environ.get('SUDO_USER')
    if sudo_user and sudo_user != 'root':
        return Path(f'/home/{sudo_user}')

    return Path.home()


class SignalPaths:
    """Per-user SignalScope locations"""

    @classmethod
    def get_config_dir(cls) -> Path:
        return get_real_user_home() / '.config' / 'signalscope'

    @classmethod
    def get_config_file(cls) -> Path:
        """YAML override file (timeouts, critical set, ...)"""
        return cls.get_config_dir() / 'signals.yaml'

    @classmethod
    def get_data_dir(cls) -> Path:
        return get_real_user_home() / '.local' / 'share' / 'signalscope'

    @classmethod
    def get_audit_log(cls) -> Path:
        """Audit trail of the last run"""
        return cls.get_data_dir() / 'signals_audit.log'

