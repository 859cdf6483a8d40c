"""Firewall status collector."""

import logging
from typing import Sequence

from ..cancellation import CancellationToken
from ..collector import SignalCollector, run_command
from ..errors import SignalCollectionError
from ..models import SignalCategory, SignalResult

logger = logging.getLogger(__name__)

FIREWALL_UNITS = ("ufw", "firewalld", "nftables", "iptables")


class FirewallStatusCollector(SignalCollector):
    """Whether any known host firewall service is active."""

    name = "firewallStatus"
    default_timeout = 10.0
    priority = 9
    category = SignalCategory.SECURITY
    source = "systemctl is-active"

    def __init__(self, timeout: float = None, units: Sequence[str] = FIREWALL_UNITS):
        super().__init__(timeout)
        self.units = tuple(units)

    def read(self, token: CancellationToken) -> SignalResult:
        # is-active exits non-zero when any unit is inactive; the per-unit
        # states on stdout are what matter
        output = run_command(["systemctl", "is-active", *self.units], token,
                             timeout=self.default_timeout - 2)
        states = output.lines()
        if len(states) != len(self.units):
            raise SignalCollectionError("parse_error",
                                        notes=f"expected {len(self.units)} states, got {len(states)}")

        unit_states = dict(zip(self.units, states))
        active = [unit for unit, state in unit_states.items() if state == "active"]
        value = {
            "firewall_active": bool(active),
            "active_units": active,
            "units": unit_states,
        }
        if not active:
            return self.suspect(value, notes="no firewall service active")
        return self.ok(value)
