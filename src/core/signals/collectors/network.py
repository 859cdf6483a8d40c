"""
Network collectors.

networkQuality only probes local targets (default gateway, loopback and
the configured DNS server). internetSpeedTest reaches the internet and is
therefore off unless explicitly allowed.
"""

import ipaddress
import json
import logging
import re
import socket
import struct
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..cancellation import CancellationToken
from ..collector import SignalCollector, run_command, read_text
from ..errors import SignalCollectionError
from ..models import SignalCategory, SignalResult

logger = logging.getLogger(__name__)

ROUTE_PATH = Path("/proc/net/route")
RESOLV_CONF = Path("/etc/resolv.conf")

LOSS_SUSPECT_PERCENT = 5.0
LOSS_PARTIAL_PERCENT = 1.0

_PING_STATS = re.compile(r"(\d+) packets transmitted, (\d+) (?:packets )?received")
_PING_RTT = re.compile(r"= ([\d.]+)/([\d.]+)/([\d.]+)/([\d.]+) ms")


def default_gateway(route_path: Path = ROUTE_PATH) -> Optional[str]:
    """Default IPv4 gateway from /proc/net/route."""
    try:
        lines = read_text(route_path).splitlines()[1:]
    except SignalCollectionError:
        return None
    for line in lines:
        fields = line.split()
        if len(fields) < 3 or fields[1] != "00000000":
            continue
        try:
            return socket.inet_ntoa(struct.pack("<L", int(fields[2], 16)))
        except (ValueError, struct.error):
            continue
    return None


def local_dns_server(resolv_conf: Path = RESOLV_CONF) -> Optional[str]:
    """First nameserver that is private or loopback (never a public resolver)."""
    try:
        text = read_text(resolv_conf)
    except SignalCollectionError:
        return None
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 2 or parts[0] != "nameserver":
            continue
        try:
            address = ipaddress.ip_address(parts[1])
        except ValueError:
            continue
        if address.version == 4 and (address.is_private or address.is_loopback):
            return parts[1]
    return None


def parse_ping(output: str) -> Dict[str, Optional[float]]:
    """Extract sent/received/loss/rtt from iputils ping output."""
    result = {"sent": 0, "received": 0, "loss_percent": 100.0,
              "avg_ms": None, "jitter_ms": None}
    stats = _PING_STATS.search(output)
    if stats:
        sent, received = int(stats.group(1)), int(stats.group(2))
        result["sent"] = sent
        result["received"] = received
        if sent:
            result["loss_percent"] = round((sent - received) * 100.0 / sent, 1)
    rtt = _PING_RTT.search(output)
    if rtt:
        result["avg_ms"] = float(rtt.group(2))
        result["jitter_ms"] = float(rtt.group(4))
    return result


class NetworkQualityCollector(SignalCollector):
    """Latency, jitter and loss to local targets only."""

    name = "networkQuality"
    default_timeout = 45.0
    priority = 5
    category = SignalCategory.NETWORK
    source = "ping"

    def __init__(self, timeout: float = None, ping_count: int = 4,
                 route_path: Path = ROUTE_PATH, resolv_conf: Path = RESOLV_CONF):
        super().__init__(timeout)
        self.ping_count = max(1, int(ping_count))
        self.route_path = Path(route_path)
        self.resolv_conf = Path(resolv_conf)

    def targets(self) -> List[Tuple[str, str]]:
        found = [("localhost", "127.0.0.1")]
        gateway = default_gateway(self.route_path)
        if gateway:
            found.insert(0, ("gateway", gateway))
        dns = local_dns_server(self.resolv_conf)
        if dns and dns not in (gateway, "127.0.0.1"):
            found.append(("dns", dns))
        return found

    def ping(self, address: str, token: CancellationToken) -> Dict[str, Optional[float]]:
        per_ping = max(5.0, self.ping_count * 1.5)
        output = run_command(
            ["ping", "-n", "-c", str(self.ping_count), "-W", "1", "-i", "0.2", address],
            token,
            timeout=per_ping,
        )
        stats = parse_ping(output.stdout)
        if stats["sent"] == 0 and "permission" in output.stderr.lower():
            raise SignalCollectionError("access_denied", notes="ping needs CAP_NET_RAW")
        return stats

    def read(self, token: CancellationToken) -> SignalResult:
        results = {}
        for label, address in self.targets():
            stats = self.ping(address, token)
            stats["address"] = address
            results[label] = stats

        primary = results.get("gateway") or results["localhost"]
        value = {
            "gateway": results["gateway"]["address"] if "gateway" in results else None,
            "latency_ms": primary["avg_ms"],
            "jitter_ms": primary["jitter_ms"],
            "loss_percent": max(r["loss_percent"] for r in results.values()),
            "targets": results,
        }

        loss = value["loss_percent"]
        if loss > LOSS_SUSPECT_PERCENT:
            return self.suspect(value, notes=f"{loss}% packet loss")
        if loss > LOSS_PARTIAL_PERCENT:
            return self.partial(value, notes=f"{loss}% packet loss")
        if "gateway" not in results:
            return self.partial(value, notes="no default gateway, loopback only")
        return self.ok(value)


class InternetSpeedTestCollector(SignalCollector):
    """Throughput via the Ookla ``speedtest`` CLI (opt-in)."""

    name = "internetSpeedTest"
    default_timeout = 90.0
    priority = 10
    category = SignalCategory.NETWORK
    source = "speedtest"

    def __init__(self, timeout: float = None, enabled: bool = False):
        super().__init__(timeout)
        self.enabled = enabled

    def read(self, token: CancellationToken) -> SignalResult:
        if not self.enabled:
            return self.unavailable("external_tests_disabled",
                                    notes="set ALLOW_EXTERNAL_NETWORK_TESTS=true to enable")
        try:
            output = run_command(
                ["speedtest", "--format=json", "--accept-license", "--accept-gdpr"],
                token,
                timeout=self.default_timeout - 5,
            )
        except SignalCollectionError as e:
            if e.reason.startswith("dependency_absent"):
                raise SignalCollectionError("tool_not_installed", notes="speedtest CLI not found")
            raise

        if not output.ok:
            raise SignalCollectionError(f"command_failed: speedtest exit {output.returncode}",
                                        notes=output.stderr.strip()[:200] or None)
        try:
            data = json.loads(output.stdout)
        except json.JSONDecodeError:
            raise SignalCollectionError("parse_error", notes="speedtest output is not JSON")

        # bandwidth is reported in bytes per second
        value = {
            "download_mbps": _mbps(data.get("download", {}).get("bandwidth")),
            "upload_mbps": _mbps(data.get("upload", {}).get("bandwidth")),
            "ping_ms": data.get("ping", {}).get("latency"),
            "server": data.get("server", {}).get("name"),
        }
        if value["download_mbps"] is None:
            return self.partial(value, notes="download result missing")
        return self.ok(value)


def _mbps(bytes_per_sec) -> Optional[float]:
    if not isinstance(bytes_per_sec, (int, float)):
        return None
    return round(bytes_per_sec * 8 / 1_000_000, 2)
