"""
Tests for the bundled collectors.

Host access is replaced with tmp_path sysfs/procfs trees or by patching
run_command / read_kernel_log in the collector module.

Run: python3 -m pytest tests/test_collectors.py -v
"""

import os
import shutil
import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from core.signals.cancellation import CancellationToken
from core.signals.collector import CommandOutput, read_int, read_text, run_command
from core.signals.collectors import COLLECTOR_NAMES, OPT_IN_COLLECTORS, default_collectors
from core.signals.collectors import thermal
from core.signals.collectors.gpu import GpuRootCauseCollector, detect_gpu_drivers
from core.signals.collectors.hardware import (
    HardwareErrorsCollector,
    MemoryPressureCollector,
    percentile,
    read_edac_counters,
)
from core.signals.collectors.journal import (
    KernelLog,
    KernelLogEntry,
    parse_journal_lines,
    read_kernel_log,
)
from core.signals.collectors.network import (
    InternetSpeedTestCollector,
    NetworkQualityCollector,
    default_gateway,
    local_dns_server,
    parse_ping,
)
from core.signals.collectors.security import FirewallStatusCollector
from core.signals.collectors.storage import (
    StorageLatencyCollector,
    parse_diskstats,
    physical_disks,
)
from core.signals.collectors.system_logs import (
    BootPerformanceCollector,
    DriverStabilityCollector,
    KERNEL_CRASH_PATTERN,
    parse_systemd_analyze,
    parse_systemd_duration,
)
from core.signals.errors import OperationCancelled, SignalCollectionError
from core.signals.models import Quality

SYSTEMD_ANALYZE = (
    "Startup finished in 2.5s (kernel) + 1min 3.2s (userspace) = 1min 5.700s\n"
    "graphical.target reached after 1min 3.100s in userspace\n"
)

PING_OUTPUT = """PING 192.168.1.1 (192.168.1.1) 56(84) bytes of data.
64 bytes from 192.168.1.1: icmp_seq=1 ttl=64 time=0.4 ms

--- 192.168.1.1 ping statistics ---
4 packets transmitted, 3 received, 25% packet loss, time 3005ms
rtt min/avg/max/mdev = 0.321/0.456/0.789/0.100 ms
"""


def entry(message, days_ago=1):
    return KernelLogEntry(datetime.now(timezone.utc) - timedelta(days=days_ago), message)


def write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


@pytest.fixture
def token():
    return CancellationToken()


class TestHostHelpers:
    """run_command / read_text / read_int reason codes."""

    def test_missing_tool(self, token):
        with pytest.raises(SignalCollectionError) as exc:
            run_command(["definitely-not-installed-tool"], token)
        assert exc.value.reason == "dependency_absent: definitely-not-installed-tool"

    @pytest.mark.skipif(shutil.which("sleep") is None, reason="needs sleep(1)")
    def test_command_killed_on_cancel(self, token):
        threading.Timer(0.2, token.cancel).start()
        with pytest.raises(OperationCancelled):
            run_command(["sleep", "10"], token, timeout=30)

    @pytest.mark.skipif(shutil.which("sleep") is None, reason="needs sleep(1)")
    def test_command_timeout(self, token):
        with pytest.raises(SignalCollectionError) as exc:
            run_command(["sleep", "10"], token, timeout=0.3)
        assert exc.value.reason == "command_timeout"

    def test_read_text_missing(self, tmp_path):
        with pytest.raises(SignalCollectionError) as exc:
            read_text(tmp_path / "absent", missing_reason="no_sensor")
        assert exc.value.reason == "no_sensor"

    def test_read_int(self, tmp_path):
        assert read_int(write(tmp_path / "n", "42\n")) == 42
        with pytest.raises(SignalCollectionError) as exc:
            read_int(write(tmp_path / "bad", "n/a"))
        assert exc.value.reason == "parse_error"

    def test_command_output_lines(self):
        output = CommandOutput(0, "a\n\n b \n", "")
        assert output.ok is True
        assert output.lines() == ["a", " b "]


class TestJournal:
    """Kernel log parsing."""

    def test_parse_lines(self):
        entries = parse_journal_lines([
            "-- Logs begin at Mon 2024-04-01 --",
            "2024-05-01T10:00:00+0000 host kernel: mce: [Hardware Error]: CPU 0",
            "garbage",
        ])
        assert len(entries) == 1
        assert entries[0].message == "mce: [Hardware Error]: CPU 0"
        assert entries[0].timestamp == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_permission_denied(self, token):
        denied = CommandOutput(1, "", "Failed to open journal: Permission denied")
        with patch("core.signals.collectors.journal.run_command", return_value=denied):
            with pytest.raises(SignalCollectionError) as exc:
                read_kernel_log(token)
        assert exc.value.reason == "access_denied"

    def test_restricted_view(self, token):
        output = CommandOutput(
            0, "2024-05-01T10:00:00+0000 host kernel: hello\n",
            "Hint: You are currently not seeing messages from other users and the system.",
        )
        with patch("core.signals.collectors.journal.run_command", return_value=output):
            log = read_kernel_log(token)
        assert log.restricted is True
        assert len(log.entries) == 1


class TestHardwareErrors:
    """hardwareErrors collector."""

    def test_edac_counters(self, tmp_path):
        write(tmp_path / "mc0" / "ce_count", "2")
        write(tmp_path / "mc0" / "ue_count", "0")
        write(tmp_path / "mc1" / "ce_count", "1")
        write(tmp_path / "mc1" / "ue_count", "0")
        assert read_edac_counters(tmp_path) == {"controllers": 2, "corrected": 3, "uncorrected": 0}

    def test_no_edac(self, tmp_path):
        assert read_edac_counters(tmp_path / "missing") is None

    def test_clean_log(self, tmp_path, token):
        log = KernelLog([entry("usb 1-1: new device")])
        with patch("core.signals.collectors.hardware.read_kernel_log", return_value=log):
            result = HardwareErrorsCollector(edac_root=tmp_path).collect(token)
        assert result.available is True
        assert result.quality == Quality.OK
        assert result.value["events_30d"] == 0

    def test_fatal_machine_check(self, tmp_path, token):
        log = KernelLog([
            entry("mce: [Hardware Error]: Machine check: Processor context corrupt, fatal"),
            entry("mce: [Hardware Error]: corrected error", days_ago=20),
        ])
        with patch("core.signals.collectors.hardware.read_kernel_log", return_value=log):
            result = HardwareErrorsCollector(edac_root=tmp_path).collect(token)
        assert result.quality == Quality.SUSPECT
        assert result.value["events_7d"] == 1
        assert result.value["events_30d"] == 2
        assert result.value["fatal_events"] == 1

    def test_journal_failure_without_edac(self, tmp_path, token):
        with patch("core.signals.collectors.hardware.read_kernel_log",
                   side_effect=SignalCollectionError("access_denied")):
            result = HardwareErrorsCollector(edac_root=tmp_path).collect(token)
        assert result.available is False
        assert result.reason == "access_denied"

    def test_journal_failure_with_edac(self, tmp_path, token):
        write(tmp_path / "mc0" / "ce_count", "0")
        write(tmp_path / "mc0" / "ue_count", "0")
        with patch("core.signals.collectors.hardware.read_kernel_log",
                   side_effect=SignalCollectionError("dependency_absent: journalctl")):
            result = HardwareErrorsCollector(edac_root=tmp_path).collect(token)
        assert result.quality == Quality.PARTIAL
        assert result.source == "edac"


class TestMemoryPressure:
    """memoryPressure sampling."""

    def test_idle_system(self, tmp_path, token):
        vmstat = write(tmp_path / "vmstat", "pgfault 10\npgmajfault 100\n")
        collector = MemoryPressureCollector(sample_seconds=2, interval=0.01, vmstat_path=vmstat)
        result = collector.collect(token)
        assert result.quality == Quality.OK
        assert result.value["samples"] == 2
        assert result.value["faults_per_sec_max"] == 0
        assert result.value["total_mb"] > 0

    def test_vmstat_missing(self, tmp_path, token):
        collector = MemoryPressureCollector(sample_seconds=1, interval=0.01,
                                            vmstat_path=tmp_path / "absent")
        result = collector.collect(token)
        assert result.quality == Quality.PARTIAL
        assert result.source == "psutil"

    def test_percentile(self):
        assert percentile([], 95) is None
        assert percentile([1, 2, 3, 4, 5, 6, 7, 8, 9, 10], 95) == 10
        assert percentile([5, 1, 3], 50) == 3


class TestCpuTemperature:
    """cpuTemperature: psutil first, thermal zones second."""

    def test_psutil_coretemp(self, tmp_path, token):
        chips = {"coretemp": [
            SimpleNamespace(label="Package id 0", current=52.0),
            SimpleNamespace(label="Core 0", current=50.0),
            SimpleNamespace(label="Core 1", current=55.0),
        ]}
        with patch.object(thermal.psutil, "sensors_temperatures", return_value=chips, create=True):
            result = thermal.CpuTemperatureCollector(thermal_root=tmp_path).collect(token)
        assert result.quality == Quality.OK
        assert result.value["package_c"] == 52.0
        assert result.value["max_core_c"] == 55.0
        assert result.value["cores"] == 2

    def test_hot_cpu_is_suspect(self, tmp_path, token):
        chips = {"k10temp": [SimpleNamespace(label="Tctl", current=98.0)]}
        with patch.object(thermal.psutil, "sensors_temperatures", return_value=chips, create=True):
            result = thermal.CpuTemperatureCollector(thermal_root=tmp_path).collect(token)
        assert result.available is True
        assert result.quality == Quality.SUSPECT

    def test_thermal_zone_fallback(self, tmp_path, token):
        write(tmp_path / "thermal_zone0" / "type", "acpitz")
        write(tmp_path / "thermal_zone0" / "temp", "45000")
        write(tmp_path / "thermal_zone1" / "type", "x86_pkg_temp")
        write(tmp_path / "thermal_zone1" / "temp", "48000")
        with patch.object(thermal.psutil, "sensors_temperatures", return_value={}, create=True):
            result = thermal.CpuTemperatureCollector(thermal_root=tmp_path).collect(token)
        assert result.quality == Quality.OK
        assert result.value["sensor"] == "x86_pkg_temp"
        assert result.value["package_c"] == 48.0

    def test_acpi_zone_is_partial(self, tmp_path, token):
        write(tmp_path / "thermal_zone0" / "type", "acpitz")
        write(tmp_path / "thermal_zone0" / "temp", "45000")
        with patch.object(thermal.psutil, "sensors_temperatures", return_value={}, create=True):
            result = thermal.CpuTemperatureCollector(thermal_root=tmp_path).collect(token)
        assert result.quality == Quality.PARTIAL

    def test_no_sensor(self, tmp_path, token):
        with patch.object(thermal.psutil, "sensors_temperatures", return_value={}, create=True):
            result = thermal.CpuTemperatureCollector(thermal_root=tmp_path).collect(token)
        assert result.available is False
        assert result.reason == "no_sensor"


class TestGpuRootCause:
    """gpuRootCause collector."""

    def test_no_gpu(self, tmp_path, token):
        result = GpuRootCauseCollector(drm_root=tmp_path).collect(token)
        assert result.reason == "no_gpu_detected"

    def test_reset_in_last_week(self, tmp_path, token):
        (tmp_path / "drivers" / "amdgpu").mkdir(parents=True)
        (tmp_path / "card0" / "device").mkdir(parents=True)
        os.symlink(tmp_path / "drivers" / "amdgpu", tmp_path / "card0" / "device" / "driver")
        assert detect_gpu_drivers(tmp_path) == ["amdgpu"]

        log = KernelLog([entry("amdgpu 0000:03:00.0: GPU reset begin!")])
        with patch("core.signals.collectors.gpu.read_kernel_log", return_value=log), \
                patch.object(GpuRootCauseCollector, "_temperature", return_value=None):
            result = GpuRootCauseCollector(drm_root=tmp_path).collect(token)
        assert result.quality == Quality.SUSPECT
        assert result.value["resets_7d"] == 1


class TestStorage:
    """storageLatency and helpers."""

    DISKSTATS = (
        "   8       0 sda 1000 0 2000 500 300 0 400 600 0 700 1100 0 0 0 0\n"
        "   7       0 loop0 10 0 20 5 0 0 0 0 0 1 5 0 0 0 0\n"
    )

    def test_parse_diskstats(self):
        stats = parse_diskstats(self.DISKSTATS + "short line\n")
        assert set(stats) == {"sda", "loop0"}
        assert stats["sda"].reads == 1000
        assert stats["sda"].read_ms == 500
        assert stats["sda"].writes == 300
        assert stats["sda"].write_ms == 600
        assert stats["sda"].weighted_ms == 1100

    def test_physical_disks_skip_virtual(self, tmp_path):
        for name in ("sda", "nvme0n1", "loop0", "zram0"):
            (tmp_path / name).mkdir()
        assert physical_disks(tmp_path) == ["nvme0n1", "sda"]

    def test_idle_disks(self, tmp_path, token):
        (tmp_path / "block" / "sda").mkdir(parents=True)
        diskstats = write(tmp_path / "diskstats", self.DISKSTATS)
        collector = StorageLatencyCollector(sample_seconds=1, interval=0.01,
                                            diskstats_path=diskstats, sys_block=tmp_path / "block")
        result = collector.collect(token)
        assert result.quality == Quality.OK
        assert result.notes == "no I/O during sampling window"
        assert result.value["devices"] == ["sda"]
        assert result.value["read_latency_ms"] is None

    def test_no_disks(self, tmp_path, token):
        result = StorageLatencyCollector(sys_block=tmp_path).collect(token)
        assert result.reason == "no_disks_detected"


class TestNetwork:
    """networkQuality helpers and the opt-in speed test."""

    def test_default_gateway(self, tmp_path):
        route = write(tmp_path / "route",
                      "Iface\tDestination\tGateway\tFlags\n"
                      "eth0\t0001A8C0\t00000000\t0001\n"
                      "eth0\t00000000\t0101A8C0\t0003\n")
        assert default_gateway(route) == "192.168.1.1"
        assert default_gateway(tmp_path / "absent") is None

    def test_local_dns_only(self, tmp_path):
        conf = write(tmp_path / "resolv.conf", "# comment\nnameserver 8.8.8.8\nnameserver 127.0.0.53\n")
        assert local_dns_server(conf) == "127.0.0.53"
        public = write(tmp_path / "public.conf", "nameserver 1.1.1.1\n")
        assert local_dns_server(public) is None

    def test_parse_ping(self):
        stats = parse_ping(PING_OUTPUT)
        assert stats["sent"] == 4
        assert stats["received"] == 3
        assert stats["loss_percent"] == 25.0
        assert stats["avg_ms"] == 0.456
        assert stats["jitter_ms"] == 0.1

    def test_parse_ping_no_reply(self):
        assert parse_ping("")["loss_percent"] == 100.0

    def test_quality_with_loss(self, tmp_path, token):
        route = write(tmp_path / "route", "Iface\tDestination\tGateway\n"
                                          "eth0\t00000000\t0101A8C0\n")
        collector = NetworkQualityCollector(route_path=route, resolv_conf=tmp_path / "absent")
        with patch.object(NetworkQualityCollector, "ping", side_effect=lambda a, t: parse_ping(PING_OUTPUT)):
            result = collector.collect(token)
        assert result.quality == Quality.SUSPECT
        assert result.value["gateway"] == "192.168.1.1"
        assert result.value["loss_percent"] == 25.0
        assert set(result.value["targets"]) == {"gateway", "localhost"}

    def test_speedtest_disabled(self, token):
        result = InternetSpeedTestCollector(enabled=False).collect(token)
        assert result.available is False
        assert result.reason == "external_tests_disabled"

    def test_speedtest_not_installed(self, token):
        with patch("core.signals.collector.shutil.which", return_value=None):
            result = InternetSpeedTestCollector(enabled=True).collect(token)
        assert result.reason == "tool_not_installed"


class TestSystemLogs:
    """driverStability and bootPerformance."""

    def test_parse_duration(self):
        assert parse_systemd_duration("812ms") == 812
        assert parse_systemd_duration("1min 2.345s") == 62345
        assert parse_systemd_duration("soon") is None

    def test_parse_analyze(self):
        stages = parse_systemd_analyze(SYSTEMD_ANALYZE)
        assert stages["kernel_ms"] == 2500
        assert stages["userspace_ms"] == 63200
        assert stages["boot_time_ms"] == 65700

    def test_boot_performance(self, token):
        outputs = [CommandOutput(0, SYSTEMD_ANALYZE, ""), CommandOutput(0, "", "")]
        with patch("core.signals.collectors.system_logs.run_command", side_effect=outputs):
            result = BootPerformanceCollector().collect(token)
        assert result.quality == Quality.OK
        assert result.value["boot_time_ms"] == 65700
        assert result.value["failed_units"] == 0

    def test_boot_fallback_to_uptime(self, token):
        with patch("core.signals.collectors.system_logs.run_command",
                   side_effect=SignalCollectionError("dependency_absent: systemd-analyze")):
            result = BootPerformanceCollector().collect(token)
        assert result.quality == Quality.PARTIAL
        assert result.value["boot_time_ms"] is None
        assert "dependency_absent" in result.notes

    def test_kernel_crash_is_suspect(self, token):
        errors = KernelLog([entry("BUG: unable to handle page fault for address")])
        warnings = KernelLog([entry("python3[1234]: segfault at 0 ip 0 sp 0")])
        with patch("core.signals.collectors.system_logs.read_kernel_log", side_effect=[errors, warnings]):
            result = DriverStabilityCollector().collect(token)
        assert result.quality == Quality.SUSPECT
        assert result.value["kernel_crashes"] == 1
        assert result.value["app_crashes"] == 1


    def test_debug_line_is_not_a_crash(self, token):
        errors = KernelLog([entry("usb 1-1: debug: descriptor read failed")])
        warnings = KernelLog([])
        with patch("core.signals.collectors.system_logs.read_kernel_log", side_effect=[errors, warnings]):
            result = DriverStabilityCollector().collect(token)
        assert result.value["kernel_crashes"] == 0
        assert result.quality != Quality.SUSPECT

    def test_crash_pattern_case(self):
        assert KERNEL_CRASH_PATTERN.search("BUG: kernel NULL pointer dereference")
        assert not KERNEL_CRASH_PATTERN.search("xhci: debug: ring expansion")


class TestFirewall:
    """firewallStatus collector."""

    def _collect(self, token, stdout):
        output = CommandOutput(3, stdout, "")
        with patch("core.signals.collectors.security.run_command", return_value=output):
            return FirewallStatusCollector().collect(token)

    def test_active_firewall(self, token):
        result = self._collect(token, "inactive\nactive\ninactive\ninactive\n")
        assert result.quality == Quality.OK
        assert result.value["active_units"] == ["firewalld"]

    def test_no_firewall(self, token):
        result = self._collect(token, "inactive\ninactive\ninactive\ninactive\n")
        assert result.available is True
        assert result.quality == Quality.SUSPECT
        assert result.value["firewall_active"] is False

    def test_unexpected_output(self, token):
        result = self._collect(token, "inactive\n")
        assert result.reason == "parse_error"


class TestRegistry:
    """default_collectors()."""

    def test_default_set_leaves_out_opt_in(self):
        names = tuple(c.name for c in default_collectors())
        assert len(COLLECTOR_NAMES) == 13
        assert names == tuple(n for n in COLLECTOR_NAMES if n not in OPT_IN_COLLECTORS)
        assert "internetSpeedTest" not in names

    def test_settings_applied(self):
        settings = SimpleNamespace(
            timeouts={"cpuTemperature": 3.0},
            disabled=["firewallStatus", "unknownThing"],
            allow_external_network_tests=True,
            ping_count=2,
            sample_seconds=1,
        )
        collectors = {c.name: c for c in default_collectors(settings)}
        assert "firewallStatus" not in collectors
        assert len(collectors) == 12
        assert collectors["cpuTemperature"].default_timeout == 3.0
        assert collectors["internetSpeedTest"].enabled is True
        assert collectors["networkQuality"].ping_count == 2
        assert collectors["storageLatency"].sample_seconds == 1

    def test_only_overrides_disabled(self):
        settings = SimpleNamespace(disabled={"firewallStatus"})
        collectors = default_collectors(settings, only=["firewallStatus", "internetSpeedTest"])
        assert [c.name for c in collectors] == ["firewallStatus", "internetSpeedTest"]
        assert collectors[1].enabled is False

    def test_only_rejects_unknown(self):
        with pytest.raises(ValueError, match="bogus"):
            default_collectors(only=["bogus"])
