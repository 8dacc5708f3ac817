#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
System Health Check
===================
Single-host diagnostic sweep for Linux: disk usage, memory usage, CPU load,
service status and pending package updates, with an optional ASCII-art
banner tool installed through the distribution's package manager.

License: MIT
Python: 3.8+

Features:
- Detects the distribution family (Arch-like, Debian-like, other)
- Every check logs a "CHECK:" line followed by a "RECOMMENDATION:" line
- Timestamped log file, truncated at the start of each run
- Never crashes on a single bad signal (degrades gracefully)
- Dependencies: psutil
"""

from __future__ import annotations
import argparse
import logging
import os
import shutil
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, TextIO, Tuple

import psutil

from sysutils import RunLog, bytes_to_human, run_command, safe_get, setup_logging

# =============================================================================
# CONSTANTS
# =============================================================================

VERSION = "1.1.0"
DEFAULT_LOG_PATH = "/var/log/system_health_check.log"
DEFAULT_OS_RELEASE = "/etc/os-release"
DEFAULT_DISPLAY_TOOL = "neofetch"
DEFAULT_SERVICES = ("sshd", "cron")
LOADAVG_PATH = "/proc/loadavg"

START_MARKER = "Starting system health check"
END_MARKER = "System health check completed"

GENERIC_BANNER = "\n".join([
    "=" * 70,
    f"  System Health Check v{VERSION}",
    "=" * 70,
])

logger = logging.getLogger(__name__)

DiskRow = Tuple[str, str, str]  # (device, usage percent text, mount point)

# =============================================================================
# CONFIGURATION & MODELS
# =============================================================================

@dataclass(frozen=True)
class HealthCheckConfig:
    """Thresholds and paths for one run. Built once, never mutated."""

    disk_usage_percent: int = 80
    memory_usage_percent: int = 80
    load_average: float = 2.0
    monitored_services: Tuple[str, ...] = DEFAULT_SERVICES
    log_path: str = DEFAULT_LOG_PATH
    display_tool: str = DEFAULT_DISPLAY_TOOL
    os_release_path: str = DEFAULT_OS_RELEASE
    command_timeout: int = 30
    install_timeout: int = 600
    refresh_package_index: bool = False
    install_display_tool: bool = True

    def __post_init__(self):
        for name in ("disk_usage_percent", "memory_usage_percent"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be between 0 and 100, got {value}")
        if self.load_average < 0:
            raise ValueError(f"load_average must be non-negative, got {self.load_average}")
        if self.command_timeout <= 0 or self.install_timeout <= 0:
            raise ValueError("Timeouts must be positive.")
        # Accept any sequence of names but store a tuple
        object.__setattr__(self, "monitored_services", tuple(self.monitored_services))


class Distribution(str, Enum):
    ARCH_LIKE = "arch"
    DEBIAN_LIKE = "debian"
    OTHER = "other"


class InstallOutcome(str, Enum):
    ALREADY_PRESENT = "already_present"
    INSTALLED = "installed"
    FAILED = "failed"


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one check; serialised as a CHECK/RECOMMENDATION pair."""

    name: str
    passed: bool
    detail: str

    def log_lines(self) -> Tuple[str, str]:
        return f"CHECK: {self.name}", f"RECOMMENDATION: {self.detail}"


@dataclass
class RunReport:
    distribution: Distribution
    install_outcome: InstallOutcome
    results: List[CheckResult] = field(default_factory=list)

    @property
    def all_passed(self) -> bool:
        return all(r.passed for r in self.results)

# =============================================================================
# SYSTEM PROBE
# =============================================================================

class SystemProbe:
    """Queries the host. Subclass to substitute fixtures in tests."""

    def disk_rows(self) -> List[DiskRow]:
        raise NotImplementedError

    def memory(self) -> Tuple[int, int]:
        """Return (total, used) bytes."""
        raise NotImplementedError

    def load_average(self) -> str:
        raise NotImplementedError

    def service_active(self, name: str) -> bool:
        raise NotImplementedError

    def tool_available(self, name: str) -> bool:
        raise NotImplementedError

    def run(self, cmd: List[str], timeout: int) -> Tuple[int, str, str]:
        raise NotImplementedError


class HostProbe(SystemProbe):
    """Probe backed by df, systemctl, /proc and psutil."""

    def __init__(self, timeout: int = 30):
        self.timeout = timeout

    def disk_rows(self) -> List[DiskRow]:
        rc, out, err = run_command(["df", "-P"], timeout=self.timeout)
        if rc == 0 and out:
            return parse_df_output(out)
        logger.warning(f"df failed ({rc}): {err}; falling back to psutil")
        rows = []
        for partition in psutil.disk_partitions(all=False):
            usage = safe_get(lambda: psutil.disk_usage(partition.mountpoint))
            if usage and partition.device.startswith("/dev"):
                rows.append((partition.device, str(round(usage.percent)), partition.mountpoint))
        return rows

    def memory(self) -> Tuple[int, int]:
        vm = psutil.virtual_memory()
        logger.debug(f"Memory total={bytes_to_human(vm.total)} used={bytes_to_human(vm.used)}")
        return vm.total, vm.used

    def load_average(self) -> str:
        try:
            with open(LOADAVG_PATH, "r", encoding="utf-8") as f:
                return f.read().split()[0]
        except (OSError, IndexError) as e:
            logger.debug(f"Cannot read {LOADAVG_PATH}: {e}")
        return str(psutil.getloadavg()[0])

    def service_active(self, name: str) -> bool:
        rc, _, _ = run_command(["systemctl", "is-active", "--quiet", name], timeout=self.timeout)
        return rc == 0

    def tool_available(self, name: str) -> bool:
        return shutil.which(name) is not None

    def run(self, cmd: List[str], timeout: int) -> Tuple[int, str, str]:
        return run_command(cmd, timeout=timeout)


def parse_df_output(output: str) -> List[DiskRow]:
    """Extract device-backed rows from `df -P` output.

    The usage column is returned as text with the percent sign removed;
    validating it is the disk check's job.
    """
    rows = []
    for line in output.splitlines():
        if not line.startswith("/dev"):
            continue
        parts = line.split(None, 5)
        if len(parts) < 6:
            continue
        rows.append((parts[0], parts[4].rstrip("%"), parts[5]))
    return rows

# =============================================================================
# ENVIRONMENT DETECTION
# =============================================================================

ARCH_IDS = {"arch", "manjaro", "endeavouros", "garuda", "artix"}
DEBIAN_IDS = {"debian", "ubuntu", "linuxmint", "pop", "raspbian", "kali", "elementary"}


def parse_os_release(text: str) -> Dict[str, str]:
    """Parse KEY=value lines, stripping quotes."""
    fields = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        fields[key.strip()] = value.strip().strip('"').strip("'")
    return fields


def _family_of(ident: str) -> Distribution:
    ident = ident.lower()
    if ident in ARCH_IDS:
        return Distribution.ARCH_LIKE
    if ident in DEBIAN_IDS:
        return Distribution.DEBIAN_LIKE
    return Distribution.OTHER


def detect_distribution(os_release_path: str = DEFAULT_OS_RELEASE) -> Distribution:
    """Classify the host from its OS descriptor file. Missing file means OTHER."""
    try:
        with open(os_release_path, "r", encoding="utf-8") as f:
            fields = parse_os_release(f.read())
    except OSError as e:
        logger.debug(f"Cannot read {os_release_path}: {e}")
        return Distribution.OTHER

    dist = _family_of(fields.get("ID", ""))
    if dist is not Distribution.OTHER:
        return dist
    for ident in fields.get("ID_LIKE", "").split():
        dist = _family_of(ident)
        if dist is not Distribution.OTHER:
            return dist
    return Distribution.OTHER

# =============================================================================
# PACKAGE MANAGERS
# =============================================================================

def is_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


def privileged(cmd: List[str], probe: SystemProbe) -> List[str]:
    """Prefix with non-interactive sudo when not running as root."""
    if is_root() or not probe.tool_available("sudo"):
        return cmd
    return ["sudo", "-n"] + cmd


class PackageManager:
    """Distribution-specific install and update queries."""

    name = "none"
    supported = False

    def install(self, package: str, probe: SystemProbe, timeout: int) -> bool:
        return False

    def refresh_index(self, probe: SystemProbe, timeout: int) -> bool:
        return False

    def pending_updates(self, probe: SystemProbe, timeout: int) -> Optional[int]:
        return None


class UnsupportedManager(PackageManager):
    pass


class PacmanManager(PackageManager):
    name = "pacman"
    supported = True

    def install(self, package: str, probe: SystemProbe, timeout: int) -> bool:
        rc, _, err = probe.run(privileged(["pacman", "-Sy", "--noconfirm", package], probe), timeout)
        if rc != 0:
            logger.warning(f"pacman install of {package} failed ({rc}): {err}")
        return rc == 0

    def refresh_index(self, probe: SystemProbe, timeout: int) -> bool:
        rc, _, err = probe.run(privileged(["pacman", "-Sy"], probe), timeout)
        if rc != 0:
            logger.warning(f"pacman -Sy failed ({rc}): {err}")
        return rc == 0

    def pending_updates(self, probe: SystemProbe, timeout: int) -> Optional[int]:
        # checkupdates works on a temporary database copy
        if probe.tool_available("checkupdates"):
            cmd, nothing_pending = ["checkupdates"], 2
        else:
            cmd, nothing_pending = ["pacman", "-Qu"], 1
        rc, out, err = probe.run(cmd, timeout)
        if rc == nothing_pending and not out:
            return 0
        if rc != 0:
            logger.warning(f"{cmd[0]} failed ({rc}): {err}")
            return None
        return len([line for line in out.splitlines() if line.strip()])


class AptManager(PackageManager):
    name = "apt-get"
    supported = True

    def install(self, package: str, probe: SystemProbe, timeout: int) -> bool:
        if not self.refresh_index(probe, timeout):
            return False
        rc, _, err = probe.run(privileged(["apt-get", "install", "-y", package], probe), timeout)
        if rc != 0:
            logger.warning(f"apt-get install of {package} failed ({rc}): {err}")
        return rc == 0

    def refresh_index(self, probe: SystemProbe, timeout: int) -> bool:
        rc, _, err = probe.run(privileged(["apt-get", "update"], probe), timeout)
        if rc != 0:
            logger.warning(f"apt-get update failed ({rc}): {err}")
        return rc == 0

    def pending_updates(self, probe: SystemProbe, timeout: int) -> Optional[int]:
        rc, out, err = probe.run(["apt-get", "-s", "upgrade"], timeout)
        if rc != 0:
            logger.warning(f"apt-get -s upgrade failed ({rc}): {err}")
            return None
        return sum(1 for line in out.splitlines() if line.startswith("Inst "))


PACKAGE_MANAGERS: Dict[Distribution, PackageManager] = {
    Distribution.ARCH_LIKE: PacmanManager(),
    Distribution.DEBIAN_LIKE: AptManager(),
    Distribution.OTHER: UnsupportedManager(),
}


def package_manager_for(dist: Distribution) -> PackageManager:
    return PACKAGE_MANAGERS.get(dist, PACKAGE_MANAGERS[Distribution.OTHER])

# =============================================================================
# DISPLAY TOOL
# =============================================================================

def ensure_display_tool(dist: Distribution, config: HealthCheckConfig,
                        probe: SystemProbe, run_log: RunLog) -> InstallOutcome:
    """Make the banner tool available if possible. Never fatal."""
    tool = config.display_tool
    if probe.tool_available(tool):
        run_log.log(f"{tool} is already installed.")
        return InstallOutcome.ALREADY_PRESENT

    if not config.install_display_tool:
        run_log.log(f"{tool} not found; installation skipped.")
        return InstallOutcome.FAILED

    manager = package_manager_for(dist)
    if not manager.supported:
        run_log.log(f"{tool} not found; automatic installation not supported on this distribution.")
        return InstallOutcome.FAILED

    if manager.install(tool, probe, config.install_timeout):
        run_log.log(f"Installed {tool} via {manager.name}.")
        return InstallOutcome.INSTALLED
    run_log.log(f"Failed to install {tool} via {manager.name}; continuing without it.")
    return InstallOutcome.FAILED


def show_banner(tool_available: bool, config: HealthCheckConfig,
                probe: SystemProbe, stream: Optional[TextIO] = None) -> None:
    """Print distro art from the display tool, or the generic banner."""
    out = stream if stream is not None else sys.stdout
    if tool_available:
        rc, art, err = probe.run([config.display_tool], config.command_timeout)
        if rc == 0 and art:
            print(art, file=out)
            return
        logger.warning(f"{config.display_tool} failed ({rc}): {err}")
    print(GENERIC_BANNER, file=out)

# =============================================================================
# CHECKS
# =============================================================================

def _parse_usage(value: str) -> Optional[int]:
    value = value.strip()
    if not (value.isascii() and value.isdigit()):
        return None
    return int(value)


class HealthChecker:
    """The fixed, ordered set of checks."""

    def __init__(self, config: HealthCheckConfig, probe: SystemProbe,
                 distribution: Distribution):
        self.config = config
        self.probe = probe
        self.distribution = distribution

    def checks(self) -> List[Tuple[str, Callable[[], CheckResult]]]:
        return [
            ("Disk Usage", self.check_disk_usage),
            ("Memory Usage", self.check_memory_usage),
            ("CPU Load", self.check_cpu_load),
            ("Service Status", self.check_services),
            ("Pending Updates", self.check_updates),
        ]

    def check_disk_usage(self) -> CheckResult:
        threshold = self.config.disk_usage_percent
        flagged = []
        for _device, usage_field, mount in self.probe.disk_rows():
            usage = _parse_usage(usage_field)
            if usage is None:
                continue  # Header rows or odd filesystems
            if usage >= threshold:
                flagged.append(f"{mount}({usage}%)")

        if not flagged:
            return CheckResult("Disk Usage", True,
                               f"All device-backed mounts are below {threshold}% usage. No action needed.")
        return CheckResult("Disk Usage", False,
                           f"Disk usage at or above {threshold}% on: {', '.join(flagged)}. Free up space.")

    def check_memory_usage(self) -> CheckResult:
        threshold = self.config.memory_usage_percent
        total, used = self.probe.memory()
        if total <= 0:
            return CheckResult("Memory Usage", False, "Memory totals unavailable; could not evaluate usage.")

        percent = used / total * 100
        if percent > threshold:
            return CheckResult("Memory Usage", False,
                               f"Memory usage above {threshold}% threshold, used={percent:.0f}%. "
                               "Investigate memory-hungry processes.")
        return CheckResult("Memory Usage", True,
                           f"Memory usage is {percent:.0f}% (threshold {threshold}%). No action needed.")

    def check_cpu_load(self) -> CheckResult:
        threshold = float(self.config.load_average)
        raw = self.probe.load_average()
        try:
            load = float(raw)
        except (TypeError, ValueError):
            return CheckResult("CPU Load", False, f"Could not parse load average {raw!r}.")

        if load > threshold:
            return CheckResult("CPU Load", False,
                               f"Load avg {load} > {threshold}, investigate running processes.")
        return CheckResult("CPU Load", True,
                           f"Load avg {load} is within threshold {threshold}. No action needed.")

    def check_services(self) -> CheckResult:
        stopped = [name for name in self.config.monitored_services
                   if not self.probe.service_active(name)]
        if not stopped:
            return CheckResult("Service Status", True, "All monitored services are running.")
        return CheckResult("Service Status", False,
                           f"Services not running => {', '.join(stopped)}. Restart or investigate them.")

    def check_updates(self) -> CheckResult:
        manager = package_manager_for(self.distribution)
        if not manager.supported:
            return CheckResult("Pending Updates", True,
                               "Update check not implemented for this distribution.")

        timeout = self.config.command_timeout
        if self.config.refresh_package_index:
            if not manager.refresh_index(self.probe, self.config.install_timeout):
                logger.warning("Package index refresh failed; reporting against the cached index.")

        count = manager.pending_updates(self.probe, timeout)
        if count is None:
            return CheckResult("Pending Updates", False,
                               f"Could not query pending updates via {manager.name}.")
        if count == 0:
            return CheckResult("Pending Updates", True, "System is up to date.")
        return CheckResult("Pending Updates", False,
                           f"{count} package update(s) available. Consider upgrading.")

    def run_all(self, run_log: RunLog) -> List[CheckResult]:
        """Run every check in order, logging each as a CHECK/RECOMMENDATION pair."""
        results = []
        for name, method in self.checks():
            try:
                result = method()
            except Exception as e:
                logger.error(f"[{name}] {e}")
                result = CheckResult(name, False, f"Check failed: {type(e).__name__}: {e}")
            for line in result.log_lines():
                run_log.log(line)
            results.append(result)
        return results

# =============================================================================
# ORCHESTRATOR
# =============================================================================

def run_health_check(config: HealthCheckConfig, probe: Optional[SystemProbe] = None,
                     run_log: Optional[RunLog] = None,
                     stream: Optional[TextIO] = None) -> RunReport:
    """Run the full sweep and print the resulting log."""
    out = stream if stream is not None else sys.stdout
    probe = probe if probe is not None else HostProbe(config.command_timeout)
    run_log = run_log if run_log is not None else RunLog(config.log_path, stream=out)

    run_log.clear()
    distribution = detect_distribution(config.os_release_path)
    run_log.log(f"Detected distribution family: {distribution.value}")

    outcome = ensure_display_tool(distribution, config, probe, run_log)
    show_banner(outcome is not InstallOutcome.FAILED, config, probe, stream=out)

    run_log.log(f"{START_MARKER} (distribution: {distribution.value})")
    results = HealthChecker(config, probe, distribution).run_all(run_log)
    run_log.log(END_MARKER)

    print(f"\n{'='*70}\n  Full log: {run_log.path}\n{'='*70}", file=out)
    print(run_log.read(), end="", file=out)
    return RunReport(distribution, outcome, results)

# =============================================================================
# MAIN CLI
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sys-health-check",
        description="Check disk, memory, CPU load, services and pending updates.",
    )
    parser.add_argument("--disk-threshold", type=int, default=80, help="Disk usage percent (default: 80)")
    parser.add_argument("--memory-threshold", type=int, default=80, help="Memory usage percent (default: 80)")
    parser.add_argument("--load-threshold", type=float, default=2.0, help="1-minute load average (default: 2.0)")
    parser.add_argument("--service", action="append", dest="services", metavar="NAME",
                        help="Service to monitor; repeat for several (default: sshd, cron)")
    parser.add_argument("--log-file", default=DEFAULT_LOG_PATH)
    parser.add_argument("--display-tool", default=DEFAULT_DISPLAY_TOOL)
    parser.add_argument("--no-install", action="store_true", help="Do not install the display tool")
    parser.add_argument("--refresh-index", action="store_true",
                        help="Refresh the package index before counting updates")
    parser.add_argument("--timeout", type=int, default=30, help="Timeout for system queries in seconds")
    parser.add_argument("--strict", action="store_true", help="Exit 1 when any check fails")
    parser.add_argument("--verbose", "-v", action="store_true")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser


def config_from_args(args: argparse.Namespace) -> HealthCheckConfig:
    return HealthCheckConfig(
        disk_usage_percent=args.disk_threshold,
        memory_usage_percent=args.memory_threshold,
        load_average=args.load_threshold,
        monitored_services=tuple(args.services) if args.services else DEFAULT_SERVICES,
        log_path=args.log_file,
        display_tool=args.display_tool,
        command_timeout=args.timeout,
        refresh_package_index=args.refresh_index,
        install_display_tool=not args.no_install,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    try:
        config = config_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    report = run_health_check(config)
    if args.strict and not report.all_passed:
        return 1
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\n[!] Interrupted by user. Exiting...")
        sys.exit(130)
    except Exception as e:
        logger.critical(f"[FATAL ERROR] {e}")
        import traceback
        traceback.print_exc(file=sys.stderr)
        sys.exit(1)
