"""
interceptor/runtime_monitor.py

RuntimeMonitorController — the Pro runtime hook and its threat log.
───────────────────────────────────────────────────────────────────
Runtime monitoring is a Node.js `--require` hook (`monitor.js`) fetched
from the scoring service and stored in the config directory. While a real
install runs, InstallInterceptor injects it through NODE_OPTIONS; the hook
appends one JSON object per detected threat to `monitor.log`:

    {"threatType": "credential_access", "packageName": "evil-pkg",
     "blocked": true, "details": {"path": "/home/u/.npmrc"}}

This module only reads that log. Records are never rewritten or reordered;
the only mutation is deleting the whole file (`clear_log`).

Enabling requires a Pro plan and a successful module download; the config
flag is only set once `monitor.js` is on disk.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

import console_ui as ui
from config_store import ConfigStore
from security_engine.api_client import (
    ProRequired,
    RiskScoringClient,
    ScoringServiceError,
)

logger = logging.getLogger(__name__)

MONITOR_SCRIPT_NAME = "monitor.js"
MONITOR_LOG_NAME = "monitor.log"
DEFAULT_THREAT_COUNT = 20


# ─────────────────────────────────────────────────────────────────────────────
# Threat records
# ─────────────────────────────────────────────────────────────────────────────

class ThreatType(Enum):
    CREDENTIAL_ACCESS = "credential_access"
    NETWORK_EXFIL = "network_exfil"
    CREDENTIAL_EXFIL = "credential_exfil"
    PROCESS_SPAWN = "process_spawn"
    ENV_ACCESS = "env_access"
    SUSPICIOUS_CONNECTION = "suspicious_connection"
    UNKNOWN = "unknown"

    @classmethod
    def from_value(cls, value) -> "ThreatType":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @property
    def label(self) -> str:
        return _THREAT_LABELS[self]


_THREAT_LABELS = {
    ThreatType.CREDENTIAL_ACCESS: "Credential File Access",
    ThreatType.NETWORK_EXFIL: "Suspicious Network Request",
    ThreatType.CREDENTIAL_EXFIL: "Credential Exfiltration Attempt",
    ThreatType.PROCESS_SPAWN: "Suspicious Process Spawn",
    ThreatType.ENV_ACCESS: "Sensitive Env Var Access",
    ThreatType.SUSPICIOUS_CONNECTION: "Suspicious Network Connection",
    ThreatType.UNKNOWN: "Unknown Threat",
}


def _opt_str(data: dict, key: str) -> Optional[str]:
    value = data.get(key)
    return value if isinstance(value, str) else None


@dataclass
class ThreatDetails:
    path: Optional[str] = None
    url: Optional[str] = None
    command: Optional[str] = None
    variable: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ThreatDetails":
        return cls(
            path=_opt_str(data, "path"),
            url=_opt_str(data, "url"),
            command=_opt_str(data, "command"),
            variable=_opt_str(data, "variable"),
        )

    def lines(self) -> List[str]:
        """Human-readable `Label: value` lines for the fields present."""
        pairs = (
            ("Path", self.path),
            ("URL", self.url),
            ("Command", self.command),
            ("Env Var", self.variable),
        )
        return [f"{label}: {value}" for label, value in pairs if value]


@dataclass
class ThreatLogEntry:
    """
    Attributes:
        threat_type  : Parsed ThreatType (UNKNOWN for unrecognised strings).
        raw_type     : threatType exactly as the hook wrote it.
        package_name : Package the hook attributed the threat to.
        blocked      : True when the hook stopped the operation.
        details      : Optional context (path / url / command / variable).
    """
    threat_type: ThreatType
    raw_type: str
    package_name: str
    blocked: bool = False
    details: Optional[ThreatDetails] = None

    @classmethod
    def from_json_line(cls, line: str) -> Optional["ThreatLogEntry"]:
        """Parse one log line; None for blank, malformed or non-object lines."""
        line = line.strip()
        if not line:
            return None
        try:
            data = json.loads(line)
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None

        raw_type = _opt_str(data, "threatType") or "unknown"
        details = data.get("details")
        return cls(
            threat_type=ThreatType.from_value(raw_type),
            raw_type=raw_type,
            package_name=_opt_str(data, "packageName") or "unknown",
            blocked=data.get("blocked") is True,
            details=ThreatDetails.from_dict(details) if isinstance(details, dict) else None,
        )

    @property
    def label(self) -> str:
        if self.threat_type is ThreatType.UNKNOWN and self.raw_type != "unknown":
            return self.raw_type
        return self.threat_type.label


class ThreatLog:
    """Read-only view of the hook's JSON-lines log."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def size_bytes(self) -> int:
        try:
            return self.path.stat().st_size
        except OSError:
            return 0

    def read(self) -> List[ThreatLogEntry]:
        """Every valid record, in file order."""
        entries: List[ThreatLogEntry] = []
        try:
            with self.path.open("r", encoding="utf-8", errors="replace") as fh:
                for line in fh:
                    entry = ThreatLogEntry.from_json_line(line)
                    if entry is None:
                        if line.strip():
                            logger.debug("Skipping malformed threat record: %r", line[:120])
                        continue
                    entries.append(entry)
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.warning("Could not read threat log %s: %s", self.path, exc)
            return []
        return entries

    def count(self) -> int:
        return len(self.read())

    def tail(self, n: int) -> List[ThreatLogEntry]:
        """The last min(n, total) valid records, oldest first."""
        if n <= 0:
            return []
        return self.read()[-n:]

    def clear(self) -> None:
        """Delete the log. Missing files are fine; other OSErrors propagate."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


# ─────────────────────────────────────────────────────────────────────────────
# Controller
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class MonitorStatus:
    is_pro: bool
    script_installed: bool
    enabled: bool
    log_size_bytes: int
    threat_count: int


class RuntimeMonitorController:
    """
    Args:
        config : ConfigStore holding the plan and the monitoring flag. The
                 hook and the log live in its config directory.
        client : RiskScoringClient used to download `monitor.js`.
    """

    def __init__(
        self,
        config: ConfigStore,
        client: Optional[RiskScoringClient] = None,
    ) -> None:
        self._config = config
        self._client = client or RiskScoringClient(config)

    @property
    def script_path(self) -> Path:
        return self._config.config_dir / MONITOR_SCRIPT_NAME

    @property
    def log(self) -> ThreatLog:
        return ThreatLog(self._config.config_dir / MONITOR_LOG_NAME)

    def is_enabled(self) -> bool:
        return self._config.monitoring_enabled

    def script_exists(self) -> bool:
        return self.script_path.is_file()

    # ── Hook lifecycle ────────────────────────────────────────────────────────

    def download_script(self) -> bool:
        """Fetch `monitor.js` and write it to the config directory."""
        ui.print_info("Downloading runtime monitor...")
        try:
            content = self._client.download_module(MONITOR_SCRIPT_NAME)
        except ProRequired:
            ui.print_error("Runtime monitoring is a Pro feature")
            ui.print_info("Upgrade at: installguard upgrade")
            return False
        except ScoringServiceError as exc:
            logger.warning("monitor.js download failed: %s", exc)
            ui.print_error(f"Failed to download monitor: {exc}")
            return False

        try:
            self.script_path.parent.mkdir(parents=True, exist_ok=True)
            self.script_path.write_text(content, encoding="utf-8")
        except OSError as exc:
            logger.error("Could not write %s: %s", self.script_path, exc)
            ui.print_error(f"Failed to write {MONITOR_SCRIPT_NAME}: {exc}")
            return False

        ui.print_ok("Runtime monitor downloaded")
        return True

    def enable(self) -> bool:
        if not self._config.is_pro():
            ui.print_error("Runtime monitoring is a Pro feature")
            ui.print_pro_upsell()
            print()
            ui.print_info("Or link your device: installguard login")
            return False

        if not self.download_script():
            return False

        self._config.set_monitoring_enabled(True)
        logger.info("Runtime monitoring enabled")
        ui.print_ok("Runtime monitoring enabled")
        ui.print_info("All package installs will now be monitored for suspicious behavior")
        return True

    def disable(self) -> None:
        """Clear the flag. The downloaded hook stays in place."""
        self._config.set_monitoring_enabled(False)
        logger.info("Runtime monitoring disabled")
        ui.print_ok("Runtime monitoring disabled")

    def toggle(self) -> bool:
        """Flip the flag; returns the resulting enabled state."""
        if self.is_enabled():
            self.disable()
            return False
        return self.enable()

    # ── Reporting ─────────────────────────────────────────────────────────────

    def status(self) -> MonitorStatus:
        log = self.log
        result = MonitorStatus(
            is_pro=self._config.is_pro(),
            script_installed=self.script_exists(),
            enabled=self.is_enabled(),
            log_size_bytes=log.size_bytes(),
            threat_count=log.count(),
        )

        print()
        ui.print_section_header("Runtime Monitoring Status (Pro Feature)")
        print()

        if not result.is_pro:
            ui.print_warning("Pro subscription required")
            ui.print_info("Upgrade at: installguard upgrade")
            print()
            return result

        ui.print_ok("Pro subscription active")
        if result.script_installed:
            ui.print_ok("Monitor script installed")
        else:
            ui.print_warning("Monitor script not installed")
            ui.print_info("Run: installguard monitor enable")

        if result.enabled:
            ui.print_ok("Runtime monitoring enabled")
        else:
            ui.print_info("Runtime monitoring disabled")

        if log.exists():
            ui.print_info(f"Log file: {log.path} ({result.log_size_bytes // 1024} KB)")
            ui.print_info(f"Total threats logged: {result.threat_count}")
        else:
            ui.print_info("No threats logged yet")
        print()
        return result

    def threats(self, n: int = DEFAULT_THREAT_COUNT) -> List[ThreatLogEntry]:
        return self.log.tail(n)

    def show_threats(self, n: int = DEFAULT_THREAT_COUNT) -> List[ThreatLogEntry]:
        entries = self.threats(n)
        if not entries:
            ui.print_info("No threats logged yet")
            return entries

        print()
        ui.print_section_header(f"Recent Threats (last {n})")
        print()
        for entry in entries:
            status = "BLOCKED" if entry.blocked else "DETECTED"
            line = f"[{status}] {entry.package_name} - {entry.label}"
            if entry.blocked:
                ui.print_error(line)
            else:
                ui.print_warning(line)
            if entry.details is not None:
                for detail in entry.details.lines():
                    ui.print_detail(detail)
        print()
        return entries

    def clear_log(self) -> bool:
        try:
            self.log.clear()
        except OSError as exc:
            logger.error("Could not clear threat log: %s", exc)
            ui.print_error(f"Failed to clear log: {exc}")
            return False
        ui.print_ok("Threat log cleared")
        return True
