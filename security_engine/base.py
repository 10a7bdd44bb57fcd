"""
security_engine/base.py

Core value objects for InstallGuard's risk pipeline.

Architecture Note:
    Everything that crosses a boundary (remote scoring service, sandbox,
    console) is expressed with the types below. Remote JSON is decoded here
    once, leniently: missing keys get defaults and unrecognised risk strings
    become RiskLevel.UNKNOWN, so a quirky server response can never crash
    an install.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Set


class RiskLevel(Enum):
    """
    Risk tier assigned to a package by the remote service or the sandbox.
    Closed set — anything else the server sends decodes as UNKNOWN.
    """
    SAFE = "safe"
    WARNING = "warning"
    DANGEROUS = "dangerous"
    UNKNOWN = "unknown"

    @classmethod
    def from_remote(cls, value: Any, default: Optional["RiskLevel"] = None) -> "RiskLevel":
        if default is None:
            default = cls.UNKNOWN
        if value is None:
            return default
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


@dataclass
class SandboxFlag:
    """One behavioural finding reported by the scoring service."""
    flag: Optional[str] = None
    detail: Optional[str] = None
    score: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> "SandboxFlag":
        if not isinstance(data, dict):
            return cls()
        score = data.get("score")
        return cls(
            flag=_as_str(data.get("flag")),
            detail=_as_str(data.get("detail")),
            score=_as_int(score) if score is not None else None,
        )


@dataclass
class SandboxVerdict:
    """
    Server-side score for a sandbox run — either a cached verdict embedded in
    a scan response or the reply to a fresh `sandbox/analyze` submission.
    """
    cached: bool = False
    score: int = 0
    risk_level: RiskLevel = RiskLevel.SAFE
    flags: List[SandboxFlag] = field(default_factory=list)

    @classmethod
    def from_analyze_response(cls, data: dict) -> "SandboxVerdict":
        return cls(
            cached=bool(data.get("cached", False)),
            score=_as_int(data.get("score")),
            risk_level=RiskLevel.from_remote(data.get("riskLevel"), default=RiskLevel.SAFE),
            flags=[SandboxFlag.from_dict(f) for f in _as_list(data.get("flags"))],
        )


@dataclass
class ScanOutcome:
    """
    Decoded `scan` response.

    Attributes:
        package          : Package name echoed by the service.
        version          : Resolved version ("latest" when not echoed).
        risk_level       : Remote verdict (see RiskLevel).
        message          : Human-readable explanation.
        scanned          : True when the Pro analysis layers ran.
        sandbox          : Cached sandbox verdict, when the server has one.
        previous_version : Version the anomaly detector compared against.
        anomaly_reasons  : Ordered list of version-anomaly explanations.
    """
    package: str
    version: str
    risk_level: RiskLevel
    message: str
    scanned: bool = False
    sandbox: Optional[SandboxVerdict] = None
    previous_version: Optional[str] = None
    anomaly_reasons: List[str] = field(default_factory=list)

    @classmethod
    def from_response(cls, data: dict, requested: str) -> "ScanOutcome":
        sandbox = None
        if data.get("sandboxCached"):
            sandbox = SandboxVerdict(
                cached=True,
                score=_as_int(data.get("sandboxScore")),
                risk_level=RiskLevel.from_remote(
                    data.get("sandboxRiskLevel"), default=RiskLevel.SAFE
                ),
                flags=[SandboxFlag.from_dict(f) for f in _as_list(data.get("sandboxFlags"))],
            )
        return cls(
            package=_as_str(data.get("package")) or requested,
            version=_as_str(data.get("version")) or "latest",
            risk_level=RiskLevel.from_remote(data.get("riskLevel")),
            message=_as_str(data.get("message")) or "No details",
            scanned=bool(data.get("scanned", False)),
            sandbox=sandbox,
            previous_version=_as_str(data.get("previousVersion")),
            anomaly_reasons=[r for r in _as_list(data.get("anomalyReasons")) if isinstance(r, str)],
        )


@dataclass
class ProStatus:
    is_pro: bool
    plan: Optional[str] = None


# ─────────────────────────────────────────────────────────────────────────────
# Behaviour report — evidence gathered by one sandbox run
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class NetworkConnection:
    host: Optional[str] = None
    ip: Optional[str] = None
    port: int = 0  # 0 = not derivable from the evidence

    def to_dict(self) -> dict:
        return {"host": self.host, "ip": self.ip, "port": self.port}


@dataclass
class ProcessSpawned:
    executable: str
    args: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"executable": self.executable, "args": list(self.args)}


@dataclass
class SensitiveAccess:
    kind: str   # "file" (seen in a trace) or "pattern" (static source match)
    path: str

    def to_dict(self) -> dict:
        return {"type": self.kind, "path": self.path}


@dataclass
class BehaviorReport:
    """
    Everything observed during one sandboxed install. Collections start
    empty, never None, so "nothing observed" serialises as [] not null.
    """
    files_read: Set[str] = field(default_factory=set)
    files_written: Set[str] = field(default_factory=set)
    network_connections: List[NetworkConnection] = field(default_factory=list)
    processes_spawned: List[ProcessSpawned] = field(default_factory=list)
    env_vars_accessed: Set[str] = field(default_factory=set)
    sensitive_access: List[SensitiveAccess] = field(default_factory=list)
    exit_code: int = 0

    def to_payload(self) -> dict:
        """Wire shape expected by `sandbox/analyze`."""
        return {
            "filesRead": sorted(self.files_read),
            "filesWritten": sorted(self.files_written),
            "networkConnections": [c.to_dict() for c in self.network_connections],
            "processesSpawned": [p.to_dict() for p in self.processes_spawned],
            "envVarsAccessed": sorted(self.env_vars_accessed),
            "sensitiveAccess": [s.to_dict() for s in self.sensitive_access],
            "exitCode": self.exit_code,
        }
