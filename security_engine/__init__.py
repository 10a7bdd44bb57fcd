"""
security_engine — InstallGuard's package risk-decision layer.

Public API:
    RiskDecisionEngine : Per-package allow / warn / block decision.
    RiskScoringClient  : HTTP client for the remote scoring service.
    SandboxCollector   : Trial install that produces a BehaviorReport.
    RiskLevel          : safe / warning / dangerous / unknown.
    ScanOutcome        : Parsed scan response.
    BehaviorReport     : Evidence gathered by the sandbox.
    ScoringServiceError: Base class of every scoring-service failure.
"""

from .api_client import (
    ModuleMissing,
    ModuleUnavailable,
    ProRequired,
    RiskScoringClient,
    ScoringServiceError,
    ServiceUnavailable,
)
from .base import BehaviorReport, RiskLevel, SandboxVerdict, ScanOutcome
from .checker import Decision, DecisionState, RiskDecisionEngine
from .sandbox import SandboxCollector

__all__ = [
    "BehaviorReport",
    "Decision",
    "DecisionState",
    "ModuleMissing",
    "ModuleUnavailable",
    "ProRequired",
    "RiskDecisionEngine",
    "RiskLevel",
    "RiskScoringClient",
    "SandboxCollector",
    "SandboxVerdict",
    "ScanOutcome",
    "ScoringServiceError",
    "ServiceUnavailable",
]
