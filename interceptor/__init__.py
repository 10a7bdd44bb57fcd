"""
interceptor — InstallGuard's package-manager interception layer.

Public API:
    InstallInterceptor       : Runs in place of npm / pnpm / yarn / bun.
    CommandDetector          : Classifies package-manager argv.
    DetectedCommand          : One classified invocation.
    RuntimeMonitorController : Pro runtime hook and threat-log access.
"""

from .command_detector import CommandDetector, DetectedCommand
from .install_wrapper import InstallInterceptor
from .runtime_monitor import RuntimeMonitorController, ThreatLogEntry, ThreatType

__all__ = [
    "CommandDetector",
    "DetectedCommand",
    "InstallInterceptor",
    "RuntimeMonitorController",
    "ThreatLogEntry",
    "ThreatType",
]
