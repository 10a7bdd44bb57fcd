"""
security_engine/checker.py

RiskDecisionEngine — per-package allow / warn / block decision.
───────────────────────────────────────────────────────────────
Each package spec named on an install command goes through:

    Unscanned ─┬─ trusted ─────────────► Proceed   (no network call)
               ├─ scan fails ──────────► Proceed   (fail-open)
               └─ scan ok ─► Evaluated(risk)
                              ├─ safe / unknown / warning ─► Proceed
                              └─ dangerous ─► AwaitingConfirmation
                                               ├─ "y" / "Y" ─► Proceed
                                               └─ anything else ─► Blocked

After the verdict, informational layers are rendered — version anomalies,
then either the Pro upsell (free scan) or a sandbox verdict (cached from
the server, or freshly collected by SandboxCollector and scored remotely).
None of those layers can change the decision.

The engine only reads the trust set; it never writes configuration.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from colorama import Fore

import console_ui as ui

from .api_client import RiskScoringClient, ScoringServiceError
from .base import RiskLevel, SandboxVerdict, ScanOutcome
from .package_spec import is_package_token, split_package_spec
from .sandbox import SandboxCollector

logger = logging.getLogger(__name__)

# Only an exact y/Y answer lets a dangerous package through.
_CONFIRM_YES = re.compile(r"[Yy]")

CONFIRM_PROMPT = "     Continue anyway? (y/N) "

# Live sandbox results show at most this many flag details.
MAX_LIVE_FLAGS = 5


class DecisionState(Enum):
    NOT_A_PACKAGE = "not_a_package"
    TRUSTED = "trusted"
    NETWORK_ERROR = "network_error"
    EVALUATED = "evaluated"
    CONFIRMED = "confirmed"
    BLOCKED = "blocked"


@dataclass
class Decision:
    """
    Attributes:
        proceed    : False only when the user declined a dangerous package.
        state      : Terminal state the package reached.
        risk_level : Verdict, when one was obtained.
        outcome    : Full scan response, when the scan succeeded.
    """
    proceed: bool
    state: DecisionState
    risk_level: Optional[RiskLevel] = None
    outcome: Optional[ScanOutcome] = None


def _read_confirmation(prompt: str) -> str:
    try:
        return input(prompt)
    except EOFError:
        return ""


class RiskDecisionEngine:
    """
    Args:
        config       : ConfigStore (trust set + device id).
        client       : RiskScoringClient for scan and sandbox scoring.
        sandbox      : SandboxCollector used for Pro scans without a cached
                       verdict. Defaults to one bound to the host platform.
        confirm_input: Callable used for the dangerous-tier prompt. Receives
                       the prompt string and returns the line the user typed.
        verbose      : Show transport error details on fail-open.
    """

    def __init__(
        self,
        config,
        client: Optional[RiskScoringClient] = None,
        sandbox: Optional[SandboxCollector] = None,
        confirm_input: Optional[Callable[[str], str]] = None,
        verbose: bool = False,
    ) -> None:
        self._config = config
        self._client = client or RiskScoringClient(config)
        self._sandbox = sandbox or SandboxCollector()
        self._confirm_input = confirm_input or _read_confirmation
        self._verbose = verbose

    def decide(self, package_spec: str) -> Decision:
        if not is_package_token(package_spec):
            return Decision(proceed=True, state=DecisionState.NOT_A_PACKAGE)

        name, _version = split_package_spec(package_spec)

        # ── Rule 1: trust set bypasses the scoring service entirely ───────────
        if self._config.is_trusted(name):
            print()
            ui.print_ok(f"[TRUSTED] {name} (skipped)")
            logger.info("Trusted package %s — scan skipped", name)
            return Decision(proceed=True, state=DecisionState.TRUSTED, risk_level=RiskLevel.SAFE)

        print()
        ui.print_info(f"Scanning {package_spec}...")

        # ── Rule 2: remote scan, fail-open on infrastructure errors ───────────
        try:
            outcome = self._client.scan(package_spec)
        except ScoringServiceError as exc:
            logger.warning("Scan of %s failed: %s — allowing install", package_spec, exc)
            ui.print_warning(f"Could not scan {package_spec} - API unreachable")
            if self._verbose:
                ui.print_detail(str(exc))
            return Decision(proceed=True, state=DecisionState.NETWORK_ERROR)

        logger.info(
            "Scan result | pkg=%s version=%s risk=%s scanned=%s",
            outcome.package, outcome.version, outcome.risk_level.value, outcome.scanned,
        )

        # ── Rule 3: verdict display and the confirmation gate ─────────────────
        state = DecisionState.EVALUATED
        if not self._show_verdict(outcome):
            ui.print_error("Installation cancelled")
            return Decision(
                proceed=False, state=DecisionState.BLOCKED,
                risk_level=outcome.risk_level, outcome=outcome,
            )
        if outcome.risk_level is RiskLevel.DANGEROUS:
            state = DecisionState.CONFIRMED

        # ── Rules 4-7: informational layers, never gating ─────────────────────
        self._show_anomalies(outcome)
        self._show_pro_layers(name, outcome)

        print()
        return Decision(proceed=True, state=state, risk_level=outcome.risk_level, outcome=outcome)

    # ── Private helpers ───────────────────────────────────────────────────────

    def _show_verdict(self, outcome: ScanOutcome) -> bool:
        """Render the verdict. Returns False when the user declines a dangerous package."""
        label = f"{outcome.package}@{outcome.version}"
        level = outcome.risk_level

        if level is RiskLevel.SAFE:
            ui.print_ok(label)
            ui.print_detail(outcome.message)
        elif level is RiskLevel.WARNING:
            ui.print_warning(f"WARNING: {label}")
            ui.print_detail(outcome.message)
        elif level is RiskLevel.DANGEROUS:
            ui.print_blocked(label)
            ui.print_detail(outcome.message)
            print()
            answer = self._confirm_input(CONFIRM_PROMPT).rstrip("\r\n")
            if not _CONFIRM_YES.fullmatch(answer):
                logger.warning("User declined dangerous package %s", label)
                return False
            logger.warning("User accepted dangerous package %s", label)
        else:
            ui.print_info(label)
            ui.print_detail(outcome.message)
        return True

    @staticmethod
    def _show_anomalies(outcome: ScanOutcome) -> None:
        if outcome.previous_version:
            ui.print_branch(f"Compared with: {outcome.previous_version}", Fore.CYAN)
        for reason in outcome.anomaly_reasons:
            ui.print_branch(reason, Fore.MAGENTA)

    def _show_pro_layers(self, name: str, outcome: ScanOutcome) -> None:
        if not outcome.scanned:
            ui.print_pro_upsell()
            return

        if outcome.sandbox is not None and outcome.sandbox.cached:
            ui.print_info("Sandbox: Cache-Hit")
            self._render_sandbox(outcome.sandbox, max_flags=None)
            return

        self._run_local_sandbox(name, outcome.version)

    def _run_local_sandbox(self, name: str, version: str) -> None:
        if not self._sandbox.is_available():
            ui.print_dim("[>] Local sandbox not available")
            tip = self._sandbox.platform.sandbox_tip()
            if tip:
                ui.print_detail(f"Tip: {tip}")
            return

        ui.print_info("Running behavioral sandbox...")
        ui.print_detail("Collecting behavior data...")
        report = self._sandbox.collect(name, version)
        if report is None:
            ui.print_warning("Sandbox: Could not collect behavior data")
            return

        ui.print_detail("Sending to server for analysis...")
        try:
            verdict = self._client.analyze_sandbox(
                name, version, report, device_id=self._config.device_id, source="local",
            )
        except ScoringServiceError as exc:
            logger.warning("Sandbox analysis for %s failed: %s", name, exc)
            ui.print_warning("Sandbox: Server analysis unavailable")
            return

        self._render_sandbox(verdict, max_flags=MAX_LIVE_FLAGS)

    @staticmethod
    def _render_sandbox(verdict: SandboxVerdict, max_flags: Optional[int]) -> None:
        if verdict.risk_level is RiskLevel.DANGEROUS:
            ui.print_error(f"Sandbox: DANGEROUS behavior detected (score: {verdict.score})")
        elif verdict.risk_level is RiskLevel.WARNING:
            ui.print_warning(f"Sandbox: Suspicious behavior (score: {verdict.score})")
        else:
            ui.print_ok(f"Sandbox: Clean behavior (score: {verdict.score})")

        flags = verdict.flags if max_flags is None else verdict.flags[:max_flags]
        for flag in flags:
            if flag.detail:
                ui.print_detail(flag.detail)
