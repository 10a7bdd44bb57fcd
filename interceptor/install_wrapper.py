"""
interceptor/install_wrapper.py

InstallInterceptor — runs in place of the real package manager.
───────────────────────────────────────────────────────────────
The shell profile defines `npm`, `pnpm`, `yarn` and `bun` as functions that
call `installguard wrap <manager> "$@"`. This module is what that resolves
to: it decides whether to scan, asks RiskDecisionEngine about every package
spec on the command line, and then hands control to the real executable.

How it works
────────────
  1. INSTALLGUARD_DISABLED set        → run the real command untouched.
  2. CommandDetector classifies argv  → non-install commands pass through
                                        with inherited stdio, no scanning.
  3. Install with package specs       → decide() per spec, in argument
                                        order. The first Blocked verdict
                                        exits 1; the real manager never runs.
     Install without specs            → lockfile notice, always permitted.
  4. Runtime monitoring (Pro)         → NODE_OPTIONS=--require "<monitor.js>"
                                        plus device id and threat endpoint.
  5. Real executable                  → first match on PATH outside the
                                        guard's own bin/ directory, else a
                                        shell lookup via HostPlatform.
  6. Exit with the child's exit code (1 when none is available).

Limitations
───────────
  • Lockfile installs are not batch-scanned. The lockfile's presence is
    reported and the install proceeds.
  • The guard only sees invocations that go through the shell wrappers;
    absolute paths to npm bypass it.
"""

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence

import console_ui as ui
from config_store import ConfigStore, get_bin_dir
from host_platform import HostPlatform, current_platform
from security_engine.checker import RiskDecisionEngine

from .command_detector import CommandDetector, DetectedCommand, lockfile_for
from .runtime_monitor import RuntimeMonitorController

logger = logging.getLogger(__name__)

DISABLED_ENV = "INSTALLGUARD_DISABLED"
MONITOR_DISABLED_ENV = "INSTALLGUARD_MONITOR_DISABLED"

BLOCKED_EXIT_CODE = 1


def _same_dir(a: str, b: Path) -> bool:
    try:
        return Path(a).expanduser().resolve() == b.expanduser().resolve()
    except OSError:
        return False


def resolve_real_executable(
    manager: str,
    path_env: Optional[str] = None,
    skip_dir: Optional[Path] = None,
) -> Optional[str]:
    """
    Locate `manager` on PATH, ignoring `skip_dir` (the guard's own shims).

    Returns:
        Absolute path of the first match, or None.
    """
    if path_env is None:
        path_env = os.environ.get("PATH", "")
    for entry in path_env.split(os.pathsep):
        if not entry:
            continue
        if skip_dir is not None and _same_dir(entry, skip_dir):
            logger.debug("Skipping wrapper directory on PATH: %s", entry)
            continue
        found = shutil.which(manager, path=entry)
        if found:
            return found
    return None


class InstallInterceptor:
    """
    Args:
        config   : ConfigStore (plan, monitoring flag, device id, API URL).
        engine   : RiskDecisionEngine consulted for every package spec.
        detector : CommandDetector used to classify argv.
        monitor  : RuntimeMonitorController owning the monitor.js hook.
        platform : HostPlatform supplying the shell fallback command.
        runner   : Callable with the `subprocess.run` signature used to
                   launch the real package manager.
        environ  : Environment mapping read for the disable switches and
                   copied for the child. Defaults to os.environ.
        cwd      : Directory searched for lockfiles. Defaults to the
                   process working directory.
    """

    def __init__(
        self,
        config: ConfigStore,
        engine: Optional[RiskDecisionEngine] = None,
        detector: Optional[CommandDetector] = None,
        monitor: Optional[RuntimeMonitorController] = None,
        platform: Optional[HostPlatform] = None,
        runner: Optional[Callable[..., subprocess.CompletedProcess]] = None,
        environ: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
        verbose: bool = False,
    ) -> None:
        self._config = config
        self._engine = engine or RiskDecisionEngine(config, verbose=verbose)
        self._detector = detector or CommandDetector()
        self._monitor = monitor or RuntimeMonitorController(config)
        self._platform = platform or current_platform()
        self._runner = runner or subprocess.run
        self._environ = environ if environ is not None else os.environ
        self._cwd = Path(cwd) if cwd is not None else None

    # ── Public API ────────────────────────────────────────────────────────────

    def run(self, manager: str, argv: Sequence[str]) -> None:
        """Process entry point: never returns, exits with the child's code."""
        sys.exit(self.execute(manager, argv))

    def execute(self, manager: str, argv: Sequence[str]) -> int:
        """
        Scan (when appropriate) and run the real package manager.

        Returns:
            The exit code to terminate with: the child's exit code, or
            BLOCKED_EXIT_CODE when the user declined a dangerous package.
        """
        args = list(argv)

        if DISABLED_ENV in self._environ:
            logger.info("%s set — running %s without scanning", DISABLED_ENV, manager)
            return self._run_real(manager, args, monitoring=False)

        command = self._detector.classify(manager, args)
        if not command.is_install:
            return self._run_real(manager, args, monitoring=False)

        if command.is_lockfile_install:
            self._check_lockfile(command)
        elif not self._scan_packages(command):
            return BLOCKED_EXIT_CODE

        return self._run_real(manager, args, monitoring=self.should_use_monitoring())

    def should_use_monitoring(self) -> bool:
        if MONITOR_DISABLED_ENV in self._environ:
            return False
        if not self._config.is_pro():
            return False
        if not self._monitor.is_enabled():
            return False
        if not self._monitor.script_exists():
            logger.info("Monitoring enabled but %s is missing", self._monitor.script_path)
            return False
        return True

    def build_command(self, manager: str, args: List[str]) -> List[str]:
        real = resolve_real_executable(
            manager,
            path_env=self._environ.get("PATH", ""),
            skip_dir=get_bin_dir(),
        )
        if real is not None:
            return [real] + args
        logger.info("%s not found on PATH — falling back to shell lookup", manager)
        return self._platform.fallback_command(manager) + args

    def monitoring_env(self) -> dict:
        """Child environment with the runtime hook injected."""
        env = dict(self._environ)
        node_options = f'--require "{self._monitor.script_path}"'
        existing = env.get("NODE_OPTIONS")
        if existing:
            node_options = f"{node_options} {existing}"
        env["NODE_OPTIONS"] = node_options
        env["INSTALLGUARD_DEVICE_ID"] = self._config.device_id
        env["INSTALLGUARD_API_URL"] = f"{self._config.api_url}/runtime/threat"
        return env

    # ── Private helpers ───────────────────────────────────────────────────────

    def _scan_packages(self, command: DetectedCommand) -> bool:
        """decide() every spec in order; False at the first Blocked one."""
        for spec in command.packages:
            decision = self._engine.decide(spec)
            if not decision.proceed:
                logger.warning(
                    "Install blocked | manager=%s package=%s", command.manager, spec,
                )
                return False
        return True

    def _check_lockfile(self, command: DetectedCommand) -> None:
        lockfile = lockfile_for(command.manager)
        if lockfile is None:
            return
        base = self._cwd if self._cwd is not None else Path.cwd()
        if (base / lockfile).is_file():
            ui.print_info(f"Scanning {lockfile}...")
            logger.info("Lockfile install via %s — not batch-scanned, allowing", lockfile)

    def _run_real(self, manager: str, args: List[str], monitoring: bool) -> int:
        cmd = self.build_command(manager, args)
        env = None
        if monitoring:
            ui.print_info("Runtime monitoring active for this install")
            env = self.monitoring_env()

        logger.debug("Exec real command: %s (monitoring=%s)", cmd, monitoring)
        try:
            result = self._runner(cmd, env=env)
        except OSError as exc:
            logger.error("Could not run %s: %s", cmd[0], exc)
            ui.print_error(f"Could not run {manager}: {exc}")
            return 1

        code = getattr(result, "returncode", None)
        if not isinstance(code, int) or code < 0:
            return 1
        return code
