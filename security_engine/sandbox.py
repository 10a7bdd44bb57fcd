"""
security_engine/sandbox.py

SandboxCollector — evidence-gathering trial install.
────────────────────────────────────────────────────
Before a package reaches the user's project, install it once into a
throwaway directory and watch what it does:

  1. Create `<tmp>/installguard-sandbox-<pid>` holding a minimal private
     package.json so npm treats it as an isolated project.
  2. Run `npm install <spec> --ignore-scripts=false` — under the host's
     syscall tracer when one is usable (strace on Linux, dtruss as root on
     macOS), bounded by a hard wall-clock limit.
  3. Feed the trace, line by line, through the backend's TraceParser into a
     BehaviorReport (file opens, credential-store access, connects, execs).
  4. Run the static source-pattern pass over the resulting node_modules.
  5. Record the install's exit code.
  6. Delete the sandbox directory — on every path out of collect().

The report is handed to the scoring service and then dropped; nothing from
the sandbox is persisted.

Timeouts
────────
On Linux the traced install is wrapped in coreutils `timeout`, so a hung or
malicious install is killed together with the tracer. An in-process
timeout (limit + grace) backs this up on every platform. The install runs
in its own process group, and the backstop kills the whole group so no
grandchild keeps writing into the sandbox while it is removed. Either
way the partial trace that exists is parsed and collection continues.
"""

import json
import logging
import os
import shutil
import signal
import subprocess
import tempfile
from pathlib import Path
from typing import Optional

from host_platform import HostPlatform, current_platform

from .base import BehaviorReport, NetworkConnection, ProcessSpawned, SensitiveAccess
from .static_analysis import analyze_dependency_tree
from .trace_parsers import TraceParser, parser_for

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30          # seconds for the whole trial install
_BACKSTOP_GRACE = 10          # extra seconds before the in-process kill
TIMEOUT_EXIT_CODE = 124       # same code coreutils `timeout` uses
TIMEOUT_ENV = "INSTALLGUARD_SANDBOX_TIMEOUT"

# Path fragments that identify credential stores. A trial install has no
# business opening any of these.
SENSITIVE_PATH_MARKERS = (
    ".ssh",
    ".aws",
    ".npmrc",
    ".gnupg",
    ".netrc",
    ".git-credentials",
    ".docker/config.json",
    ".kube/config",
)

_SANDBOX_MANIFEST = {
    "name": "installguard-sandbox-test",
    "version": "1.0.0",
    "private": True,
}


def sandbox_dir_for(pid: Optional[int] = None) -> Path:
    """Working directory for this process's sandbox run."""
    return Path(tempfile.gettempdir()) / f"installguard-sandbox-{pid or os.getpid()}"


def package_spec(package: str, version: Optional[str]) -> str:
    if not version or version == "latest":
        return package
    return f"{package}@{version}"


def is_sensitive_path(path: str) -> bool:
    return any(marker in path for marker in SENSITIVE_PATH_MARKERS)


def timeout_from_env() -> int:
    """INSTALLGUARD_SANDBOX_TIMEOUT in seconds; malformed values fall back to the default."""
    raw = os.getenv(TIMEOUT_ENV)
    if raw is None:
        return DEFAULT_TIMEOUT
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a whole number of seconds", TIMEOUT_ENV, raw)
        return DEFAULT_TIMEOUT
    if value <= 0:
        logger.warning("Ignoring %s=%r: must be positive", TIMEOUT_ENV, raw)
        return DEFAULT_TIMEOUT
    return value


def _session_kwargs() -> dict:
    """Popen options that give the install its own process group."""
    if os.name == "posix":
        return {"start_new_session": True}
    return {"creationflags": getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)}


def kill_process_tree(proc: subprocess.Popen) -> None:
    """Kill *proc* together with everything it spawned (tracer, npm, scripts)."""
    try:
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            subprocess.run(
                ["taskkill", "/T", "/F", "/PID", str(proc.pid)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
    except OSError as exc:
        logger.debug("Group kill of pid %s failed: %s", proc.pid, exc)
    proc.kill()


class SandboxCollector:
    """
    Args:
        platform : HostPlatform capability object. Defaults to the one
                   selected for this process.
        timeout  : Wall-clock limit for the trial install, in seconds.
                   INSTALLGUARD_SANDBOX_TIMEOUT overrides the default.
    """

    def __init__(
        self,
        platform: Optional[HostPlatform] = None,
        timeout: Optional[int] = None,
    ) -> None:
        self._platform = platform or current_platform()
        if timeout is None:
            timeout = timeout_from_env()
        self._timeout = timeout

    @property
    def platform(self) -> HostPlatform:
        return self._platform

    def is_available(self) -> bool:
        return self._platform.sandbox_available()

    def collect(self, package: str, version: str = "latest") -> Optional[BehaviorReport]:
        """
        Run one trial install of `package@version` and report what it did.

        Returns:
            A BehaviorReport, or None when the sandbox directory could not
            be prepared. Install failures and timeouts still yield a report.
        """
        sandbox_dir = sandbox_dir_for()
        spec = package_spec(package, version)
        logger.info("Sandbox collect: spec=%s dir=%s", spec, sandbox_dir)

        try:
            try:
                sandbox_dir.mkdir(parents=True, exist_ok=True)
                (sandbox_dir / "package.json").write_text(
                    json.dumps(_SANDBOX_MANIFEST), encoding="utf-8"
                )
            except OSError as exc:
                logger.error("Could not prepare sandbox dir %s: %s", sandbox_dir, exc)
                return None

            return self._collect_in(sandbox_dir, spec)
        finally:
            shutil.rmtree(sandbox_dir, ignore_errors=True)
            logger.debug("Sandbox dir removed: %s", sandbox_dir)

    # ── Private helpers ───────────────────────────────────────────────────────

    def _collect_in(self, sandbox_dir: Path, spec: str) -> BehaviorReport:
        trace_log = sandbox_dir / "trace.log"
        command = self._platform.install_command(spec, trace_log, self._timeout)
        report = BehaviorReport()

        report.exit_code = self._run_install(
            command.argv, sandbox_dir, trace_log if command.trace_to_stderr else None,
        )

        if command.tracer is not None:
            self._apply_trace(parser_for(command.tracer), trace_log, report)

        analyze_dependency_tree(sandbox_dir, report)

        logger.info(
            "Sandbox done | spec=%s exit=%d files=%d conns=%d procs=%d sensitive=%d",
            spec, report.exit_code, len(report.files_read),
            len(report.network_connections), len(report.processes_spawned),
            len(report.sensitive_access),
        )
        return report

    def _run_install(self, argv: list, cwd: Path, stderr_log: Optional[Path]) -> int:
        """Run the install; return its exit code (1 on launch failure, 124 on timeout)."""
        stderr_target = None
        try:
            try:
                if stderr_log is not None:
                    stderr_target = stderr_log.open("w", encoding="utf-8")
                proc = subprocess.Popen(
                    argv,
                    cwd=str(cwd),
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=stderr_target if stderr_target is not None else subprocess.DEVNULL,
                    **_session_kwargs(),
                )
            except OSError as exc:
                logger.warning("Sandbox install could not start (%s): %s", argv[0], exc)
                return 1

            try:
                return proc.wait(timeout=self._timeout + _BACKSTOP_GRACE)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Sandbox install exceeded %ds — killing it and using partial evidence",
                    self._timeout,
                )
                kill_process_tree(proc)
                proc.wait()
                return TIMEOUT_EXIT_CODE
        finally:
            if stderr_target is not None:
                stderr_target.close()

    @staticmethod
    def _apply_trace(parser: TraceParser, trace_log: Path, report: BehaviorReport) -> None:
        """Fold a trace file into *report*. Unreadable traces are skipped."""
        try:
            with trace_log.open("r", encoding="utf-8", errors="replace") as fh:
                for record in parser.parse(fh):
                    if record.kind == "open" and record.path:
                        report.files_read.add(record.path)
                        if record.write:
                            report.files_written.add(record.path)
                        if is_sensitive_path(record.path):
                            report.sensitive_access.append(
                                SensitiveAccess(kind="file", path=record.path)
                            )
                    elif record.kind == "connect":
                        report.network_connections.append(
                            NetworkConnection(ip=record.ip, port=record.port)
                        )
                    elif record.kind == "exec" and record.executable:
                        report.processes_spawned.append(
                            ProcessSpawned(executable=record.executable, args=record.args)
                        )
        except OSError as exc:
            logger.warning("Trace %s unreadable (%s) — static evidence only", trace_log, exc)
