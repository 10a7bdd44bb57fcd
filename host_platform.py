"""
host_platform.py

HostPlatform — one capability object per operating system.
──────────────────────────────────────────────────────────
Everything that differs between Linux, macOS and Windows lives behind this
interface so the rest of InstallGuard never branches on `sys.platform`:

  • which tracing facility (if any) can observe a trial install,
  • how that trial install is launched and which parser reads its trace,
  • how a URL is opened in the user's browser,
  • which shell profile hosts the package-manager wrapper functions.

`current_platform()` selects the implementation once per process.

Adding a platform means subclassing HostPlatform and registering it in
`detect_platform()`; the sandbox pipeline itself does not change.
"""

import logging
import os
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

# Syscalls strace records during a trial install.
_STRACE_FILTER = "trace=open,openat,connect,execve"

# Extra grace period after SIGTERM before `timeout` escalates to SIGKILL.
_KILL_AFTER_SECONDS = 5


@dataclass
class InstallCommand:
    """
    How to launch one sandboxed `npm install`.

    Attributes:
        argv            : Full argument vector, including any tracer and
                          time-limit wrapper.
        tracer          : Name of the tracing backend ("strace", "dtruss"),
                          or None for an untraced install (static
                          analysis only).
        trace_to_stderr : True when the tracer writes to stderr instead of
                          a file named on its command line (dtruss).
        external_timeout: True when `argv` is already wrapped in an external
                          time limiter.
    """
    argv: List[str]
    tracer: Optional[str] = None
    trace_to_stderr: bool = False
    external_timeout: bool = False


def _npm_install_args(pkg_spec: str) -> List[str]:
    return ["npm", "install", pkg_spec, "--ignore-scripts=false"]


class HostPlatform(ABC):
    """Per-OS capability interface."""

    name: str = "unknown"
    device_prefix: str = "unknown"

    @abstractmethod
    def trace_available(self) -> bool:
        """True when a syscall/file tracer can observe a trial install."""
        ...

    def sandbox_available(self) -> bool:
        """True when the sandbox can run at all (tracer or static fallback)."""
        return self.trace_available()

    @abstractmethod
    def install_command(self, pkg_spec: str, trace_log: Path, timeout: int) -> InstallCommand:
        ...

    def sandbox_tip(self) -> Optional[str]:
        """Hint shown when the sandbox is unavailable."""
        return None

    @abstractmethod
    def url_opener(self, url: str) -> Optional[List[str]]:
        ...

    @abstractmethod
    def profile_path(self) -> Path:
        ...

    def fallback_command(self, manager: str) -> List[str]:
        """Shell lookup used when the real executable is not found on PATH."""
        return ["sh", "-c", f'command {manager} "$@"', "--"]

    def open_url(self, url: str) -> bool:
        argv = self.url_opener(url)
        if argv is None:
            logger.warning("No URL opener for platform %s", self.name)
            return False
        try:
            subprocess.Popen(argv, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as exc:
            logger.warning("Could not open %s: %s", url, exc)
            return False
        return True


class LinuxPlatform(HostPlatform):
    name = "Linux"
    device_prefix = "linux"

    def trace_available(self) -> bool:
        return shutil.which("strace") is not None

    def install_command(self, pkg_spec: str, trace_log: Path, timeout: int) -> InstallCommand:
        if not self.trace_available():
            return InstallCommand(argv=_npm_install_args(pkg_spec))

        argv = [
            "strace", "-f",
            "-e", _STRACE_FILTER,
            "-o", str(trace_log),
        ] + _npm_install_args(pkg_spec)

        external = shutil.which("timeout") is not None
        if external:
            argv = ["timeout", f"--kill-after={_KILL_AFTER_SECONDS}", f"{timeout}s"] + argv

        return InstallCommand(argv=argv, tracer="strace", external_timeout=external)

    def sandbox_tip(self) -> Optional[str]:
        return "Install strace: sudo apt install strace"

    def url_opener(self, url: str) -> Optional[List[str]]:
        return ["xdg-open", url]

    def profile_path(self) -> Path:
        shell = os.path.basename(os.environ.get("SHELL", ""))
        if shell == "zsh":
            return Path.home() / ".zshrc"
        return Path.home() / ".bashrc"


class MacOSPlatform(HostPlatform):
    """
    dtruss needs root (and SIP relaxed), so most users get an untraced
    install plus the static pass. `sandbox_available` still reports True
    whenever a tracer binary exists on the host.
    """

    name = "macOS"
    device_prefix = "mac"

    def trace_available(self) -> bool:
        return os.geteuid() == 0 and shutil.which("dtruss") is not None

    def sandbox_available(self) -> bool:
        return shutil.which("dtruss") is not None or shutil.which("fs_usage") is not None

    def install_command(self, pkg_spec: str, trace_log: Path, timeout: int) -> InstallCommand:
        if self.trace_available():
            return InstallCommand(
                argv=["dtruss", "-f"] + _npm_install_args(pkg_spec),
                tracer="dtruss",
                trace_to_stderr=True,
            )
        return InstallCommand(argv=_npm_install_args(pkg_spec))

    def url_opener(self, url: str) -> Optional[List[str]]:
        return ["open", url]

    def profile_path(self) -> Path:
        return Path.home() / ".zshrc"


class WindowsPlatform(HostPlatform):
    """No tracer; every run is an untraced install plus static analysis."""

    name = "Windows"
    device_prefix = "win"

    def trace_available(self) -> bool:
        return False

    def sandbox_available(self) -> bool:
        return True

    def install_command(self, pkg_spec: str, trace_log: Path, timeout: int) -> InstallCommand:
        return InstallCommand(argv=["cmd", "/c"] + _npm_install_args(pkg_spec))

    def fallback_command(self, manager: str) -> List[str]:
        return ["cmd", "/c", manager]

    def url_opener(self, url: str) -> Optional[List[str]]:
        return ["cmd", "/c", "start", "", url]

    def profile_path(self) -> Path:
        return Path.home() / "Documents" / "PowerShell" / "Microsoft.PowerShell_profile.ps1"


class UnsupportedPlatform(HostPlatform):
    def trace_available(self) -> bool:
        return False

    def sandbox_available(self) -> bool:
        return False

    def install_command(self, pkg_spec: str, trace_log: Path, timeout: int) -> InstallCommand:
        return InstallCommand(argv=_npm_install_args(pkg_spec))

    def url_opener(self, url: str) -> Optional[List[str]]:
        return None

    def profile_path(self) -> Path:
        return Path.home() / ".profile"


def detect_platform(sys_platform: Optional[str] = None) -> HostPlatform:
    """Map a `sys.platform` string to its HostPlatform implementation."""
    value = sys_platform if sys_platform is not None else sys.platform
    if value.startswith("linux"):
        return LinuxPlatform()
    if value == "darwin":
        return MacOSPlatform()
    if value in ("win32", "cygwin"):
        return WindowsPlatform()
    return UnsupportedPlatform()


_current: Optional[HostPlatform] = None


def current_platform() -> HostPlatform:
    global _current
    if _current is None:
        _current = detect_platform()
        logger.debug("Host platform selected: %s", _current.name)
    return _current
