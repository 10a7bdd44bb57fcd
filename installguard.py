#!/usr/bin/env python3
"""
installguard.py — InstallGuard entry point.
────────────────────────────────────────────
The shell profile routes npm / pnpm / yarn / bun through

    installguard wrap <manager> [args...]

so every install is scanned before the real package manager runs. The
remaining subcommands manage the local configuration and the Pro features.

Commands
────────
  status                 Plan, trust-set size, monitoring flag, device.
  scan PKG               Scan one package (shows error details).
  trust PKG / untrust PKG / trusted
                         Manage the packages that skip scanning.
  disable / enable       Print the shell command that pauses / resumes
                         protection (INSTALLGUARD_DISABLED).
  sync                   Refresh the plan from the server; re-download the
                         runtime monitor when monitoring is on.
  login / upgrade        Open the device-link / pricing page.
  uninstall              Remove ~/.installguard and print profile cleanup.
  wrap MANAGER ARGS...   Run a package manager through the guard.
  monitor {status,enable,disable,toggle,threats,clear}
                         Pro runtime monitoring.

Global Options
──────────────
  --log-level LEVEL      Python logging level. Defaults to WARNING.
  --verbose              Show transport errors when a scan fails open.
  --version              Print the InstallGuard version and exit.

Exit Codes
──────────
  0     Success.
  1     Installation cancelled by the user, or a command failed.
  130   Interrupted (Ctrl+C).
  Any other value from `wrap` is the real package manager's exit code.
"""

import argparse
import logging
import shutil
import sys
from typing import Optional, Sequence

from colorama import Fore, Style
from dotenv import find_dotenv, load_dotenv

import console_ui as ui
from config_store import ConfigStore
from host_platform import current_platform
from interceptor.install_wrapper import DISABLED_ENV, InstallInterceptor
from interceptor.runtime_monitor import DEFAULT_THREAT_COUNT, RuntimeMonitorController
from security_engine.api_client import RiskScoringClient, ScoringServiceError
from security_engine.checker import RiskDecisionEngine

__version__ = "1.0.0"

WEB_URL = "https://installguard.dev"
PROFILE_MARKER_START = "# === INSTALLGUARD START ==="
PROFILE_MARKER_END = "# === INSTALLGUARD END ==="

logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="installguard",
        description="InstallGuard — pre-install protection for npm packages.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the Python logging level. Default: WARNING.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Show error details when the scoring service is unreachable.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"InstallGuard {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    sub.add_parser("status", help="Show current status")

    scan = sub.add_parser("scan", help="Scan a package for threats")
    scan.add_argument("package")

    trust = sub.add_parser("trust", help="Add a package to the trusted list")
    trust.add_argument("package")

    untrust = sub.add_parser("untrust", help="Remove a package from the trusted list")
    untrust.add_argument("package")

    sub.add_parser("trusted", help="Show all trusted packages")
    sub.add_parser("disable", help="Temporarily disable protection")
    sub.add_parser("enable", help="Re-enable protection")
    sub.add_parser("sync", help="Sync Pro status from the server")
    sub.add_parser("login", help="Open the login page to link this device")
    sub.add_parser("upgrade", help="Open the pricing page")
    sub.add_parser("uninstall", help="Remove InstallGuard's local files")

    wrap = sub.add_parser("wrap", help="Run a package manager through InstallGuard")
    wrap.add_argument("manager", help="npm, pnpm, yarn or bun")
    wrap.add_argument("args", nargs=argparse.REMAINDER)

    monitor = sub.add_parser("monitor", help="Runtime monitoring (Pro)")
    actions = monitor.add_subparsers(dest="action", metavar="ACTION")
    actions.required = True
    actions.add_parser("status", help="Show runtime monitoring status")
    actions.add_parser("enable", help="Enable runtime monitoring for installs")
    actions.add_parser("disable", help="Disable runtime monitoring")
    actions.add_parser("toggle", help="Toggle runtime monitoring on/off")
    threats = actions.add_parser("threats", help="Show recent runtime threats")
    threats.add_argument(
        "-n", "--count", type=int, default=DEFAULT_THREAT_COUNT,
        help=f"Number of threats to show. Default: {DEFAULT_THREAT_COUNT}.",
    )
    actions.add_parser("clear", help="Clear the threat log")

    return parser


def configure_logging(level_str: str) -> None:
    """Set up structured logging to stderr."""
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level_str.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ─────────────────────────────────────────────────────────────────────────────
# Command handlers — each returns the process exit code
# ─────────────────────────────────────────────────────────────────────────────

def cmd_status(args: argparse.Namespace, store: ConfigStore) -> int:
    device_id = store.device_id
    short_id = f"{device_id[:20]}..." if len(device_id) > 20 else device_id
    monitoring = (
        f"{Fore.GREEN}ON{Style.RESET_ALL}" if store.monitoring_enabled
        else f"{Style.DIM}OFF{Style.RESET_ALL}"
    )

    print()
    print(f"  {Fore.GREEN}InstallGuard v{__version__}{Style.RESET_ALL}")
    ui.print_branch("Status: Active", Fore.GREEN)
    ui.print_branch(f"Plan: {store.plan}")
    ui.print_branch(f"Trusted packages: {len(store.trusted_packages())}")
    ui.print_branch(f"Runtime Monitoring: {monitoring} (installguard monitor toggle)")
    ui.print_branch(f"Device: {short_id}", Style.DIM)
    ui.print_branch(f"OS: {current_platform().name}", Style.DIM)
    print()
    return 0


def cmd_scan(args: argparse.Namespace, store: ConfigStore) -> int:
    engine = RiskDecisionEngine(store, verbose=True)
    decision = engine.decide(args.package)
    return 0 if decision.proceed else 1


def cmd_trust(args: argparse.Namespace, store: ConfigStore) -> int:
    try:
        added = store.add_trusted(args.package)
    except ValueError as exc:
        ui.print_error(str(exc))
        return 1
    if added:
        ui.print_ok(f"Added {args.package} to trusted packages")
    else:
        ui.print_warning(f"{args.package} is already trusted")
    return 0


def cmd_untrust(args: argparse.Namespace, store: ConfigStore) -> int:
    if store.remove_trusted(args.package):
        ui.print_ok(f"Removed {args.package} from trusted packages")
    else:
        ui.print_warning(f"{args.package} is not in trusted list")
    return 0


def cmd_trusted(args: argparse.Namespace, store: ConfigStore) -> int:
    names = store.trusted_list()
    if not names:
        ui.print_dim("No trusted packages")
        return 0
    print()
    print(f"  {Fore.GREEN}Trusted packages (skipped during scan):{Style.RESET_ALL}")
    for name in names:
        print(f"    {Fore.CYAN}- {name}{Style.RESET_ALL}")
    print()
    return 0


def cmd_disable(args: argparse.Namespace, store: ConfigStore) -> int:
    # A child process cannot change its parent shell's environment.
    ui.print_warning("To pause InstallGuard for this shell session run:")
    ui.print_dim(f"    export {DISABLED_ENV}=1")
    return 0


def cmd_enable(args: argparse.Namespace, store: ConfigStore) -> int:
    ui.print_ok("To resume InstallGuard in this shell session run:")
    ui.print_dim(f"    unset {DISABLED_ENV}")
    return 0


def cmd_sync(args: argparse.Namespace, store: ConfigStore) -> int:
    client = RiskScoringClient(store)
    print()
    ui.print_info("Checking Pro status...")
    try:
        status = client.pro_status()
    except ScoringServiceError as exc:
        logger.warning("pro/status failed: %s", exc)
        ui.print_warning("Could not check Pro status - API unreachable")
        if args.verbose:
            ui.print_detail(str(exc))
        print()
        return 1

    if status.is_pro:
        plan = status.plan or "pro"
        store.set("plan", plan)
        ui.print_ok(f"Pro status: Active ({plan})")
        monitor = RuntimeMonitorController(store, client)
        if monitor.is_enabled():
            ui.print_info("Updating runtime monitor...")
            monitor.download_script()
        ui.print_ok("Pro features: Enabled")
    else:
        store.set("plan", "free")
        ui.print_dim("[>] Pro status: Free")
    print()
    return 0


def cmd_login(args: argparse.Namespace, store: ConfigStore) -> int:
    url = f"{WEB_URL}/login?device={store.device_id}"
    ui.print_info("Opening browser for login...")
    if not current_platform().open_url(url):
        ui.print_detail(f"Open this URL manually: {url}")
    ui.print_detail("After login, run 'installguard sync' to activate Pro features")
    return 0


def cmd_upgrade(args: argparse.Namespace, store: ConfigStore) -> int:
    url = f"{WEB_URL}/pricing"
    ui.print_info("Opening pricing page...")
    if not current_platform().open_url(url):
        ui.print_detail(f"Open this URL manually: {url}")
    return 0


def cmd_uninstall(args: argparse.Namespace, store: ConfigStore) -> int:
    ui.print_warning("Uninstalling InstallGuard...")
    config_dir = store.config_dir
    if config_dir.exists():
        try:
            shutil.rmtree(config_dir)
        except OSError as exc:
            logger.error("Could not remove %s: %s", config_dir, exc)
            ui.print_error(f"Could not remove {config_dir}: {exc}")
            return 1

    print()
    ui.print_ok("InstallGuard files removed.")
    print()
    print(f"  {Fore.YELLOW}Note:{Style.RESET_ALL} To complete uninstallation:")
    print(f"  1. Edit {current_platform().profile_path()}")
    print(f"  2. Remove the lines between '{PROFILE_MARKER_START}' and '{PROFILE_MARKER_END}'")
    print("  3. Restart your terminal")
    print()
    return 0


def cmd_wrap(args: argparse.Namespace, store: ConfigStore) -> int:
    interceptor = InstallInterceptor(store, verbose=args.verbose)
    return interceptor.execute(args.manager, args.args)


def cmd_monitor(args: argparse.Namespace, store: ConfigStore) -> int:
    monitor = RuntimeMonitorController(store)
    action = args.action
    if action == "status":
        monitor.status()
        return 0
    if action == "enable":
        return 0 if monitor.enable() else 1
    if action == "disable":
        monitor.disable()
        return 0
    if action == "toggle":
        was_enabled = monitor.is_enabled()
        now_enabled = monitor.toggle()
        return 0 if now_enabled != was_enabled else 1
    if action == "threats":
        monitor.show_threats(args.count)
        return 0
    if action == "clear":
        return 0 if monitor.clear_log() else 1
    raise ValueError(f"unknown monitor action: {action}")


_HANDLERS = {
    "status": cmd_status,
    "scan": cmd_scan,
    "trust": cmd_trust,
    "untrust": cmd_untrust,
    "trusted": cmd_trusted,
    "disable": cmd_disable,
    "enable": cmd_enable,
    "sync": cmd_sync,
    "login": cmd_login,
    "upgrade": cmd_upgrade,
    "uninstall": cmd_uninstall,
    "wrap": cmd_wrap,
    "monitor": cmd_monitor,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    InstallGuard entry point.

    Returns the exit code to pass to the OS.
    """
    load_dotenv(find_dotenv(usecwd=True))

    parser = build_arg_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    logger.info("InstallGuard %s starting: command=%s", __version__, args.command)

    store = ConfigStore()
    store.init()

    try:
        exit_code = _HANDLERS[args.command](args, store)
    except KeyboardInterrupt:
        print()
        exit_code = 130  # 128 + SIGINT

    logger.info("InstallGuard exiting with code %d", exit_code)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
