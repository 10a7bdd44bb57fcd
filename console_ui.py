"""
console_ui.py — coloured status lines for InstallGuard.

Every user-facing message goes through these helpers so the whole CLI
shares one look:

    [OK]  lodash@4.17.21
    [>]   Scanning left-pad...
    [!]   WARNING: some-pkg@1.0.0
    [X]   Installation cancelled
       |- detail line

Diagnostics for developers go through `logging`, never through here.
"""

from colorama import Fore, Style, init as colorama_init

colorama_init(autoreset=True)

_OK      = f"{Fore.GREEN}[OK]{Style.RESET_ALL}"
_INFO    = f"{Fore.CYAN}[>]{Style.RESET_ALL}"
_WARN    = f"{Fore.YELLOW}[!]{Style.RESET_ALL}"
_ERROR   = f"{Fore.RED}[X]{Style.RESET_ALL}"
_BLOCKED = f"{Fore.RED}{Style.BRIGHT}[X] BLOCKED:{Style.RESET_ALL}"
_DIM     = Style.DIM
_RESET   = Style.RESET_ALL


def print_ok(msg: str) -> None:
    print(f"  {_OK} {msg}")


def print_info(msg: str) -> None:
    print(f"  {_INFO} {msg}")


def print_warning(msg: str) -> None:
    print(f"  {_WARN} {msg}")


def print_error(msg: str) -> None:
    print(f"  {_ERROR} {msg}")


def print_blocked(msg: str) -> None:
    print(f"  {_BLOCKED} {msg}")


def print_detail(msg: str) -> None:
    print(f"     {_DIM}|- {msg}{_RESET}")


def print_branch(msg: str, colour: str = Fore.CYAN) -> None:
    """Tree line with a coloured branch marker (version comparisons, anomalies)."""
    print(f"     {colour}|-{_RESET} {msg}")


def print_dim(msg: str) -> None:
    print(f"  {_DIM}{msg}{_RESET}")


def print_section_header(title: str) -> None:
    print(f"  {Fore.CYAN}{Style.BRIGHT}{title}{_RESET}")
    print(f"  {Fore.CYAN}{'─' * len(title)}{_RESET}")


def print_pro_upsell() -> None:
    """Box shown after a scan that did not get the Pro analysis layers."""
    lines = [
        "+-------------------------------------------------+",
        "| PRO features not scanned:                       |",
        "|    * Version Anomaly Detection                  |",
        "|    * Script Analysis                            |",
        "|    * Behavioral Sandbox                         |",
        "|    * Quarantine Alert                           |",
        "|    Upgrade: installguard upgrade                |",
        "+-------------------------------------------------+",
    ]
    print()
    for line in lines:
        print_dim(line)
