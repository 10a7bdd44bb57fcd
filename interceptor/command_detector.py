"""
interceptor/command_detector.py

CommandDetector — package-manager argv classifier.
──────────────────────────────────────────────────
The shell wrappers call `installguard wrap <manager> <args...>` for every
npm / pnpm / yarn / bun invocation. This module decides whether that
invocation installs anything and, if so, which package specs it names.

Supported package managers:
    npm    install | i | add
    pnpm   install | i | add
    bun    install | i | add
    yarn   add | install | (bare `yarn`)

Anything else (`npm run build`, `yarn test`, an unknown manager) is a
passthrough and never reaches the scoring service.

Design notes:
    • Only argv[0] decides install-ness; flags before the subcommand are not
      interpreted.
    • Package extraction skips flags and path-like tokens (`./lib`, `/abs`),
      so local installs are not scanned.
    • An install-like command with no package specs is a lockfile install;
      `lockfile_for()` names the file its manager would read.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from security_engine.package_spec import is_package_token

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Manager registry
# ─────────────────────────────────────────────────────────────────────────────

_INSTALL_SUBCOMMANDS: Dict[str, frozenset] = {
    "npm":  frozenset({"install", "i", "add"}),
    "pnpm": frozenset({"install", "i", "add"}),
    "bun":  frozenset({"install", "i", "add"}),
    # A bare `yarn` installs from yarn.lock.
    "yarn": frozenset({"add", "install", ""}),
}

SUPPORTED_MANAGERS = tuple(_INSTALL_SUBCOMMANDS)

# bun's lockfile is binary and is not listed.
_LOCKFILES: Dict[str, str] = {
    "npm":  "package-lock.json",
    "pnpm": "pnpm-lock.yaml",
    "yarn": "yarn.lock",
}


# ─────────────────────────────────────────────────────────────────────────────
# Data structures
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class DetectedCommand:
    """
    One classified package-manager invocation.

    Attributes:
        manager    : Package manager name as invoked (e.g. "npm").
        subcommand : argv[0], or "" when the manager was run bare.
        is_install : True when the invocation installs packages.
        packages   : Package specs named on the command line, in argument
                     order. Empty for passthrough and lockfile installs.
        args       : The full argument vector, unmodified.
    """
    manager: str
    subcommand: str
    is_install: bool
    packages: List[str] = field(default_factory=list)
    args: List[str] = field(default_factory=list)

    @property
    def is_lockfile_install(self) -> bool:
        return self.is_install and not self.packages


def lockfile_for(manager: str) -> Optional[str]:
    return _LOCKFILES.get(manager)


class CommandDetector:
    """
    Classifies package-manager argument vectors.

    Stateless; one instance can serve any number of `classify()` calls.
    """

    def classify(self, manager: str, argv: Sequence[str]) -> DetectedCommand:
        """
        Decide whether `manager argv...` is an install and extract its specs.

        Args:
            manager : Package manager name (npm, pnpm, yarn, bun, ...).
            argv    : Arguments that follow the manager name.

        Returns:
            A DetectedCommand. Unknown managers are never install-like.
        """
        args = list(argv)
        subcommand = args[0] if args else ""
        install_words = _INSTALL_SUBCOMMANDS.get(manager)
        is_install = install_words is not None and subcommand in install_words

        packages: List[str] = []
        if is_install:
            packages = self.extract_packages(args[1:])

        logger.debug(
            "Classified | manager=%s sub=%r install=%s packages=%s",
            manager, subcommand, is_install, packages,
        )
        return DetectedCommand(
            manager=manager,
            subcommand=subcommand,
            is_install=is_install,
            packages=packages,
            args=args,
        )

    @staticmethod
    def extract_packages(tokens: Sequence[str]) -> List[str]:
        """Package specs in argument order, flags and paths removed."""
        return [token for token in tokens if is_package_token(token)]
