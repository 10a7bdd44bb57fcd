"""
security_engine/static_analysis.py — zero-execution source pattern scan.

Walks the dependency tree produced by a sandboxed install and greps every
JavaScript/TypeScript source for five behaviours an install-time payload
typically needs:

    env_access      reading process.env
    sensitive_path  literals naming credential stores (.ssh, .aws, .npmrc)
    network         outbound request idioms
    process_spawn   child_process / exec / spawn
    dynamic_eval    eval() / new Function()

Nothing found here is executed. Findings land in the same BehaviorReport the
syscall trace feeds, so the server scores both kinds of evidence together.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from .base import BehaviorReport, NetworkConnection, ProcessSpawned, SensitiveAccess

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SOURCE_EXTENSIONS = (".js", ".ts", ".mjs", ".cjs")
MAX_SOURCE_BYTES = 1_000_000  # 1 MB scan ceiling per file (minified bundles)


@dataclass(frozen=True)
class Detector:
    key: str
    pattern: re.Pattern
    description: str


DETECTORS: list[Detector] = [
    Detector(
        "env_access",
        re.compile(r"process\.env\b"),
        "process.env access",
    ),
    Detector(
        "sensitive_path",
        re.compile(r"\.ssh\b|\.aws\b|\.npmrc\b"),
        "Sensitive paths",
    ),
    Detector(
        "network",
        re.compile(r"\bhttps?\.(?:request|get)\s*\(|\bfetch\s*\(|\baxios\b"),
        "Network access",
    ),
    Detector(
        "process_spawn",
        re.compile(r"\bchild_process\b|\bexec(?:Sync)?\s*\(|\bspawn(?:Sync)?\s*\("),
        "Process spawning",
    ),
    Detector(
        "dynamic_eval",
        re.compile(r"\beval\s*\(|\bnew\s+Function\s*\("),
        "Dynamic code execution",
    ),
]


def iter_source_files(root: Path) -> Iterator[Path]:
    """Yield every JS/TS source under *root*. Symlinked dirs are not followed."""
    for dirpath, _dirnames, filenames in os.walk(root, followlinks=False):
        for filename in filenames:
            if filename.lower().endswith(SOURCE_EXTENSIONS):
                path = Path(dirpath) / filename
                if not path.is_symlink():
                    yield path


def match_detectors(text: str) -> list[Detector]:
    """Return the detectors whose pattern occurs in *text*, in DETECTORS order."""
    return [d for d in DETECTORS if d.pattern.search(text)]


def record_finding(report: BehaviorReport, detector: Detector) -> None:
    """
    Fold one detector hit into the report.

    Env-access hits are deduplicated by description; every other detector
    appends one entry per file it matched in.
    """
    if detector.key == "env_access":
        report.env_vars_accessed.add(detector.description)
    elif detector.key in ("sensitive_path", "dynamic_eval"):
        report.sensitive_access.append(
            SensitiveAccess(kind="pattern", path=detector.description)
        )
    elif detector.key == "network":
        report.network_connections.append(NetworkConnection(host="dynamic"))
    elif detector.key == "process_spawn":
        report.processes_spawned.append(ProcessSpawned(executable="child_process"))


def analyze_dependency_tree(sandbox_dir: Path, report: BehaviorReport) -> int:
    """
    Scan `<sandbox_dir>/node_modules` into *report*.

    Returns the number of source files inspected. A missing node_modules
    (install failed before writing anything) is not an error.
    """
    node_modules = sandbox_dir / "node_modules"
    if not node_modules.is_dir():
        logger.debug("No node_modules under %s — static pass skipped", sandbox_dir)
        return 0

    scanned = 0
    for path in iter_source_files(node_modules):
        try:
            with path.open("rb") as fh:
                raw = fh.read(MAX_SOURCE_BYTES)
        except OSError as exc:
            logger.debug("Skipping unreadable source %s: %s", path, exc)
            continue

        scanned += 1
        text = raw.decode("utf-8", errors="replace")
        for detector in match_detectors(text):
            record_finding(report, detector)

    logger.info("Static pass inspected %d source files under %s", scanned, node_modules)
    return scanned
