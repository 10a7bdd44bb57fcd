"""
config_store.py — InstallGuard's flat key/value configuration file.

Layout (one `key=value` per line, rewritten wholesale on every change):

    device_id=linux_5d0c6f0e-...
    api_key=
    plan=free
    api_url=https://api.installguard.dev
    trusted=lodash,left-pad
    runtime_monitoring=false

The file lives in `$INSTALLGUARD_HOME` (default `~/.installguard`) next to
the runtime monitor hook (`monitor.js`) and its threat log (`monitor.log`).

Every mutation goes through a load → mutate → save transaction. That
narrows, but does not remove, the window in which two concurrent
InstallGuard processes can overwrite each other's change; there is no
cross-process lock and the last writer wins.

Read/write failures are logged and never raised: callers simply see the
defaults (plan=free, no trusted packages).
"""

from __future__ import annotations

import contextlib
import logging
import os
import uuid
from pathlib import Path
from typing import Iterator, Optional

from host_platform import current_platform

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "https://api.installguard.dev"
PRO_PLANS = frozenset({"pro", "enterprise"})

KEY_DEVICE_ID = "device_id"
KEY_API_KEY = "api_key"
KEY_PLAN = "plan"
KEY_API_URL = "api_url"
KEY_TRUSTED = "trusted"
KEY_MONITORING = "runtime_monitoring"


def get_config_dir() -> Path:
    override = os.getenv("INSTALLGUARD_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".installguard"


def get_config_path() -> Path:
    return get_config_dir() / "config"


def get_bin_dir() -> Path:
    return get_config_dir() / "bin"


def generate_device_id(prefix: Optional[str] = None) -> str:
    """Return a fresh `<platform>_<uuid4>` device identifier."""
    if prefix is None:
        prefix = current_platform().device_prefix
    return f"{prefix}_{uuid.uuid4()}"


def _validate(key: str, value: str) -> None:
    if not key or "=" in key or "\n" in key or "\r" in key or key != key.strip():
        raise ValueError(f"invalid config key: {key!r}")
    if "\n" in value or "\r" in value:
        raise ValueError(f"config value for {key!r} must be a single line")
    # parse_config trims both sides of every line.
    if value != value.strip():
        raise ValueError(f"config value for {key!r} has surrounding whitespace")


def parse_config(text: str) -> dict[str, str]:
    """Parse `key=value` lines; blank and `=`-less lines are ignored."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if key:
            values[key] = value.strip()
    return values


def serialize_config(values: dict[str, str]) -> str:
    return "\n".join(f"{k}={v}" for k, v in values.items()) + "\n"


class ConfigTransaction:
    """
    In-memory snapshot of the config file. Obtained from
    `ConfigStore.transaction()`; saved once when the `with` block exits
    cleanly, discarded if it raises.
    """

    def __init__(self, values: dict[str, str]) -> None:
        self.values = values

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.values.get(key, default)

    def set(self, key: str, value: str) -> None:
        _validate(key, value)
        self.values[key] = value

    def trusted(self) -> list[str]:
        return _split_trusted(self.values.get(KEY_TRUSTED, ""))

    def set_trusted(self, names: list[str]) -> None:
        self.set(KEY_TRUSTED, ",".join(names))


def _split_trusted(raw: str) -> list[str]:
    seen: list[str] = []
    for name in raw.split(","):
        name = name.strip()
        if name and name not in seen:
            seen.append(name)
    return seen


class ConfigStore:
    """
    File-backed configuration.

    Args:
        path : Config file location. Defaults to `get_config_path()`,
               resolved at call time so tests can point INSTALLGUARD_HOME
               at a temporary directory.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path is not None else None

    @property
    def path(self) -> Path:
        return self._path if self._path is not None else get_config_path()

    @property
    def config_dir(self) -> Path:
        return self.path.parent

    # ── Raw persistence ───────────────────────────────────────────────────────

    def load(self) -> dict[str, str]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("Could not read config %s: %s — using defaults", self.path, exc)
            return {}
        return parse_config(text)

    def save(self, values: dict[str, str]) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(serialize_config(values), encoding="utf-8")
        except OSError as exc:
            logger.error("Could not write config %s: %s", self.path, exc)
            return False
        return True

    @contextlib.contextmanager
    def transaction(self) -> Iterator[ConfigTransaction]:
        txn = ConfigTransaction(self.load())
        yield txn
        self.save(txn.values)

    def init(self) -> None:
        """Create the config directory and a default file on first run."""
        if self.path.exists():
            return
        logger.info("Creating default config at %s", self.path)
        self.save({
            KEY_DEVICE_ID: generate_device_id(),
            KEY_API_KEY: "",
            KEY_PLAN: "free",
            KEY_API_URL: os.getenv("INSTALLGUARD_API_URL") or DEFAULT_API_URL,
            KEY_TRUSTED: "",
        })

    # ── Generic access ────────────────────────────────────────────────────────

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.load().get(key, default)

    def set(self, key: str, value: str) -> None:
        with self.transaction() as txn:
            txn.set(key, value)

    # ── Typed accessors ───────────────────────────────────────────────────────

    @property
    def device_id(self) -> str:
        device_id = self.get(KEY_DEVICE_ID)
        if not device_id:
            device_id = generate_device_id()
            self.set(KEY_DEVICE_ID, device_id)
        return device_id

    @property
    def api_key(self) -> Optional[str]:
        return self.get(KEY_API_KEY) or None

    @property
    def api_url(self) -> str:
        url = self.get(KEY_API_URL) or os.getenv("INSTALLGUARD_API_URL") or DEFAULT_API_URL
        return url.rstrip("/")

    @property
    def plan(self) -> str:
        return self.get(KEY_PLAN) or "free"

    def is_pro(self) -> bool:
        return self.plan in PRO_PLANS

    @property
    def monitoring_enabled(self) -> bool:
        return self.get(KEY_MONITORING) in ("true", "1")

    def set_monitoring_enabled(self, enabled: bool) -> None:
        self.set(KEY_MONITORING, "true" if enabled else "false")

    # ── Trust set ─────────────────────────────────────────────────────────────

    def trusted_list(self) -> list[str]:
        """Trusted package names in the order they were added."""
        return _split_trusted(self.get(KEY_TRUSTED, ""))

    def trusted_packages(self) -> set[str]:
        return set(self.trusted_list())

    def is_trusted(self, name: str) -> bool:
        return name.strip() in self.trusted_packages()

    def add_trusted(self, name: str) -> bool:
        """Add *name* to the trust set. Returns False when already present."""
        name = name.strip()
        if not name or "," in name:
            raise ValueError(f"invalid package name for trust set: {name!r}")
        with self.transaction() as txn:
            names = txn.trusted()
            if name in names:
                return False
            names.append(name)
            txn.set_trusted(names)
        return True

    def remove_trusted(self, name: str) -> bool:
        """Remove *name* from the trust set. Returns False when it was absent."""
        name = name.strip()
        with self.transaction() as txn:
            names = txn.trusted()
            if name not in names:
                return False
            txn.set_trusted([n for n in names if n != name])
        return True
