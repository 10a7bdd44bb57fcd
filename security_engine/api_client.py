"""
security_engine/api_client.py

RiskScoringClient — HTTP boundary to the InstallGuard scoring service.
──────────────────────────────────────────────────────────────────────
Four stateless calls, each bounded by a fixed timeout and never retried:

    GET  {api}/scan?package=<spec>&device=<id>[&key=<key>]
    GET  {api}/pro/status?device=<id>[&key=<key>]
    POST {api}/sandbox/analyze[?key=<key>]
    GET  {api}/pro/module/<name>?device=<id>[&key=<key>]

Failure handling:
    Every transport error, non-2xx status or undecodable body surfaces as a
    ScoringServiceError subclass. The client itself never decides policy —
    RiskDecisionEngine fails open on ServiceUnavailable, and the runtime
    monitor controller maps ModuleUnavailable to user messages.
"""

import logging
from typing import Optional

import requests

from .base import BehaviorReport, ProStatus, SandboxVerdict, ScanOutcome

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 15  # seconds per HTTP request


class ScoringServiceError(Exception):
    """Base class for every failure talking to the scoring service."""


class ServiceUnavailable(ScoringServiceError):
    """Transport failure, non-2xx status or an unparseable response body."""


class ModuleUnavailable(ScoringServiceError):
    """A Pro module download was refused or failed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProRequired(ModuleUnavailable):
    """HTTP 403 on module download."""


class ModuleMissing(ModuleUnavailable):
    """HTTP 404 on module download."""


class RiskScoringClient:
    """
    Args:
        config  : ConfigStore supplying api_url, device_id and api_key.
                  Values are read per request so a `sync` or `login` in
                  the same process is picked up immediately.
        timeout : HTTP timeout in seconds.
    """

    def __init__(self, config, timeout: int = REQUEST_TIMEOUT) -> None:
        self._config = config
        self._timeout = timeout

    # ── Public API ────────────────────────────────────────────────────────────

    def scan(self, package_spec: str) -> ScanOutcome:
        data = self._get_json("scan", {"package": package_spec})
        return ScanOutcome.from_response(data, requested=package_spec)

    def pro_status(self) -> ProStatus:
        data = self._get_json("pro/status", {})
        plan = data.get("plan")
        # Stored verbatim in the config file, so collapse it to one line.
        plan = " ".join(plan.split()) if isinstance(plan, str) else ""
        return ProStatus(
            is_pro=bool(data.get("isPro", False)),
            plan=plan or None,
        )

    def analyze_sandbox(
        self,
        package: str,
        version: str,
        report: BehaviorReport,
        device_id: str,
        source: str = "local",
    ) -> SandboxVerdict:
        url = f"{self._config.api_url}/sandbox/analyze"
        params = {}
        api_key = self._config.api_key
        if api_key:
            params["key"] = api_key

        body = {
            "package": package,
            "version": version,
            "behavior": report.to_payload(),
            "source": source,
            "deviceId": device_id,
        }
        logger.debug("POST %s package=%s version=%s", url, package, version)

        try:
            resp = requests.post(url, params=params, json=body, timeout=self._timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise ServiceUnavailable(f"sandbox/analyze failed: {exc}") from exc

        if not isinstance(data, dict):
            raise ServiceUnavailable("sandbox/analyze returned a non-object body")
        return SandboxVerdict.from_analyze_response(data)

    def download_module(self, name: str) -> str:
        """
        Fetch a Pro module's source text.

        Raises:
            ProRequired       : HTTP 403.
            ModuleMissing     : HTTP 404.
            ModuleUnavailable : Any other non-2xx status.
            ServiceUnavailable: Transport failure.
        """
        url = f"{self._config.api_url}/pro/module/{name}"
        try:
            resp = requests.get(url, params=self._auth_params(), timeout=self._timeout)
        except requests.RequestException as exc:
            raise ServiceUnavailable(f"module download failed: {exc}") from exc

        if resp.status_code == 403:
            raise ProRequired("Pro subscription required", status_code=403)
        if resp.status_code == 404:
            raise ModuleMissing("Module not found", status_code=404)
        if not resp.ok:
            raise ModuleUnavailable(
                f"Download failed: HTTP {resp.status_code}", status_code=resp.status_code
            )
        return resp.text

    # ── Private helpers ───────────────────────────────────────────────────────

    def _auth_params(self) -> dict:
        params = {"device": self._config.device_id}
        api_key = self._config.api_key
        if api_key:
            params["key"] = api_key
        return params

    def _get_json(self, endpoint: str, params: dict) -> dict:
        url = f"{self._config.api_url}/{endpoint}"
        query = dict(params)
        query.update(self._auth_params())
        logger.debug("GET %s %s", url, {k: v for k, v in query.items() if k != "key"})

        try:
            resp = requests.get(url, params=query, timeout=self._timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise ServiceUnavailable(f"{endpoint} failed: {exc}") from exc

        if not isinstance(data, dict):
            raise ServiceUnavailable(f"{endpoint} returned a non-object body")
        return data
