"""
tests/test_api_client.py

Unit tests for RiskScoringClient and response decoding.
requests.get / requests.post are patched — no network access.
"""

import os
import sys
import unittest
from unittest.mock import MagicMock, patch

import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from security_engine.api_client import (
    REQUEST_TIMEOUT,
    ModuleMissing,
    ModuleUnavailable,
    ProRequired,
    RiskScoringClient,
    ScoringServiceError,
    ServiceUnavailable,
)
from security_engine.base import BehaviorReport, NetworkConnection, RiskLevel, SensitiveAccess


def _config(api_key=None):
    config = MagicMock()
    config.api_url = "https://api.test"
    config.device_id = "linux_abc"
    config.api_key = api_key
    return config


def _response(json_body=None, status=200, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.text = text
    resp.json.return_value = json_body
    if resp.ok:
        resp.raise_for_status.return_value = None
    else:
        resp.raise_for_status.side_effect = requests.HTTPError(f"HTTP {status}")
    return resp


class TestScan(unittest.TestCase):

    @patch("security_engine.api_client.requests.get")
    def test_scan_sends_device_and_key(self, mock_get):
        mock_get.return_value = _response({"riskLevel": "safe", "message": "ok"})
        RiskScoringClient(_config(api_key="k1")).scan("lodash@4.17.21")

        url = mock_get.call_args[0][0]
        kwargs = mock_get.call_args[1]
        self.assertEqual(url, "https://api.test/scan")
        self.assertEqual(
            kwargs["params"],
            {"package": "lodash@4.17.21", "device": "linux_abc", "key": "k1"},
        )
        self.assertEqual(kwargs["timeout"], REQUEST_TIMEOUT)

    @patch("security_engine.api_client.requests.get")
    def test_scan_omits_key_when_unset(self, mock_get):
        mock_get.return_value = _response({"riskLevel": "safe"})
        RiskScoringClient(_config()).scan("lodash")
        self.assertNotIn("key", mock_get.call_args[1]["params"])

    @patch("security_engine.api_client.requests.get")
    def test_scan_decodes_full_outcome(self, mock_get):
        mock_get.return_value = _response({
            "package": "axios",
            "version": "1.6.0",
            "riskLevel": "warning",
            "message": "new maintainer",
            "scanned": True,
            "sandboxCached": True,
            "sandboxScore": 72,
            "sandboxRiskLevel": "dangerous",
            "sandboxFlags": [{"detail": "reads ~/.npmrc"}, {"detail": "curl | sh"}],
            "previousVersion": "1.5.1",
            "anomalyReasons": ["new install script"],
        })
        outcome = RiskScoringClient(_config()).scan("axios")

        self.assertEqual(outcome.package, "axios")
        self.assertEqual(outcome.version, "1.6.0")
        self.assertIs(outcome.risk_level, RiskLevel.WARNING)
        self.assertTrue(outcome.scanned)
        self.assertTrue(outcome.sandbox.cached)
        self.assertEqual(outcome.sandbox.score, 72)
        self.assertIs(outcome.sandbox.risk_level, RiskLevel.DANGEROUS)
        self.assertEqual([f.detail for f in outcome.sandbox.flags], ["reads ~/.npmrc", "curl | sh"])
        self.assertEqual(outcome.previous_version, "1.5.1")
        self.assertEqual(outcome.anomaly_reasons, ["new install script"])

    @patch("security_engine.api_client.requests.get")
    def test_scan_defaults_for_sparse_response(self, mock_get):
        mock_get.return_value = _response({})
        outcome = RiskScoringClient(_config()).scan("left-pad")
        self.assertEqual(outcome.package, "left-pad")
        self.assertEqual(outcome.version, "latest")
        self.assertIs(outcome.risk_level, RiskLevel.UNKNOWN)
        self.assertEqual(outcome.message, "No details")
        self.assertFalse(outcome.scanned)
        self.assertIsNone(outcome.sandbox)
        self.assertEqual(outcome.anomaly_reasons, [])

    @patch("security_engine.api_client.requests.get")
    def test_unrecognised_risk_level_is_unknown(self, mock_get):
        mock_get.return_value = _response({"riskLevel": "catastrophic"})
        outcome = RiskScoringClient(_config()).scan("x")
        self.assertIs(outcome.risk_level, RiskLevel.UNKNOWN)

    @patch("security_engine.api_client.requests.get")
    def test_transport_error_is_service_unavailable(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(ServiceUnavailable):
            RiskScoringClient(_config()).scan("x")

    @patch("security_engine.api_client.requests.get")
    def test_bad_json_is_service_unavailable(self, mock_get):
        resp = _response()
        resp.json.side_effect = ValueError("no json")
        mock_get.return_value = resp
        with self.assertRaises(ServiceUnavailable):
            RiskScoringClient(_config()).scan("x")

    @patch("security_engine.api_client.requests.get")
    def test_non_2xx_is_service_unavailable(self, mock_get):
        mock_get.return_value = _response({"error": "x"}, status=500)
        with self.assertRaises(ScoringServiceError):
            RiskScoringClient(_config()).scan("x")


class TestProStatus(unittest.TestCase):

    @patch("security_engine.api_client.requests.get")
    def test_pro_status(self, mock_get):
        mock_get.return_value = _response({"isPro": True, "plan": "enterprise"})
        status = RiskScoringClient(_config()).pro_status()
        self.assertTrue(status.is_pro)
        self.assertEqual(status.plan, "enterprise")
        self.assertEqual(mock_get.call_args[0][0], "https://api.test/pro/status")

    @patch("security_engine.api_client.requests.get")
    def test_pro_status_free(self, mock_get):
        mock_get.return_value = _response({"isPro": False})
        status = RiskScoringClient(_config()).pro_status()
        self.assertFalse(status.is_pro)
        self.assertIsNone(status.plan)

    @patch("security_engine.api_client.requests.get")
    def test_pro_status_plan_normalised_to_one_line(self, mock_get):
        mock_get.return_value = _response({"isPro": True, "plan": " team\nplus "})
        self.assertEqual(RiskScoringClient(_config()).pro_status().plan, "team plus")

        mock_get.return_value = _response({"isPro": True, "plan": "   "})
        self.assertIsNone(RiskScoringClient(_config()).pro_status().plan)


class TestAnalyzeSandbox(unittest.TestCase):

    @patch("security_engine.api_client.requests.post")
    def test_analyze_posts_behavior_payload(self, mock_post):
        mock_post.return_value = _response({"score": 40, "riskLevel": "warning", "flags": [{"detail": "d"}]})
        report = BehaviorReport()
        report.files_read.update({"/b", "/a"})
        report.network_connections.append(NetworkConnection(ip="1.2.3.4", port=443))
        report.sensitive_access.append(SensitiveAccess(kind="file", path="/home/u/.npmrc"))
        report.exit_code = 124

        verdict = RiskScoringClient(_config(api_key="k")).analyze_sandbox(
            "evil", "1.0.0", report, device_id="linux_abc",
        )

        self.assertEqual(mock_post.call_args[0][0], "https://api.test/sandbox/analyze")
        kwargs = mock_post.call_args[1]
        self.assertEqual(kwargs["params"], {"key": "k"})
        body = kwargs["json"]
        self.assertEqual(body["package"], "evil")
        self.assertEqual(body["version"], "1.0.0")
        self.assertEqual(body["source"], "local")
        self.assertEqual(body["deviceId"], "linux_abc")
        behavior = body["behavior"]
        self.assertEqual(behavior["filesRead"], ["/a", "/b"])
        self.assertEqual(behavior["filesWritten"], [])
        self.assertEqual(behavior["envVarsAccessed"], [])
        self.assertEqual(behavior["networkConnections"], [{"host": None, "ip": "1.2.3.4", "port": 443}])
        self.assertEqual(behavior["sensitiveAccess"], [{"type": "file", "path": "/home/u/.npmrc"}])
        self.assertEqual(behavior["exitCode"], 124)

        self.assertEqual(verdict.score, 40)
        self.assertIs(verdict.risk_level, RiskLevel.WARNING)
        self.assertEqual(len(verdict.flags), 1)

    @patch("security_engine.api_client.requests.post")
    def test_analyze_defaults(self, mock_post):
        mock_post.return_value = _response({})
        verdict = RiskScoringClient(_config()).analyze_sandbox("p", "1", BehaviorReport(), "d")
        self.assertEqual(verdict.score, 0)
        self.assertIs(verdict.risk_level, RiskLevel.SAFE)
        self.assertEqual(verdict.flags, [])

    @patch("security_engine.api_client.requests.post")
    def test_analyze_timeout_is_service_unavailable(self, mock_post):
        mock_post.side_effect = requests.Timeout("slow")
        with self.assertRaises(ServiceUnavailable):
            RiskScoringClient(_config()).analyze_sandbox("p", "1", BehaviorReport(), "d")


class TestDownloadModule(unittest.TestCase):

    @patch("security_engine.api_client.requests.get")
    def test_download_returns_text(self, mock_get):
        mock_get.return_value = _response(text="module.exports = {}")
        body = RiskScoringClient(_config()).download_module("monitor.js")
        self.assertEqual(body, "module.exports = {}")
        self.assertEqual(mock_get.call_args[0][0], "https://api.test/pro/module/monitor.js")

    @patch("security_engine.api_client.requests.get")
    def test_download_status_mapping(self, mock_get):
        client = RiskScoringClient(_config())
        for status, exc_type in ((403, ProRequired), (404, ModuleMissing), (500, ModuleUnavailable)):
            mock_get.return_value = _response(status=status)
            with self.assertRaises(exc_type) as ctx:
                client.download_module("monitor.js")
            self.assertEqual(ctx.exception.status_code, status)

    def test_error_hierarchy(self):
        self.assertTrue(issubclass(ProRequired, ModuleUnavailable))
        self.assertTrue(issubclass(ModuleMissing, ModuleUnavailable))
        self.assertTrue(issubclass(ModuleUnavailable, ScoringServiceError))
        self.assertTrue(issubclass(ServiceUnavailable, ScoringServiceError))


if __name__ == "__main__":
    unittest.main()
