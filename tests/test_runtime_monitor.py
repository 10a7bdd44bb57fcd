"""
tests/test_runtime_monitor.py

Unit tests for RuntimeMonitorController and the threat log reader.
The config directory is a temporary directory; module downloads go through
a mocked RiskScoringClient.
"""

import io
import json
import os
import sys
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config_store import ConfigStore
from interceptor.runtime_monitor import (
    RuntimeMonitorController,
    ThreatLog,
    ThreatLogEntry,
    ThreatType,
)
from security_engine.api_client import ModuleMissing, ProRequired, ServiceUnavailable


def _record(pkg, threat="credential_access", blocked=False, **details):
    data = {"threatType": threat, "packageName": pkg, "blocked": blocked}
    if details:
        data["details"] = details
    return json.dumps(data)


class _MonitorCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.dir = Path(self._tmp.name)
        self.store = ConfigStore(self.dir / "config")
        self.client = MagicMock()
        self.client.download_module.return_value = "// monitor hook\n"
        self.monitor = RuntimeMonitorController(self.store, client=self.client)
        self.log_path = self.dir / "monitor.log"

    def _quiet(self, fn, *args):
        out = io.StringIO()
        with redirect_stdout(out):
            result = fn(*args)
        return result, out.getvalue()


# ─────────────────────────────────────────────────────────────────────────────
# Threat records
# ─────────────────────────────────────────────────────────────────────────────

class TestThreatLogEntry(unittest.TestCase):

    def test_parse_full_record(self):
        entry = ThreatLogEntry.from_json_line(
            _record("evil", "credential_exfil", True, path="/home/u/.npmrc", url="https://x")
        )
        self.assertIs(entry.threat_type, ThreatType.CREDENTIAL_EXFIL)
        self.assertEqual(entry.package_name, "evil")
        self.assertTrue(entry.blocked)
        self.assertEqual(entry.details.lines(), ["Path: /home/u/.npmrc", "URL: https://x"])
        self.assertEqual(entry.label, "Credential Exfiltration Attempt")

    def test_unknown_threat_type(self):
        entry = ThreatLogEntry.from_json_line(_record("p", "crypto_mining"))
        self.assertIs(entry.threat_type, ThreatType.UNKNOWN)
        self.assertEqual(entry.label, "crypto_mining")

    def test_malformed_lines(self):
        for line in ("", "   ", "{not json", "[1, 2]", '"string"'):
            self.assertIsNone(ThreatLogEntry.from_json_line(line), repr(line))

    def test_all_labels_defined(self):
        for threat in ThreatType:
            self.assertTrue(threat.label)


class TestThreatLog(_MonitorCase):

    def test_tail_returns_last_n_valid_records_in_order(self):
        lines = [_record(f"pkg{i}") for i in range(5)]
        lines.insert(2, "corrupted {")
        self.log_path.write_text("\n".join(lines) + "\n")

        log = ThreatLog(self.log_path)
        self.assertEqual(log.count(), 5)
        self.assertEqual([e.package_name for e in log.tail(3)], ["pkg2", "pkg3", "pkg4"])
        self.assertEqual(len(log.tail(50)), 5)
        self.assertEqual(log.tail(0), [])

    def test_missing_log(self):
        log = ThreatLog(self.log_path)
        self.assertFalse(log.exists())
        self.assertEqual(log.read(), [])
        self.assertEqual(log.size_bytes(), 0)

    def test_reading_never_modifies_file(self):
        content = _record("a") + "\n" + _record("b") + "\n"
        self.log_path.write_text(content)
        ThreatLog(self.log_path).tail(1)
        self.assertEqual(self.log_path.read_text(), content)


# ─────────────────────────────────────────────────────────────────────────────
# Controller
# ─────────────────────────────────────────────────────────────────────────────

class TestMonitorLifecycle(_MonitorCase):

    def test_enable_requires_pro(self):
        self.store.set("plan", "free")
        ok, output = self._quiet(self.monitor.enable)
        self.assertFalse(ok)
        self.assertIn("Pro feature", output)
        self.assertFalse(self.store.monitoring_enabled)
        self.client.download_module.assert_not_called()

    def test_enable_downloads_script_and_sets_flag(self):
        self.store.set("plan", "pro")
        ok, _ = self._quiet(self.monitor.enable)
        self.assertTrue(ok)
        self.assertTrue(self.store.monitoring_enabled)
        self.assertEqual((self.dir / "monitor.js").read_text(), "// monitor hook\n")
        self.client.download_module.assert_called_once_with("monitor.js")

    def test_enable_403_leaves_flag_unset(self):
        self.store.set("plan", "pro")
        self.client.download_module.side_effect = ProRequired("Pro subscription required", 403)
        ok, output = self._quiet(self.monitor.enable)
        self.assertFalse(ok)
        self.assertIn("Pro feature", output)
        self.assertFalse(self.store.monitoring_enabled)
        self.assertFalse(self.monitor.script_exists())

    def test_enable_other_failures_leave_flag_unset(self):
        self.store.set("plan", "pro")
        for error in (ModuleMissing("Module not found", 404), ServiceUnavailable("timeout")):
            self.client.download_module.side_effect = error
            ok, output = self._quiet(self.monitor.enable)
            self.assertFalse(ok)
            self.assertIn("Failed to download monitor", output)
            self.assertFalse(self.store.monitoring_enabled)

    def test_disable_keeps_script(self):
        self.store.set("plan", "pro")
        self._quiet(self.monitor.enable)
        self._quiet(self.monitor.disable)
        self.assertFalse(self.store.monitoring_enabled)
        self.assertTrue(self.monitor.script_exists())

    def test_toggle_flips_state(self):
        self.store.set("plan", "pro")
        state, _ = self._quiet(self.monitor.toggle)
        self.assertTrue(state)
        self.assertTrue(self.store.monitoring_enabled)
        state, _ = self._quiet(self.monitor.toggle)
        self.assertFalse(state)
        self.assertFalse(self.store.monitoring_enabled)

    def test_toggle_on_free_plan_stays_off(self):
        state, _ = self._quiet(self.monitor.toggle)
        self.assertFalse(state)
        self.assertFalse(self.store.monitoring_enabled)


class TestMonitorReporting(_MonitorCase):

    def test_status_reports_everything(self):
        self.store.set("plan", "pro")
        self._quiet(self.monitor.enable)
        self.log_path.write_text(_record("a") + "\nbad\n" + _record("b") + "\n")

        status, output = self._quiet(self.monitor.status)
        self.assertTrue(status.is_pro)
        self.assertTrue(status.script_installed)
        self.assertTrue(status.enabled)
        self.assertEqual(status.threat_count, 2)
        self.assertEqual(status.log_size_bytes, self.log_path.stat().st_size)
        self.assertIn("Total threats logged: 2", output)

    def test_status_on_free_plan(self):
        status, output = self._quiet(self.monitor.status)
        self.assertFalse(status.is_pro)
        self.assertFalse(status.enabled)
        self.assertIn("Pro subscription required", output)

    def test_show_threats_renders_records(self):
        self.log_path.write_text("\n".join([
            _record("evil", "credential_access", True, path="/home/u/.ssh/id_rsa"),
            _record("sketchy", "env_access", False, variable="NPM_TOKEN"),
        ]) + "\n")
        entries, output = self._quiet(self.monitor.show_threats, 10)
        self.assertEqual(len(entries), 2)
        self.assertIn("[BLOCKED] evil - Credential File Access", output)
        self.assertIn("Path: /home/u/.ssh/id_rsa", output)
        self.assertIn("[DETECTED] sketchy - Sensitive Env Var Access", output)
        self.assertIn("Env Var: NPM_TOKEN", output)

    def test_show_threats_empty(self):
        entries, output = self._quiet(self.monitor.show_threats, 10)
        self.assertEqual(entries, [])
        self.assertIn("No threats logged yet", output)

    def test_clear_log(self):
        self.log_path.write_text(_record("a") + "\n")
        ok, _ = self._quiet(self.monitor.clear_log)
        self.assertTrue(ok)
        self.assertFalse(self.log_path.exists())

    def test_clear_log_is_noop_when_absent(self):
        ok, _ = self._quiet(self.monitor.clear_log)
        self.assertTrue(ok)


if __name__ == "__main__":
    unittest.main()
