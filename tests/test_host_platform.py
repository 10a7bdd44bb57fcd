"""
tests/test_host_platform.py

Unit tests for the per-OS HostPlatform capability objects.
shutil.which / os.geteuid / subprocess.Popen are patched, so the results do
not depend on the machine running the tests.
"""

import os
import sys
import unittest
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from host_platform import (
    LinuxPlatform,
    MacOSPlatform,
    UnsupportedPlatform,
    WindowsPlatform,
    detect_platform,
)


def _which_only(*names):
    return lambda name, *a, **kw: f"/usr/bin/{name}" if name in names else None


class TestDetectPlatform(unittest.TestCase):

    def test_mapping(self):
        self.assertIsInstance(detect_platform("linux"), LinuxPlatform)
        self.assertIsInstance(detect_platform("darwin"), MacOSPlatform)
        self.assertIsInstance(detect_platform("win32"), WindowsPlatform)
        self.assertIsInstance(detect_platform("sunos5"), UnsupportedPlatform)

    def test_device_prefixes(self):
        self.assertEqual(detect_platform("linux").device_prefix, "linux")
        self.assertEqual(detect_platform("darwin").device_prefix, "mac")
        self.assertEqual(detect_platform("win32").device_prefix, "win")
        self.assertEqual(detect_platform("sunos5").device_prefix, "unknown")


class TestLinuxPlatform(unittest.TestCase):

    @patch("host_platform.shutil.which", side_effect=_which_only("strace", "timeout"))
    def test_traced_install_wrapped_in_timeout(self, _which):
        command = LinuxPlatform().install_command("evil@1.0.0", Path("/tmp/sb/trace.log"), 30)
        self.assertEqual(command.argv[:3], ["timeout", "--kill-after=5", "30s"])
        self.assertIn("strace", command.argv)
        self.assertIn("/tmp/sb/trace.log", command.argv)
        self.assertEqual(command.argv[-4:], ["npm", "install", "evil@1.0.0", "--ignore-scripts=false"])
        self.assertEqual(command.tracer, "strace")
        self.assertTrue(command.external_timeout)

    @patch("host_platform.shutil.which", side_effect=_which_only("strace"))
    def test_traced_install_without_timeout_binary(self, _which):
        command = LinuxPlatform().install_command("x", Path("/t"), 30)
        self.assertEqual(command.argv[0], "strace")
        self.assertFalse(command.external_timeout)

    @patch("host_platform.shutil.which", side_effect=_which_only())
    def test_unavailable_without_strace(self, _which):
        platform = LinuxPlatform()
        self.assertFalse(platform.sandbox_available())
        self.assertIsNotNone(platform.sandbox_tip())
        self.assertIsNone(platform.install_command("x", Path("/t"), 30).tracer)


class TestMacOSPlatform(unittest.TestCase):

    @patch("host_platform.os.geteuid", return_value=501, create=True)
    @patch("host_platform.shutil.which", side_effect=_which_only("dtruss"))
    def test_non_root_gets_untraced_install(self, _which, _euid):
        platform = MacOSPlatform()
        self.assertTrue(platform.sandbox_available())
        command = platform.install_command("x", Path("/t"), 30)
        self.assertIsNone(command.tracer)
        self.assertEqual(command.argv[0], "npm")

    @patch("host_platform.os.geteuid", return_value=0, create=True)
    @patch("host_platform.shutil.which", side_effect=_which_only("dtruss"))
    def test_root_traces_with_dtruss(self, _which, _euid):
        command = MacOSPlatform().install_command("x", Path("/t"), 30)
        self.assertEqual(command.argv[:2], ["dtruss", "-f"])
        self.assertEqual(command.tracer, "dtruss")
        self.assertTrue(command.trace_to_stderr)

    @patch("host_platform.shutil.which", side_effect=_which_only("fs_usage"))
    def test_fs_usage_alone_counts_as_available(self, _which):
        self.assertTrue(MacOSPlatform().sandbox_available())


class TestWindowsAndUnsupported(unittest.TestCase):

    def test_windows_always_available_untraced(self):
        platform = WindowsPlatform()
        self.assertTrue(platform.sandbox_available())
        command = platform.install_command("x", Path("/t"), 30)
        self.assertEqual(command.argv[:2], ["cmd", "/c"])
        self.assertIsNone(command.tracer)

    def test_unsupported_never_available(self):
        platform = UnsupportedPlatform()
        self.assertFalse(platform.sandbox_available())
        self.assertFalse(platform.open_url("https://x"))

    def test_fallback_commands(self):
        self.assertEqual(WindowsPlatform().fallback_command("npm"), ["cmd", "/c", "npm"])
        self.assertEqual(
            LinuxPlatform().fallback_command("npm"),
            ["sh", "-c", 'command npm "$@"', "--"],
        )


class TestOpenUrl(unittest.TestCase):

    @patch("host_platform.subprocess.Popen")
    def test_open_url_launches_opener(self, mock_popen):
        self.assertTrue(LinuxPlatform().open_url("https://installguard.dev"))
        self.assertEqual(mock_popen.call_args[0][0], ["xdg-open", "https://installguard.dev"])

    @patch("host_platform.subprocess.Popen", side_effect=FileNotFoundError("xdg-open"))
    def test_open_url_failure_returns_false(self, _popen):
        self.assertFalse(LinuxPlatform().open_url("https://installguard.dev"))


if __name__ == "__main__":
    unittest.main()
