#!/usr/bin/env python3
"""Unit tests for Config and remediation hints."""

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import ntm


class TestConfigFromEnv(unittest.TestCase):
    """Test Config.from_env."""

    def test_linux_defaults(self):
        config = ntm.Config.from_env({"HOME": "/home/u"}, system="Linux")
        self.assertEqual(config.projects_base, Path("/data/projects"))
        self.assertEqual(config.palette_path, Path("/home/u/.config/ntm/command_palette.md"))
        self.assertEqual(config.log_dir, Path("/home/u/.local/share/ntm-logs"))
        self.assertIsNone(config.tmux_socket)
        self.assertEqual(config.broadcast_delay, 0.0)
        self.assertEqual(config.agent_commands[ntm.Group.GEMINI], "gemini --yolo")

    def test_darwin_defaults(self):
        config = ntm.Config.from_env({"HOME": "/Users/u"}, system="Darwin")
        self.assertEqual(config.projects_base, Path("/Users/u/Developer"))
        self.assertEqual(config.platform, "Darwin")

    def test_overrides(self):
        env = {
            "HOME": "/home/u",
            "PROJECTS_BASE": "/srv/code",
            "NTM_PALETTE_CONFIG": "/etc/ntm.md",
            "XDG_DATA_HOME": "/var/data",
            "NTM_TMUX_SOCKET": "agents",
            "NTM_COD_CMD": "codex",
            "NTM_BROADCAST_DELAY": "1.5",
        }
        config = ntm.Config.from_env(env, system="Linux")
        self.assertEqual(config.projects_base, Path("/srv/code"))
        self.assertEqual(config.palette_path, Path("/etc/ntm.md"))
        self.assertEqual(config.log_dir, Path("/var/data/ntm-logs"))
        self.assertEqual(config.tmux_socket, "agents")
        self.assertEqual(config.agent_commands[ntm.Group.CODEX], "codex")
        self.assertIn("claude", config.agent_commands[ntm.Group.CLAUDE])
        self.assertEqual(config.broadcast_delay, 1.5)

    def test_log_dir_override(self):
        config = ntm.Config.from_env({"HOME": "/h", "NTM_LOG_DIR": "/tmp/ntm"}, system="Linux")
        self.assertEqual(config.log_dir, Path("/tmp/ntm"))

    def test_bad_delay(self):
        for value in ("soon", "-1"):
            with self.assertRaises(ntm.ConfigError):
                ntm.Config.from_env({"HOME": "/h", "NTM_BROADCAST_DELAY": value}, system="Linux")

    def test_launch_command_quotes_directory(self):
        config = ntm.Config.from_env({"HOME": "/h", "NTM_GMI_CMD": "gemini"}, system="Linux")
        cmd = config.launch_command("gmi", Path("/data/my project"))
        self.assertEqual(cmd, "cd '/data/my project' && gemini")

    def test_tmux_env_fills_locale(self):
        config = ntm.Config.from_env({"HOME": "/h", "PATH": "/bin"}, system="Linux")
        env = config.tmux_env()
        self.assertEqual(env["LANG"], ntm.DEFAULT_LOCALE)
        self.assertEqual(env["LC_ALL"], ntm.DEFAULT_LOCALE)
        self.assertEqual(env["PATH"], "/bin")

    def test_tmux_env_uses_environment_given_at_startup(self):
        config = ntm.Config.from_env({"HOME": "/h", "LANG": "de_DE.UTF-8"}, system="Linux")
        with patch.dict(os.environ, {"LANG": "xx", "NTM_LATE": "1"}):
            env = config.tmux_env()
        self.assertEqual(env["LANG"], "de_DE.UTF-8")
        self.assertEqual(env["LC_ALL"], "de_DE.UTF-8")
        self.assertNotIn("NTM_LATE", env)


class TestInstallHint(unittest.TestCase):
    """Test install_hint / ensure_tmux_available."""

    def test_darwin_with_brew(self):
        with patch("shutil.which", return_value="/opt/homebrew/bin/brew"):
            self.assertEqual(ntm.install_hint("tmux", "Darwin"), "install it with: brew install tmux")

    def test_linux_apt(self):
        with patch("shutil.which", side_effect=lambda name: "/usr/bin/apt-get" if name == "apt-get" else None):
            hint = ntm.install_hint("tmux", "Linux")
        self.assertIn("sudo apt-get install -y tmux", hint)

    def test_no_known_manager(self):
        with patch("shutil.which", return_value=None):
            hint = ntm.install_hint("tmux", "Linux")
        self.assertIn("package manager", hint)

    def test_missing_tmux_raises_with_hint(self):
        config = ntm.Config.from_env({"HOME": "/h"}, system="Linux")
        with patch("shutil.which", return_value=None):
            with self.assertRaises(ntm.CapabilityFailure) as ctx:
                ntm.ensure_tmux_available(config)
        self.assertEqual(str(ctx.exception), "tmux not found")
        self.assertIsNotNone(ctx.exception.hint)


class TestLogEvent(unittest.TestCase):
    """Test log_event."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = ntm.Config.from_env(
            {"HOME": self.temp_dir, "NTM_LOG_DIR": str(Path(self.temp_dir) / "logs")},
            system="Linux",
        )

    def test_appends_timestamped_lines(self):
        ntm.log_event(self.config, "demo", "SPAWN", "2x cc")
        ntm.log_event(self.config, "demo", "KILL")
        lines = (self.config.log_dir / "demo.log").read_text().splitlines()
        self.assertEqual(len(lines), 2)
        self.assertRegex(lines[0], r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2} \[SPAWN\] 2x cc$")
        self.assertIn("[KILL]", lines[1])


if __name__ == "__main__":
    unittest.main()
