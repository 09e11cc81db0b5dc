"""
Unit tests for common.py - editor selection, editor invocation and reporting.

Tests for:
- resolve_editor()
- run_editor()
- LogReporter
"""
import logging
import subprocess
import pytest
from unittest.mock import patch

from common import LogReporter, Report, resolve_editor, run_editor


class TestResolveEditor:
    """Tests for resolve_editor() function."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        monkeypatch.delenv("VISUAL", raising=False)
        monkeypatch.delenv("EDITOR", raising=False)

    def test_configured_wins(self, monkeypatch):
        """Test that a configured command beats the environment."""
        monkeypatch.setenv("VISUAL", "vim")

        assert resolve_editor("nano") == "nano"

    def test_visual_before_editor(self, monkeypatch):
        """Test that $VISUAL is preferred over $EDITOR."""
        monkeypatch.setenv("VISUAL", "vim")
        monkeypatch.setenv("EDITOR", "ed")

        assert resolve_editor() == "vim"

    def test_editor_env(self, monkeypatch):
        """Test the $EDITOR fallback."""
        monkeypatch.setenv("EDITOR", "ed")

        assert resolve_editor(None) == "ed"

    def test_default_vi(self):
        """Test the last resort."""
        assert resolve_editor("") == "vi"


class TestRunEditor:
    """Tests for run_editor() function."""

    @patch('subprocess.run')
    def test_command_arguments_and_file(self, mock_run, tmp_path):
        """Test that command arguments are split and the file goes last."""
        path = tmp_path / "msg"

        assert run_editor("vim -c 'set tw=72'", path) is True

        mock_run.assert_called_once_with(["vim", "-c", "set tw=72", str(path)], check=True)

    @patch('subprocess.run', side_effect=FileNotFoundError())
    def test_missing_editor(self, mock_run, tmp_path, caplog):
        """Test that an editor that cannot be started is reported."""
        with caplog.at_level(logging.ERROR):
            assert run_editor("no-such-editor", tmp_path / "msg") is False

        assert "not found" in caplog.text

    @patch('subprocess.run', side_effect=subprocess.CalledProcessError(1, ["vim"]))
    def test_failing_editor(self, mock_run, tmp_path, caplog):
        """Test that a non-zero exit status is reported."""
        with caplog.at_level(logging.ERROR):
            assert run_editor("vim", tmp_path / "msg") is False

        assert "failed" in caplog.text

    def test_real_process(self, tmp_path):
        """Test running an actual command on the file."""
        path = tmp_path / "msg"
        path.write_text("old\n")

        assert run_editor("sed -i s/old/new/", path) is True
        assert path.read_text() == "new\n"


class TestLogReporter:
    """Tests for LogReporter."""

    def test_error_is_logged_as_error(self, caplog):
        """Test that errors go to the error log level."""
        with caplog.at_level(logging.INFO):
            LogReporter()(Report.ERROR, "broken")

        assert caplog.records[-1].levelno == logging.ERROR
        assert caplog.records[-1].getMessage() == "broken"

    def test_status_is_logged_as_info(self, caplog):
        """Test that status messages go to the info log level."""
        with caplog.at_level(logging.INFO):
            LogReporter()(Report.STATUS, "Message not modified")

        assert caplog.records[-1].levelno == logging.INFO
