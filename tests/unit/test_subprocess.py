"""Tests for subprocess wrapper with rich error context."""

import subprocess
from unittest.mock import Mock, patch

import pytest

from palletkit.core.subprocess import run_subprocess_with_context


def test_success_returns_completed_process() -> None:
    """Successful execution returns the CompletedProcess unchanged."""
    with patch("palletkit.core.subprocess.subprocess.run") as mock_run:
        mock_result = Mock(spec=subprocess.CompletedProcess)
        mock_result.returncode = 0
        mock_result.stdout = "abc\tHEAD\n"
        mock_run.return_value = mock_result

        result = run_subprocess_with_context(
            ["git", "ls-remote", "https://example.com/p.git", "HEAD"],
            operation_context="query git remote",
        )

        assert result == mock_result
        mock_run.assert_called_once_with(
            ["git", "ls-remote", "https://example.com/p.git", "HEAD"],
            cwd=None,
            capture_output=True,
            text=True,
            encoding="utf-8",
            check=True,
            timeout=None,
        )


def test_failure_includes_context_and_stderr() -> None:
    """A failed command is re-raised as RuntimeError with its stderr."""
    with patch("palletkit.core.subprocess.subprocess.run") as mock_run:
        original = subprocess.CalledProcessError(
            returncode=128,
            cmd=["git", "ls-remote", "bad"],
            stderr="fatal: 'bad' does not appear to be a git repository\n",
        )
        mock_run.side_effect = original

        with pytest.raises(RuntimeError) as exc_info:
            run_subprocess_with_context(["git", "ls-remote", "bad"], operation_context="query git remote bad")

        message = str(exc_info.value)
        assert "Failed to query git remote bad" in message
        assert "Command: git ls-remote bad" in message
        assert "Exit code: 128" in message
        assert "stderr: fatal: 'bad' does not appear to be a git repository" in message
        assert exc_info.value.__cause__ is original


def test_whitespace_stderr_is_omitted() -> None:
    with patch("palletkit.core.subprocess.subprocess.run") as mock_run:
        mock_run.side_effect = subprocess.CalledProcessError(returncode=1, cmd=["git"], stderr="  \n ")

        with pytest.raises(RuntimeError) as exc_info:
            run_subprocess_with_context(["git"], operation_context="run git")

        assert "stderr:" not in str(exc_info.value)


def test_missing_binary_raises_runtime_error() -> None:
    with patch("palletkit.core.subprocess.subprocess.run") as mock_run:
        mock_run.side_effect = FileNotFoundError("git")

        with pytest.raises(RuntimeError, match="Command not found while trying to query git remote: git"):
            run_subprocess_with_context(["git", "ls-remote"], operation_context="query git remote")


def test_timeout_and_kwargs_are_passed_through() -> None:
    with patch("palletkit.core.subprocess.subprocess.run") as mock_run:
        mock_run.return_value = Mock(spec=subprocess.CompletedProcess)

        run_subprocess_with_context(
            ["git", "ls-remote"],
            operation_context="query git remote",
            timeout=30,
            check=False,
            env={"GIT_TERMINAL_PROMPT": "0"},
        )

        call_kwargs = mock_run.call_args.kwargs
        assert call_kwargs["timeout"] == 30
        assert call_kwargs["check"] is False
        assert call_kwargs["env"] == {"GIT_TERMINAL_PROMPT": "0"}


def test_timeout_expired_propagates() -> None:
    with patch("palletkit.core.subprocess.subprocess.run") as mock_run:
        mock_run.side_effect = subprocess.TimeoutExpired(cmd=["git"], timeout=1)

        with pytest.raises(subprocess.TimeoutExpired):
            run_subprocess_with_context(["git"], operation_context="run git", timeout=1)
