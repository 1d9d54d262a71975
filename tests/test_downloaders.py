"""Tests for the external download tool wrappers."""

import subprocess
from pathlib import Path

import pytest

from pubmed_gateway import DownloadError
from pubmed_gateway.download import (
    CurlDownloader,
    PowerShellDownloader,
    WgetDownloader,
    detect_platform,
    select_downloader,
    system_check,
)


def which_only(*installed):
    return lambda name: f"/usr/bin/{name}" if name in installed else None


class FakeRunner:
    """Records argument vectors and returns a canned process result."""

    def __init__(self, returncode=0, stderr="", error=None):
        self.returncode = returncode
        self.stderr = stderr
        self.error = error
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append((cmd, kwargs))
        if self.error is not None:
            raise self.error
        return subprocess.CompletedProcess(cmd, self.returncode, stdout="", stderr=self.stderr)


class TestPlatformSelection:
    """Test tool choice per platform with fallback."""

    @pytest.mark.parametrize("platform_name,installed,expected", [
        ("windows", ("powershell", "curl"), "powershell"),
        ("windows", ("curl",), "curl"),
        ("macos", ("curl", "wget"), "curl"),
        ("macos", ("wget",), "wget"),
        ("linux", ("wget", "curl"), "wget"),
        ("linux", ("curl",), "curl"),
    ])
    def test_primary_then_fallback(self, platform_name, installed, expected):
        downloader = select_downloader(platform_name, which=which_only(*installed))

        assert downloader.name == expected

    def test_no_tool_available(self):
        """Test a clear error when nothing is installed."""
        with pytest.raises(DownloadError, match="No download tool"):
            select_downloader("linux", which=which_only())

    def test_detect_platform(self):
        assert detect_platform("win32") == "windows"
        assert detect_platform("darwin") == "macos"
        assert detect_platform("linux") == "linux"

    def test_system_check(self):
        """Test the report lists tools and the selected one."""
        report = system_check("macos", which=which_only("wget"))

        assert report['recommended_tool'] == "curl"
        assert report['selected_tool'] == "wget"
        assert report['tools'] == {"curl": False, "wget": True, "powershell": False}
        assert report['download_ready'] is True


class TestCommands:
    """Test argument vectors."""

    def test_curl_command(self):
        cmd = CurlDownloader(connect_timeout=30, max_bytes=1000).build_command(
            "https://x/p.pdf", Path("/tmp/1.pdf"), 120, "UA")

        assert cmd[0] == "curl"
        assert "--location" in cmd and "--fail" in cmd
        assert cmd[cmd.index("--max-time") + 1] == "120"
        assert cmd[cmd.index("--max-filesize") + 1] == "1000"
        assert cmd[cmd.index("--output") + 1] == "/tmp/1.pdf"
        assert cmd[-1] == "https://x/p.pdf"

    def test_wget_command(self):
        cmd = WgetDownloader(connect_timeout=5).build_command("https://x/p.pdf", Path("/tmp/1.pdf"), 60, "UA")

        assert "--timeout=60" in cmd
        assert "--connect-timeout=5" in cmd
        assert "--user-agent=UA" in cmd
        assert cmd[-1] == "https://x/p.pdf"

    def test_powershell_quotes_arguments(self):
        """Test single quotes inside values are escaped."""
        cmd = PowerShellDownloader().build_command("https://x/it's.pdf", Path("out.pdf"), 60, "UA")

        assert cmd[:2] == ["powershell", "-NoProfile"]
        assert "-Uri 'https://x/it''s.pdf'" in cmd[-1]
        assert "-TimeoutSec 60" in cmd[-1]


class TestFetch:
    """Test process outcome mapping."""

    def test_success(self, temp_dir: Path):
        runner = FakeRunner()
        outcome = CurlDownloader(runner=runner).fetch("https://x", temp_dir / "a", 60, "UA")

        assert outcome.ok
        assert outcome.tool == "curl"
        assert runner.calls[0][1]['timeout'] > 60

    def test_nonzero_exit_keeps_stderr(self, temp_dir: Path):
        """Test the tool's stderr becomes the diagnostic."""
        runner = FakeRunner(returncode=22, stderr="curl: (22) The requested URL returned error: 403\n")

        outcome = CurlDownloader(runner=runner).fetch("https://x", temp_dir / "a", 60, "UA")

        assert not outcome.ok
        assert outcome.returncode == 22
        assert outcome.diagnostic == "curl: (22) The requested URL returned error: 403"

    def test_nonzero_exit_without_output(self, temp_dir: Path):
        outcome = WgetDownloader(runner=FakeRunner(returncode=8)).fetch("https://x", temp_dir / "a", 60, "UA")

        assert outcome.diagnostic == "wget exited with code 8"

    def test_curl_size_cap_exit(self, temp_dir: Path):
        """Test curl's file-size-exceeded exit is flagged as too large."""
        runner = FakeRunner(returncode=63, stderr="curl: (63) Maximum file size exceeded\n")

        outcome = CurlDownloader(max_bytes=1024, runner=runner).fetch("https://x", temp_dir / "a", 60, "UA")

        assert not outcome.ok
        assert outcome.too_large

    def test_other_exits_not_too_large(self, temp_dir: Path):
        curl = CurlDownloader(runner=FakeRunner(returncode=22))
        wget = WgetDownloader(runner=FakeRunner(returncode=63))

        assert not curl.fetch("https://x", temp_dir / "a", 60, "UA").too_large
        assert not wget.fetch("https://x", temp_dir / "a", 60, "UA").too_large

    def test_process_timeout(self, temp_dir: Path):
        runner = FakeRunner(error=subprocess.TimeoutExpired(["curl"], 75))

        outcome = CurlDownloader(runner=runner).fetch("https://x", temp_dir / "a", 60, "UA")

        assert not outcome.ok
        assert "timed out" in outcome.diagnostic

    def test_missing_executable(self, temp_dir: Path):
        runner = FakeRunner(error=FileNotFoundError("wget"))

        outcome = WgetDownloader(runner=runner).fetch("https://x", temp_dir / "a", 60, "UA")

        assert not outcome.ok
        assert "not found" in outcome.diagnostic
