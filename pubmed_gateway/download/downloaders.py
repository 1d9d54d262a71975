"""
External download tools.

Full-text files are fetched by shelling out to a platform download tool
instead of streaming through requests: PowerShell's Invoke-WebRequest on
Windows, curl on macOS and wget on Linux, each with a fallback. All variants
share one contract:

    fetch(url, destination, timeout, user_agent) -> FetchOutcome
"""

import logging
import platform
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ..exceptions import DownloadError

logger = logging.getLogger(__name__)

# Extra time given to the process on top of the tool's own timeout
PROCESS_GRACE_SECONDS = 15


@dataclass
class FetchOutcome:
    """Result of running a download tool."""

    ok: bool
    returncode: Optional[int] = None
    diagnostic: str = ""
    tool: str = ""
    too_large: bool = False


class Downloader(ABC):
    """Base class for external download tools."""

    name: str = ""
    executable: str = ""
    # Exit codes meaning the tool stopped because of its size cap
    too_large_codes: Tuple[int, ...] = ()

    def __init__(
        self,
        connect_timeout: int = 30,
        max_bytes: Optional[int] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        """
        Args:
            connect_timeout: Seconds allowed to establish the connection
            max_bytes: Size cap passed to tools that support one
            runner: subprocess.run or a test double
            which: shutil.which or a test double
        """
        self.connect_timeout = connect_timeout
        self.max_bytes = max_bytes
        self._runner = runner
        self._which = which

    def is_available(self) -> bool:
        return self._which(self.executable) is not None

    @abstractmethod
    def build_command(self, url: str, destination: Path, timeout: int, user_agent: str) -> List[str]:
        """Argument vector for the tool."""
        pass

    def fetch(self, url: str, destination: Path, timeout: int, user_agent: str) -> FetchOutcome:
        """
        Download `url` to `destination`.

        Never raises for tool failures; they come back as ok=False with the
        tool's stderr (or a description of what went wrong) as diagnostic.
        """
        cmd = self.build_command(url, Path(destination), timeout, user_agent)
        logger.debug(f"Running {self.name}: {url}")

        try:
            result = self._runner(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout + PROCESS_GRACE_SECONDS,
            )
        except subprocess.TimeoutExpired:
            return FetchOutcome(False, None, f"{self.name} timed out after {timeout}s", self.name)
        except FileNotFoundError:
            return FetchOutcome(False, None, f"{self.executable} not found on PATH", self.name)
        except OSError as e:
            return FetchOutcome(False, None, f"Could not run {self.executable}: {e}", self.name)

        if result.returncode != 0:
            diagnostic = (result.stderr or result.stdout or "").strip()
            return FetchOutcome(
                False,
                result.returncode,
                diagnostic or f"{self.name} exited with code {result.returncode}",
                self.name,
                too_large=result.returncode in self.too_large_codes,
            )
        return FetchOutcome(True, 0, (result.stderr or "").strip(), self.name)

    def __repr__(self):
        return f"<{self.__class__.__name__}>"


class CurlDownloader(Downloader):
    name = "curl"
    executable = "curl"
    # CURLE_FILESIZE_EXCEEDED
    too_large_codes = (63,)

    def build_command(self, url: str, destination: Path, timeout: int, user_agent: str) -> List[str]:
        cmd = [
            self.executable,
            "--location",
            "--fail",
            "--silent",
            "--show-error",
            "--connect-timeout", str(self.connect_timeout),
            "--max-time", str(timeout),
            "--user-agent", user_agent,
            "--output", str(destination),
        ]
        if self.max_bytes:
            cmd += ["--max-filesize", str(self.max_bytes)]
        cmd.append(url)
        return cmd


class WgetDownloader(Downloader):
    name = "wget"
    executable = "wget"

    def build_command(self, url: str, destination: Path, timeout: int, user_agent: str) -> List[str]:
        return [
            self.executable,
            "--quiet",
            "--tries=1",
            f"--connect-timeout={self.connect_timeout}",
            f"--timeout={timeout}",
            f"--user-agent={user_agent}",
            "--output-document", str(destination),
            url,
        ]


def _ps_quote(value: str) -> str:
    """Single-quoted PowerShell string literal."""
    return "'" + str(value).replace("'", "''") + "'"


class PowerShellDownloader(Downloader):
    name = "powershell"
    executable = "powershell"

    def build_command(self, url: str, destination: Path, timeout: int, user_agent: str) -> List[str]:
        script = (
            "$ProgressPreference = 'SilentlyContinue'; "
            f"Invoke-WebRequest -Uri {_ps_quote(url)} -OutFile {_ps_quote(destination)} "
            f"-UserAgent {_ps_quote(user_agent)} -TimeoutSec {int(timeout)} -UseBasicParsing"
        )
        return [self.executable, "-NoProfile", "-NonInteractive", "-Command", script]


DOWNLOADERS: Dict[str, type] = {
    "curl": CurlDownloader,
    "wget": WgetDownloader,
    "powershell": PowerShellDownloader,
}

# Primary tool first, then the fallback
PLATFORM_TOOLS: Dict[str, Tuple[str, ...]] = {
    "windows": ("powershell", "curl"),
    "macos": ("curl", "wget"),
    "linux": ("wget", "curl"),
}


def detect_platform(sys_platform: Optional[str] = None) -> str:
    """Platform family: 'windows', 'macos' or 'linux'."""
    sys_platform = sys_platform or sys.platform
    if sys_platform.startswith(("win", "cygwin", "msys")):
        return "windows"
    if sys_platform == "darwin":
        return "macos"
    return "linux"


def select_downloader(
    platform_name: Optional[str] = None,
    which: Callable[[str], Optional[str]] = shutil.which,
    **kwargs,
) -> Downloader:
    """
    Pick the first available tool for the platform.

    Raises:
        DownloadError: If neither the primary tool nor its fallback is installed
    """
    platform_name = platform_name or detect_platform()
    tools = PLATFORM_TOOLS.get(platform_name, PLATFORM_TOOLS["linux"])

    for tool in tools:
        downloader = DOWNLOADERS[tool](which=which, **kwargs)
        if downloader.is_available():
            if tool != tools[0]:
                logger.info(f"{tools[0]} not found, falling back to {tool}")
            logger.debug(f"Using {tool} for downloads on {platform_name}")
            return downloader

    raise DownloadError(f"No download tool available on {platform_name} (tried: {', '.join(tools)})")


def system_check(
    platform_name: Optional[str] = None,
    which: Callable[[str], Optional[str]] = shutil.which,
) -> Dict:
    """Platform, recommended tool and availability of every known tool."""
    platform_name = platform_name or detect_platform()
    tools = PLATFORM_TOOLS.get(platform_name, PLATFORM_TOOLS["linux"])
    available = {name: which(cls.executable) is not None for name, cls in DOWNLOADERS.items()}
    selected = next((t for t in tools if available[t]), None)

    return {
        "platform": platform_name,
        "system": platform.system(),
        "release": platform.release(),
        "python": platform.python_version(),
        "recommended_tool": tools[0],
        "fallback_tool": tools[1] if len(tools) > 1 else None,
        "selected_tool": selected,
        "tools": available,
        "download_ready": selected is not None,
    }
