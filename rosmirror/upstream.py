"""
Upstream Client - talks to the vendor update servers

Pointer files, CHANGELOG and packages.csv come from the upgrade host,
firmware artifacts from the download host.
"""
from typing import Callable, Dict, Optional, Tuple

import requests
import structlog

from rosmirror.utils import is_safe_segment

logger = structlog.get_logger("upstream")

CHUNK_SIZE = 1024 * 1024


class UpstreamClient:
    """Thin wrapper around a requests session with a fixed timeout budget."""

    def __init__(self, upstream_settings: Dict, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.upgrade_url = upstream_settings["upgrade_url"].rstrip("/")
        self.download_url = upstream_settings["download_url"].rstrip("/")
        self.probe_url = upstream_settings.get("probe_url") or f"{self.upgrade_url}/LATEST.6"
        self.diagnostics_url = upstream_settings.get("diagnostics_url") or self.upgrade_url
        self.timeout = timeout if timeout is not None else upstream_settings.get("timeout_seconds", 600)
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": upstream_settings.get("user_agent", "RouterOS-Mirror/1.0")})

    @classmethod
    def for_diagnostics(cls, upstream_settings: Dict) -> "UpstreamClient":
        """Separate client for UI connectivity probes; never shares the download timeout."""
        return cls(upstream_settings, timeout=upstream_settings.get("diagnostics_timeout_seconds", 5))

    # ----- URL builders -----

    def pointer_url(self, name: str) -> str:
        return f"{self.upgrade_url}/{name}"

    def artifact_url(self, version: str, filename: str) -> str:
        return f"{self.download_url}/{version}/{filename}"

    def changelog_url(self, version: str) -> str:
        return f"{self.upgrade_url}/{version}/CHANGELOG"

    def packages_csv_url(self, branch: str) -> str:
        return f"{self.upgrade_url}/{branch}/packages.csv"

    # ----- probes -----

    def check_connectivity(self) -> bool:
        logger.info("checking upstream connectivity", url=self.probe_url)
        try:
            response = self.session.head(self.probe_url, timeout=self.timeout, allow_redirects=True)
        except requests.exceptions.Timeout as e:
            logger.error("upstream timeout", url=self.probe_url, error=str(e))
            return False
        except requests.exceptions.RequestException as e:
            logger.error("upstream unreachable", url=self.probe_url, error=str(e))
            return False

        connected = response.ok
        logger.info("upstream connectivity", status="OK" if connected else "FAILED",
                    http_status=response.status_code)
        return connected

    def file_exists(self, url: str) -> bool:
        try:
            response = self.session.head(url, timeout=self.timeout, allow_redirects=True)
            return response.ok
        except requests.exceptions.RequestException:
            return False

    def diagnose(self) -> Dict:
        """Connectivity summary for the diagnostics page."""
        try:
            response = self.session.head(self.diagnostics_url, timeout=self.timeout, allow_redirects=True)
        except requests.exceptions.Timeout:
            return {"upstreamServer": "Timeout",
                    "details": f"Connection timed out ({self.timeout} seconds)"}
        except requests.exceptions.RequestException as e:
            return {"upstreamServer": "Network Error", "details": str(e)}
        return {
            "upstreamServer": "Connected" if response.ok else "Failed",
            "details": f"HTTP {response.status_code}",
        }

    # ----- fetches -----

    def resolve_version(self, url: str) -> Tuple[Optional[str], int]:
        """
        Fetch a pointer file and parse "<version> [<build>]".

        Returns:
            (version, build); (None, 0) when the pointer cannot be fetched or parsed.
        """
        try:
            logger.debug("fetching version", url=url)
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error("error fetching version", url=url, error=str(e))
            return None, 0

        parts = response.text.split()
        if not parts:
            logger.warning("empty version response", url=url)
            return None, 0

        version = parts[0].strip()
        if not version or not version[0].isdigit() or not is_safe_segment(version):
            logger.warning("invalid version format", url=url, response=response.text[:100])
            return None, 0

        build = 0
        if len(parts) > 1:
            try:
                build = int(parts[1])
            except ValueError:
                build = 0

        logger.info("fetched version", version=version, build=build, url=url)
        return version, build

    def download_bytes(self, url: str, checkpoint: Optional[Callable[[], None]] = None) -> bytes:
        """
        GET an artifact into memory. `checkpoint` runs between chunks and may raise
        to abort the transfer. Errors propagate; the caller owns any file cleanup.
        """
        buffer = bytearray()
        with self.session.get(url, timeout=self.timeout, stream=True) as response:
            response.raise_for_status()
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if checkpoint:
                    checkpoint()
                if chunk:
                    buffer.extend(chunk)
        return bytes(buffer)

    def download_text(self, url: str) -> Optional[str]:
        """
        GET a small text document. A 404 is normal for CHANGELOG/packages.csv on
        fixed or old branches and yields None; other failures raise.
        """
        response = self.session.get(url, timeout=self.timeout)
        if response.status_code == 404:
            logger.info("not published upstream", url=url)
            return None
        response.raise_for_status()
        return response.text
