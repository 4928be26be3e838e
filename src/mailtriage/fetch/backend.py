"""HTTP client for the mail backend that fronts the IMAP bridge.

The backend sits behind a tunnel, so three hops can fail independently:
- tunnel:  the base URL answers at all
- backend: GET /health answers with status 'ok'
- bridge:  the backend's /health reports a healthy bridge connection

Usage:
    from mailtriage.fetch.backend import BackendFetcher

    fetcher = BackendFetcher("https://imap.example.org")
    hops = fetcher.check_connectivity()
    if all(h.ok for h in hops):
        result = fetcher.fetch_emails()
"""

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

import requests

from mailtriage.core.errors import FetchError
from mailtriage.core.logging import get_logger
from mailtriage.fetch.models import Email, FetchResult, HopResult, build_fetch_result

logger = get_logger(__name__)

DEFAULT_BRIDGE_ADDRESS = "127.0.0.1:1143"


class BackendFetcher:
    """Fetches emails from the mail backend over HTTP.

    Attributes:
        base_url: Tunnel URL of the backend (no trailing slash)
        check_timeout: Timeout in seconds for each connectivity check
        fetch_timeout: Timeout in seconds for the fetch request
    """

    def __init__(
        self,
        base_url: str,
        check_timeout: float = 5.0,
        fetch_timeout: float = 30.0,
        folder: str = "All Mail",
        include_body: bool = True,
        exclude_folders: Iterable[str] = ("Spam", "Junk", "Trash", "Deleted Items"),
        exclude_senders: Iterable[str] = (),
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.check_timeout = check_timeout
        self.fetch_timeout = fetch_timeout
        self.folder = folder
        self.include_body = include_body
        self.exclude_folders = list(exclude_folders)
        self.exclude_senders = list(exclude_senders)
        self.session = session or requests.Session()

    # =========================================================================
    # Connectivity
    # =========================================================================

    def check_tunnel(self) -> HopResult:
        try:
            response = self.session.get(self.base_url, timeout=self.check_timeout)
            return HopResult(hop="tunnel", ok=response.ok, url=self.base_url)
        except requests.exceptions.RequestException as e:
            return HopResult(hop="tunnel", ok=False, url=self.base_url, error=str(e))

    def _health(self) -> tuple[int, dict[str, Any]]:
        response = self.session.get(f"{self.base_url}/health", timeout=self.check_timeout)
        try:
            data = response.json()
        except ValueError:
            data = {}
        return response.status_code, data if isinstance(data, dict) else {}

    def check_backend(self) -> HopResult:
        url = f"{self.base_url}/health"
        try:
            status_code, data = self._health()
        except requests.exceptions.RequestException as e:
            return HopResult(hop="backend", ok=False, url=url, error=str(e))

        # Gateway errors mean the tunnel is up but nothing answers behind it
        if status_code in (502, 504):
            return HopResult(hop="backend", ok=False, url=url, error=f"tunnel returned {status_code}")

        return HopResult(
            hop="backend",
            ok=data.get("status") == "ok",
            url=url,
            detail={"service": data.get("service"), "account": data.get("account")},
        )

    def check_bridge(self) -> HopResult:
        try:
            _, data = self._health()
        except requests.exceptions.RequestException as e:
            return HopResult(hop="bridge", ok=False, url=DEFAULT_BRIDGE_ADDRESS, error=str(e))

        config = data.get("config") or {}
        bridge = config.get("bridge") if isinstance(config, dict) else None
        bridge = bridge or DEFAULT_BRIDGE_ADDRESS
        if data.get("status") != "ok":
            return HopResult(
                hop="bridge",
                ok=False,
                url=bridge,
                error=data.get("error") or "backend unhealthy",
            )
        return HopResult(hop="bridge", ok=True, url=bridge)

    def check_connectivity(self) -> list[HopResult]:
        """Check tunnel, backend and bridge in order, stopping at the first failure."""
        results: list[HopResult] = []
        for check in (self.check_tunnel, self.check_backend, self.check_bridge):
            result = check()
            results.append(result)
            logger.debug("connectivity_hop_checked", hop=result.hop, ok=result.ok, url=result.url)
            if not result.ok:
                break
        return results

    # =========================================================================
    # Fetch
    # =========================================================================

    def fetch_emails(self) -> FetchResult:
        """Fetch every email in the configured folder.

        Raises:
            FetchError: On transport failure, non-2xx status or a non-JSON body
        """
        url = f"{self.base_url}/fetch-emails"
        payload = {
            "folder": self.folder,
            "includeBody": self.include_body,
            "excludeFolders": self.exclude_folders,
        }
        try:
            response = self.session.post(url, json=payload, timeout=self.fetch_timeout)
        except requests.exceptions.Timeout:
            raise FetchError(
                f"Fetch from {url} timed out after {self.fetch_timeout}s. "
                "Check that the bridge is not stuck syncing.",
                hop="fetch",
            ) from None
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Fetch from {url} failed: {e}", hop="fetch") from e

        if not response.ok:
            raise FetchError(
                f"Backend returned {response.status_code}",
                hop="fetch",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise FetchError(f"Backend returned a non-JSON body from {url}", hop="fetch") from e

        fetched_at = datetime.now(UTC)
        raw = (data.get("emails") or []) if isinstance(data, dict) else []
        emails = [Email.from_payload(item, fetched_at) for item in raw if isinstance(item, dict)]
        result = build_fetch_result(emails, self.exclude_senders)

        logger.info(
            "emails_fetched",
            url=url,
            fetched=result.fetched,
            inbound=result.inbound,
        )
        return result
