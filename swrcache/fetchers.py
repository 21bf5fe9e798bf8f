"""
Default fetcher: JSON over HTTP.

Keys are treated as URLs (absolute, or relative to SWR_FETCH_BASE_URL).
Extra key arguments that are dicts are sent as query parameters. The
blocking requests call runs in the loop's default executor.
"""
import asyncio
import logging
from functools import partial
from typing import Any, Dict, Optional

import requests

from config.settings import settings

logger = logging.getLogger("swrcache.fetchers")


class FetchHTTPError(Exception):
    """Raised when the upstream answered with an error status."""

    def __init__(self, url: str, status_code: int, body: str = ""):
        self.url = url
        self.status_code = status_code
        self.body = body
        super().__init__(f"GET {url} returned {status_code}")


class HTTPFetcher:
    """
    Async fetcher returning decoded JSON.

    Usage:
        manager = CacheManager(RevalidateOptions(fetcher=HTTPFetcher()))
        manager.subscribe("https://api.example.com/user/1")
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url if base_url is not None else settings.fetch_base_url
        self.timeout = timeout if timeout is not None else settings.fetch_timeout
        self.headers = headers or {}
        self._session = session or requests.Session()

    def resolve_url(self, url: str) -> str:
        if self.base_url and not url.startswith(("http://", "https://")):
            return f"{self.base_url.rstrip('/')}/{url.lstrip('/')}"
        return url

    def get_json(self, url: str, *args: Any) -> Any:
        """Blocking GET returning decoded JSON."""
        params: Dict[str, Any] = {}
        for arg in args:
            if isinstance(arg, dict):
                params.update(arg)

        full_url = self.resolve_url(url)
        logger.debug(f"GET {full_url} params={params}")
        response = self._session.get(
            full_url,
            headers=self.headers,
            params=params or None,
            timeout=self.timeout,
        )
        if not response.ok:
            raise FetchHTTPError(full_url, response.status_code, response.text[:500])
        return response.json()

    async def __call__(self, url: str, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(self.get_json, url, *args))

    def close(self) -> None:
        self._session.close()
