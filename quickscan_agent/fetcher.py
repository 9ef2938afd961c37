from __future__ import annotations

import logging
import re

import httpx

from .models import Reachability

logger = logging.getLogger(__name__)

FETCH_TIMEOUT_S = 10.0
MAX_TEXT_CHARS = 8000
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

_SCRIPT_RE = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_STYLE_RE = re.compile(r"<style[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")

_FETCH_ERRORS = (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError)


def html_to_text(html: str, limit: int = MAX_TEXT_CHARS) -> str:
    text = _SCRIPT_RE.sub("", html)
    text = _STYLE_RE.sub("", text)
    text = _TAG_RE.sub(" ", text)
    text = _WS_RE.sub(" ", text).strip()
    return text[:limit]


class WebClient:
    """Bounded HTTP access to the scanned website.

    ``transport`` is only passed through to ``httpx.Client``; tests use it to
    plug in an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        *,
        timeout_s: float = FETCH_TIMEOUT_S,
        user_agent: str = USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.timeout_s = timeout_s
        self.user_agent = user_agent
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self.timeout_s,
            follow_redirects=True,
            transport=self._transport,
            headers={
                "user-agent": self.user_agent,
                "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            },
        )

    def probe(self, url: str) -> Reachability:
        seconds = int(self.timeout_s)
        try:
            with self._client() as client:
                res = client.head(url)
        except httpx.TimeoutException:
            return Reachability(
                reachable=False,
                error=f"The website did not respond within {seconds} seconds. Please try again later.",
            )
        except _FETCH_ERRORS as e:
            logger.info("Reachability probe failed for %s: %s", url, e)
            return Reachability(
                reachable=False,
                error="This website does not exist or is unreachable. Check the URL and try again.",
            )

        if 200 <= res.status_code < 300:
            return Reachability(reachable=True)
        return Reachability(
            reachable=False,
            error=f"The website returned HTTP status {res.status_code}. Check the URL and try again.",
        )

    def fetch_text(self, url: str) -> str:
        try:
            with self._client() as client:
                res = client.get(url)
                res.raise_for_status()
                html = res.text
        except _FETCH_ERRORS as e:
            logger.warning("Fetching website content failed for %s: %s", url, e)
            return f"Website URL: {url}"

        return html_to_text(html) or f"Website: {url}"
