"""Fetch a web page for transformation: URL validation, size cap, title extraction."""
import ipaddress
import logging
import re
from dataclasses import dataclass
from html import unescape
from urllib.parse import urlparse

import httpx

from pagepersona.guardrails.errors import ErrorCode, TransformError

logger = logging.getLogger(__name__)

TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
USER_AGENT = "Mozilla/5.0 (compatible; PagePersonaBot/1.0)"
BLOCKED_HOSTS = {"localhost", "localhost.localdomain", "0.0.0.0"}


@dataclass
class FetchedPage:
    url: str
    title: str
    html: str


def validate_url(url: str) -> str:
    """Reject non-http(s) URLs and hosts that point at the local machine or a private network. Returns the stripped URL."""
    url = (url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise TransformError(ErrorCode.INVALID_URL, "Please provide a valid http(s) URL.")

    host = parsed.hostname.lower()
    if host in BLOCKED_HOSTS or host.endswith(".local") or host.endswith(".internal"):
        raise TransformError(ErrorCode.INVALID_URL, "Private or internal URLs are not allowed.")
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return url
    if ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved or ip.is_unspecified:
        raise TransformError(ErrorCode.INVALID_URL, "Private or internal URLs are not allowed.")
    return url


def extract_title(html: str) -> str:
    m = TITLE_RE.search(html or "")
    if not m:
        return ""
    return " ".join(unescape(m.group(1)).split())


async def fetch_page(url: str, *, timeout: float = 15.0, max_bytes: int = 2 * 1024 * 1024, client: httpx.AsyncClient = None) -> FetchedPage:
    """GET url and return its HTML (truncated to max_bytes). Network and HTTP errors become SCRAPING_FAILED."""
    url = validate_url(url)
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=timeout, follow_redirects=True, headers={"User-Agent": USER_AGENT})
    try:
        resp = await client.get(url)
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        logger.warning("fetch_http_error", extra={"url": url, "status": status})
        if status == 404:
            raise TransformError(ErrorCode.SCRAPING_FAILED, "The page could not be found (404).") from e
        raise TransformError(ErrorCode.SCRAPING_FAILED, f"The page returned HTTP {status}.") from e
    except httpx.HTTPError as e:
        logger.warning("fetch_failed", extra={"url": url, "error": str(e)})
        raise TransformError(ErrorCode.SCRAPING_FAILED, "Could not reach the page. Please check the URL and try again.") from e
    finally:
        if owns_client:
            await client.aclose()

    content = resp.content[:max_bytes]
    html = content.decode(resp.encoding or "utf-8", errors="replace")
    return FetchedPage(url=str(resp.url), title=extract_title(html), html=html)
