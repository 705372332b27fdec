from __future__ import annotations

import asyncio
import html
import ipaddress
import logging
import re
import socket
from pathlib import Path
from typing import List, Optional
from urllib.parse import urljoin, urlparse

import requests

from .errors import WebsiteFetchError
from .gemini_client import GeminiClient
from .prompt_loader import load_prompt

logger = logging.getLogger("title_finder.website")

MAX_PAGE_CHARS = 8000
MAX_FETCH_BYTES = 1_000_000
MAX_REDIRECTS = 5
CHUNK_SIZE = 64 * 1024
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

HIDDEN_BLOCK_RE = re.compile(r"<(script|style|noscript|svg|template)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
BLOCK_TAG_RE = re.compile(r"</?(p|div|br|li|h[1-6]|section|article|tr|header|footer)\b[^>]*>", re.IGNORECASE)
TAG_RE = re.compile(r"<[^>]+>")
WHITESPACE_RE = re.compile(r"[ \t\r\f\v]+")
BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def normalize_url(url: str) -> str:
    """Purpose: Validate a user-supplied website address and add a scheme if missing.
    Inputs/Outputs: Input is raw URL text; output is an http(s) URL.
    Side Effects / State: None; pure function.
    Dependencies: Uses urllib.parse.urlparse.
    Failure Modes: Raises ValueError for empty input, non-http schemes, or no host.
    If Removed: Bare domains like "acme.com" cannot be scanned.
    Testing Notes: "acme.com" becomes "https://acme.com"; "ftp://x" is rejected.
    """
    # Default to https when the user typed only a domain.
    cleaned = (url or "").strip()
    if not cleaned:
        raise ValueError("url required")
    if "://" not in cleaned:
        cleaned = f"https://{cleaned}"
    parsed = urlparse(cleaned)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"unsupported url: {url}")
    return cleaned


def resolve_addresses(host: str, port: int) -> List[str]:
    """Return every address `host` resolves to."""
    infos = socket.getaddrinfo(host, port, proto=socket.IPPROTO_TCP)
    return [info[4][0] for info in infos]


def ensure_public_host(url: str) -> None:
    """Purpose: Refuse URLs whose host resolves to a non-public address.
    Inputs/Outputs: Input is a normalized http(s) URL; no return value.
    Side Effects / State: One blocking DNS lookup.
    Dependencies: Uses resolve_addresses and ipaddress.
    Failure Modes: Raises ValueError for loopback, private, link-local, reserved, or
        otherwise non-global addresses (including IPv4-mapped IPv6 forms).
        Raises WebsiteFetchError when the name does not resolve.
    If Removed: Scans could reach localhost, the internal network, or cloud
        metadata endpoints.
    Testing Notes: Monkeypatch resolve_addresses; IP literals need no patch.
    """
    # Every resolved address must be public; one internal address rejects the host.
    parsed = urlparse(url)
    host = parsed.hostname
    if not host:
        raise ValueError(f"unsupported url: {url}")
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    try:
        addresses = resolve_addresses(host, port)
    except (socket.gaierror, UnicodeError) as exc:
        raise WebsiteFetchError(f"Could not resolve {host}: {exc}") from exc
    if not addresses:
        raise WebsiteFetchError(f"Could not resolve {host}")
    for address in addresses:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
        mapped = getattr(ip, "ipv4_mapped", None)
        if mapped is not None:
            ip = mapped
        if not ip.is_global:
            raise ValueError(f"refusing to fetch non-public address: {host}")


def strip_html(markup: str, limit: int = MAX_PAGE_CHARS) -> str:
    """Purpose: Reduce an HTML page to readable plain text.
    Inputs/Outputs: Inputs are the HTML markup and a character limit; output is text.
    Side Effects / State: None; pure function.
    Dependencies: Uses the module regexes and html.unescape.
    Failure Modes: Returns an empty string for empty input; malformed markup is
        stripped best-effort.
    If Removed: The summary call would receive raw markup and scripts.
    Testing Notes: Scripts/styles disappear, entities are decoded, whitespace collapses.
    """
    # Remove invisible blocks first so their contents never leak into the text.
    if not markup:
        return ""
    text = HIDDEN_BLOCK_RE.sub(" ", markup)
    text = COMMENT_RE.sub(" ", text)
    text = BLOCK_TAG_RE.sub("\n", text)
    text = TAG_RE.sub(" ", text)
    text = html.unescape(text)
    text = WHITESPACE_RE.sub(" ", text)
    text = BLANK_LINES_RE.sub("\n", text)
    lines = [line.strip() for line in text.split("\n")]
    return "\n".join(line for line in lines if line)[:limit]


class WebsiteScanner:
    """Fetches a company website and summarizes it for audience targeting."""

    def __init__(
        self,
        gemini: GeminiClient,
        prompts_dir: Path,
        fetch_timeout: float = 10.0,
        model: Optional[str] = None,
    ) -> None:
        self._gemini = gemini
        self._prompts_dir = prompts_dir
        self._fetch_timeout = fetch_timeout
        self._model = model

    def fetch_text(self, url: str) -> str:
        """Purpose: Download a page and return its plain text.
        Inputs/Outputs: Input is a normalized URL; output is stripped page text.
        Side Effects / State: Blocking streamed HTTP GETs (one per redirect hop), each
            bounded by the fetch timeout; at most MAX_FETCH_BYTES of body are read.
        Dependencies: Uses requests, ensure_public_host, and strip_html.
        Failure Modes: ValueError when the first host is not public. WebsiteFetchError
            on network errors, non-2xx status, a redirect to a non-public host, too
            many redirects, or pages without readable text.
        If Removed: The scan endpoint has nothing to summarize.
        Testing Notes: Monkeypatch requests.get with a fake streamed response and
            resolve_addresses with fixed addresses.
        """
        # Redirects are followed by hand so every hop passes the public-host check.
        ensure_public_host(url)
        current = url
        for _ in range(MAX_REDIRECTS + 1):
            try:
                response = requests.get(
                    current,
                    headers={"User-Agent": USER_AGENT, "Accept": "text/html,application/xhtml+xml"},
                    timeout=self._fetch_timeout,
                    stream=True,
                    allow_redirects=False,
                )
            except requests.RequestException as exc:
                raise WebsiteFetchError(f"Could not fetch {current}: {exc}") from exc
            try:
                if response.is_redirect:
                    target = urljoin(current, response.headers.get("location", ""))
                    try:
                        ensure_public_host(normalize_url(target))
                    except ValueError as exc:
                        raise WebsiteFetchError(f"Blocked redirect from {current}: {exc}") from exc
                    logger.debug("redirect %s -> %s", current, target)
                    current = target
                    continue
                response.raise_for_status()
                body = self._read_capped(response)
            except requests.RequestException as exc:
                raise WebsiteFetchError(f"Could not fetch {current}: {exc}") from exc
            finally:
                response.close()
            try:
                markup = body.decode(response.encoding or "utf-8", errors="replace")
            except LookupError:
                markup = body.decode("utf-8", errors="replace")
            text = strip_html(markup)
            if not text:
                raise WebsiteFetchError(f"No readable text found at {current}")
            return text
        raise WebsiteFetchError(f"Too many redirects fetching {url}")

    @staticmethod
    def _read_capped(response: requests.Response) -> bytes:
        # Stop reading once the cap is reached; the tail of a huge page is discarded.
        chunks: List[bytes] = []
        size = 0
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            if not chunk:
                continue
            chunks.append(chunk)
            size += len(chunk)
            if size >= MAX_FETCH_BYTES:
                logger.info("page truncated at %d bytes", size)
                break
        return b"".join(chunks)[:MAX_FETCH_BYTES]

    async def scan(self, url: str) -> str:
        """Fetch `url` off the event loop and return a short targeting summary."""
        normalized = normalize_url(url)
        text = await asyncio.to_thread(self.fetch_text, normalized)
        logger.info("url=%s page_chars=%d", normalized, len(text))
        summary = await self._gemini.generate(
            load_prompt(self._prompts_dir, "website_summary"),
            [{"role": "user", "content": f"Website: {normalized}\n\nPage text:\n{text}"}],
            model=self._model,
            temperature=0.2,
            max_output_tokens=600,
        )
        return summary.strip()
