"""
Fetch module for the Scholarship Pipeline.

This module retrieves a single submitted page with a browser-like request
signature, bounded timeouts and exponential backoff on transient network
errors, and returns the page's linearized text for extraction.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from scholarship_pipeline.parse import html_to_text
from scholarship_pipeline.utils import get_logger, validate_url


# Module logger
logger = get_logger("fetch")

# Default configuration
DEFAULT_TIMEOUT = 15  # seconds
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_FACTOR = 1.0  # exponential backoff multiplier
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Error kinds
ERROR_FORBIDDEN = "forbidden"
ERROR_TIMEOUT = "timeout"
ERROR_NETWORK = "network"
ERROR_NOT_HTML = "notHtml"

# Only these are worth another attempt
RETRYABLE_ERRORS = {ERROR_TIMEOUT, ERROR_NETWORK}

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml", "text/plain")


@dataclass
class FetchResult:
    """
    Represents the result of fetching a single URL.

    Attributes:
        url: The URL that was fetched.
        ok: Whether usable page text was retrieved.
        content: Linearized page text if successful, None otherwise.
        error_kind: One of forbidden, timeout, network, notHtml on failure.
        error_message: Error description if fetch failed, None otherwise.
        status_code: HTTP status code if a response was received.
        attempts: Number of requests made.
    """
    url: str
    ok: bool
    content: Optional[str] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    status_code: Optional[int] = None
    attempts: int = 0


def create_session(max_status_retries: int = DEFAULT_MAX_RETRIES) -> requests.Session:
    """
    Create a requests session with a browser-like request signature.

    Retries on rate-limit and server-error statuses are delegated to
    urllib3; connection errors and timeouts are retried by ContentFetcher
    so each attempt is visible and bounded.

    Args:
        max_status_retries: Retries for 429/5xx responses.

    Returns:
        Configured requests.Session instance.
    """
    session = requests.Session()

    retry_strategy = Retry(
        total=max_status_retries,
        connect=0,
        read=False,
        status=max_status_retries,
        backoff_factor=DEFAULT_BACKOFF_FACTOR,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "HEAD"],
        raise_on_status=False
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update({
        "User-Agent": DEFAULT_USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
    })

    return session


def is_html_response(response: requests.Response) -> bool:
    """Whether the response declares (or defaults to) a textual page."""
    content_type = response.headers.get("Content-Type", "")
    if not content_type:
        return True
    return content_type.split(";")[0].strip().lower() in HTML_CONTENT_TYPES


class ContentFetcher:
    """Fetches one page at a time and returns its linearized text."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.session = session or create_session()
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_factor = backoff_factor
        self.sleep = sleep

    def close(self) -> None:
        self.session.close()

    def fetch(self, url: str) -> FetchResult:
        """
        Fetch a URL, retrying timeouts and connection errors.

        A 403 response is reported as "forbidden" immediately; retrying an
        anti-bot block does not help.

        Args:
            url: URL to fetch.

        Returns:
            FetchResult containing linearized page text or the error kind.
        """
        if not validate_url(url):
            logger.warning(f"Invalid URL format: {url}")
            return FetchResult(
                url=url,
                ok=False,
                error_kind=ERROR_NETWORK,
                error_message="Invalid URL format"
            )

        result = FetchResult(url=url, ok=False)
        for attempt in range(1, self.max_retries + 1):
            result = self._fetch_once(url)
            result.attempts = attempt

            # HTTP error statuses already went through urllib3 status retries
            if result.ok or result.status_code is not None or result.error_kind not in RETRYABLE_ERRORS:
                break

            if attempt < self.max_retries:
                wait = self.backoff_factor * (2 ** (attempt - 1))
                logger.info(
                    f"Retrying {url} in {wait:.1f}s after {result.error_kind} "
                    f"(attempt {attempt}/{self.max_retries})"
                )
                self.sleep(wait)

        if not result.ok:
            logger.warning(f"Failed to fetch {url}: {result.error_kind} ({result.error_message})")
        return result

    def _fetch_once(self, url: str) -> FetchResult:
        logger.debug(f"Fetching URL: {url}")

        try:
            response = self.session.get(url, timeout=self.timeout)

        except requests.exceptions.Timeout:
            return FetchResult(
                url=url,
                ok=False,
                error_kind=ERROR_TIMEOUT,
                error_message="Request timeout"
            )

        except requests.exceptions.ConnectionError as e:
            return FetchResult(
                url=url,
                ok=False,
                error_kind=ERROR_NETWORK,
                error_message=f"Connection error: {str(e)}"
            )

        except requests.exceptions.RequestException as e:
            return FetchResult(
                url=url,
                ok=False,
                error_kind=ERROR_NETWORK,
                error_message=f"Request failed: {str(e)}"
            )

        if response.status_code == 403:
            logger.error(f"Access forbidden (403) for URL: {url}")
            return FetchResult(
                url=url,
                ok=False,
                error_kind=ERROR_FORBIDDEN,
                error_message="Website access forbidden",
                status_code=403
            )

        if response.status_code != 200:
            return FetchResult(
                url=url,
                ok=False,
                error_kind=ERROR_NETWORK,
                error_message=f"HTTP {response.status_code}",
                status_code=response.status_code
            )

        if not is_html_response(response):
            return FetchResult(
                url=url,
                ok=False,
                error_kind=ERROR_NOT_HTML,
                error_message=f"Unsupported content type: {response.headers.get('Content-Type')}",
                status_code=response.status_code
            )

        text = html_to_text(response.text)
        logger.info(f"Successfully fetched {url} ({len(response.text)} bytes, {len(text)} chars of text)")
        return FetchResult(
            url=url,
            ok=True,
            content=text,
            status_code=response.status_code
        )
