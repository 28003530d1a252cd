"""URL liveness checks."""
from urllib.parse import urlparse

import httpx
import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger()

TIMEOUT_SECONDS = 8.0
REDIRECT_LIMIT = 5
MAX_BODY_CHARS = 200_000
USER_AGENT = "Mozilla/5.0 (compatible; URLHealthBot/1.0)"

PARKED_DOMAIN_KEYWORDS = (
    "buy this domain",
    "domain for sale",
    "this domain is for sale",
    "domain parking",
    "parked domain",
    "hugedomains",
    "domain expired",
    "expired domain",
    "acquire this domain",
)

VALID = "valid"
REDIRECTED = "redirected"
BROKEN = "broken"
PENDING = "pending"


class UrlCheck(BaseModel):
    """Outcome of one liveness check."""

    url: str
    status: str
    http_status: int | None = None
    final_url: str | None = None
    redirect_chain: list[str] = Field(default_factory=list)
    is_parked: bool = False
    error_message: str | None = None

    @property
    def is_live(self) -> bool:
        return self.status in (VALID, REDIRECTED)


def normalize_url(url: str) -> str:
    """Trim and add ``https://`` when the scheme is missing."""
    url = (url or "").strip()
    if url and "://" not in url:
        url = f"https://{url}"
    return url


def _same_location(a: str, b: str) -> bool:
    return a.rstrip("/") == b.rstrip("/")


def _looks_parked(text: str) -> bool:
    lower = text[:MAX_BODY_CHARS].lower()
    return any(kw in lower for kw in PARKED_DOMAIN_KEYWORDS)


def _make_client(timeout: float, max_redirects: int, transport: httpx.BaseTransport | None) -> httpx.Client:
    return httpx.Client(
        timeout=timeout,
        follow_redirects=True,
        max_redirects=max_redirects,
        transport=transport,
        headers={
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        },
    )


def check_url(
    url: str,
    client: httpx.Client | None = None,
    timeout: float = TIMEOUT_SECONDS,
    max_redirects: int = REDIRECT_LIMIT,
    transport: httpx.BaseTransport | None = None,
) -> UrlCheck:
    """Classify ``url`` as valid, redirected or broken.

    Uses a fixed timeout and a bounded number of redirects. Any transport
    failure (timeout, DNS, refused connection, too many redirects) is broken.
    """
    target = normalize_url(url)
    if not target:
        return UrlCheck(url=url or "", status=BROKEN, error_message="Empty URL")
    parsed = urlparse(target)
    if parsed.scheme not in ("http", "https"):
        return UrlCheck(url=url, status=BROKEN, error_message=f"Unsupported scheme: {parsed.scheme}")
    if not parsed.hostname:
        return UrlCheck(url=url, status=BROKEN, error_message="Missing host")

    owns_client = client is None
    if client is None:
        client = _make_client(timeout, max_redirects, transport)
    try:
        response = client.get(target)
    except httpx.TooManyRedirects:
        return UrlCheck(url=url, status=BROKEN, error_message=f"More than {max_redirects} redirects")
    except httpx.TimeoutException:
        return UrlCheck(url=url, status=BROKEN, error_message="Request timeout")
    except httpx.ConnectError as e:
        message = str(e)
        if "name or service not known" in message.lower() or "nodename nor servname" in message.lower():
            message = "DNS resolution failed"
        return UrlCheck(url=url, status=BROKEN, error_message=message or "Connection failed")
    except httpx.HTTPError as e:
        return UrlCheck(url=url, status=BROKEN, error_message=str(e) or e.__class__.__name__)
    finally:
        if owns_client:
            client.close()

    final_url = str(response.url)
    chain = [str(r.url) for r in response.history]
    if chain:
        chain.append(final_url)
    result = UrlCheck(
        url=url,
        status=BROKEN,
        http_status=response.status_code,
        final_url=final_url,
        redirect_chain=chain,
    )
    if 200 <= response.status_code < 300:
        if _looks_parked(response.text):
            result.is_parked = True
            result.error_message = "Parked domain"
        elif response.history and not _same_location(final_url, target):
            result.status = REDIRECTED
        else:
            result.status = VALID
    elif response.status_code >= 500:
        result.error_message = f"Server error {response.status_code}"
    else:
        result.error_message = f"HTTP {response.status_code}"
    return result
