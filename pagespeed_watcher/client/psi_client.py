"""
Quota-governed PageSpeed Insights client.

Validates input, applies local admission control, calls the PSI API,
classifies the outcome and records it to the usage ledger.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

import httpx

from ..config.loader import PSI_ENDPOINT, HttpConfig, WatcherConfig
from ..core.errors import (
    InvalidArgumentError,
    MissingCredentialError,
    ProviderError,
    ProviderErrorCode,
    RateLimitExceededError,
    ServerUnavailableError,
    TransportFailureError,
    WatcherError,
)
from ..core.metrics import NormalizedMetrics, extract_metrics, score_percent
from ..core.rate_limiter import RateLimiter
from ..storage.counter_store import CounterStore, SQLiteCounterStore
from ..storage.repository import LedgerError, UsageLedger, initialize_schema

logger = logging.getLogger(__name__)

STRATEGIES = ("mobile", "desktop")


@dataclass(frozen=True)
class PSIRunResult:
    """Successful test run: normalized metrics plus the raw response."""
    url: str
    strategy: str
    metrics: NormalizedMetrics
    raw_response: Dict[str, Any]


@dataclass(frozen=True)
class PageCheck:
    """Connectivity check summary in HTTP-status terms."""
    http_code: int
    score: Optional[int]
    error: Optional[str]


def classify_response(response: httpx.Response) -> Dict[str, Any]:
    """Return the decoded body of a successful response or raise.

    Raises:
        ServerUnavailableError: On any 5xx status
        ProviderError: On an ``error`` field in the body, any other non-2xx
            status, or a body that is not a JSON object
    """
    status = response.status_code
    if status >= 500:
        raise ServerUnavailableError(f"PSI server error (HTTP {status})", status_code=status)

    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict) and "error" in body:
        code, message = _provider_error_fields(body["error"], status)
        raise ProviderError(message, code=code, status_code=status)

    if not response.is_success:
        raise ProviderError(
            f"PSI request failed with HTTP {status}",
            code=status,
            status_code=status
        )

    if not isinstance(body, dict):
        raise ProviderError("Invalid JSON from PSI API", status_code=status)

    return body


def _provider_error_fields(error: Any, status: int) -> Tuple[Optional[int], str]:
    fallback_code = None if 200 <= status < 300 else status
    if not isinstance(error, dict):
        return fallback_code, str(error) if error else "Unknown PSI API error"

    code = error.get("code")
    if isinstance(code, bool) or not isinstance(code, int):
        code = fallback_code
    message = error.get("message") or "Unknown PSI API error"
    return code, str(message)


class PSIClient:
    """PageSpeed Insights client with quota enforcement and usage accounting.

    Every call to ``run_test`` ends in a PSIRunResult or exactly one
    WatcherError. Nothing is retried here; the error's ``kind`` and
    ``retryable`` tell the caller whether waiting can help.
    """

    def __init__(
        self,
        http_client: httpx.Client,
        api_key: Optional[str],
        rate_limiter: RateLimiter,
        ledger: UsageLedger,
        endpoint: str = PSI_ENDPOINT,
        http_config: Optional[HttpConfig] = None,
        app_host: Optional[str] = None,
        enforce_same_host: bool = False
    ):
        """Initialize the client.

        Args:
            http_client: httpx client used for the PSI request
            api_key: PSI API key; None or empty makes every call fail
            rate_limiter: Local daily/per-minute admission control
            ledger: Durable usage ledger
            endpoint: runPagespeed endpoint URL
            http_config: Timeouts for the PSI request
            app_host: Application host for same-host enforcement
            enforce_same_host: Reject URLs whose host differs from app_host

        Raises:
            ValueError: If same-host enforcement is on without an app host
        """
        if enforce_same_host and not app_host:
            raise ValueError("app_host is required when enforce_same_host is set")

        self.http_client = http_client
        self.api_key = api_key
        self.rate_limiter = rate_limiter
        self.ledger = ledger
        self.endpoint = endpoint
        self.http_config = http_config or HttpConfig()
        self.app_host = app_host
        self.enforce_same_host = enforce_same_host

    def validate(self, url: str, strategy: str) -> None:
        """Check a test request before any quota or ledger work.

        Raises:
            InvalidArgumentError: On a bad URL, strategy or host
        """
        if not url or not url.strip():
            raise InvalidArgumentError("URL is required")

        try:
            parsed = urlparse(url)
            host = parsed.hostname
        except ValueError:
            raise InvalidArgumentError(f"Invalid URL: {url}")

        if parsed.scheme not in ("http", "https") or not host or any(c.isspace() for c in url):
            raise InvalidArgumentError(f"Invalid URL: {url}")

        if strategy not in STRATEGIES:
            raise InvalidArgumentError(
                f'Invalid strategy "{strategy}". Use "mobile" or "desktop".'
            )

        if self.enforce_same_host and host.lower() != self.app_host.lower():
            raise InvalidArgumentError(
                f"URL host {host} does not match application host {self.app_host}"
            )

    def run_test(self, url: str, strategy: str = "mobile") -> PSIRunResult:
        """Run a PSI performance test for ``url``.

        Args:
            url: Absolute http(s) URL to test
            strategy: "mobile" or "desktop"

        Returns:
            PSIRunResult with normalized metrics and the raw response

        Raises:
            InvalidArgumentError: Bad input; nothing recorded
            MissingCredentialError: No API key; nothing recorded
            RateLimitExceededError: Local limit reached; nothing recorded
            ProviderError: Provider rejected the request; recorded as error
            ServerUnavailableError: Provider 5xx; recorded as error
            TransportFailureError: Network failure or timeout; recorded as error
        """
        self.validate(url, strategy)

        if not self.api_key:
            raise MissingCredentialError()

        if not self.rate_limiter.can_proceed():
            raise RateLimitExceededError(
                "Local PSI rate limit reached; wait for the window to roll over"
            )

        query = {
            "url": url,
            "strategy": strategy,
            "category": "performance",
            "key": self.api_key,
        }
        timeout = httpx.Timeout(
            self.http_config.timeout,
            connect=self.http_config.connect_timeout
        )

        logger.debug("Requesting PSI test for %s (%s)", url, strategy)
        try:
            response = self.http_client.get(self.endpoint, params=query, timeout=timeout)
        except httpx.RequestError as e:
            self.rate_limiter.record_proceeded()
            self._record_outcome(False)
            logger.warning("PSI request for %s failed: %s", url, e)
            raise TransportFailureError(f"PSI request failed: {e}") from e

        self.rate_limiter.record_proceeded()

        try:
            body = classify_response(response)
        except WatcherError as e:
            self._record_outcome(False)
            logger.warning("PSI test for %s failed (%s): %s", url, e.kind.value, e.message)
            raise

        self._record_outcome(True)
        return PSIRunResult(
            url=url,
            strategy=strategy,
            metrics=extract_metrics(body),
            raw_response=body
        )

    def test_page(self, url: str, strategy: str = "mobile") -> PageCheck:
        """Run a test and summarize it as an HTTP-style status.

        Classified failures are reported in the result instead of raised.
        """
        try:
            result = self.run_test(url, strategy)
        except WatcherError as e:
            return PageCheck(http_code=_status_for(e), score=None, error=_describe(e))

        return PageCheck(
            http_code=200,
            score=score_percent(result.metrics.score),
            error=None
        )

    def _record_outcome(self, success: bool) -> None:
        try:
            self.ledger.record_outcome(success)
        except LedgerError:
            logger.exception("Failed to record PSI usage; request result is unaffected")


_QUOTA_MESSAGE = "quota exceeded or rate limited (429)"


def _status_for(error: WatcherError) -> int:
    if isinstance(error, InvalidArgumentError):
        return 400
    if isinstance(error, MissingCredentialError):
        return 401
    if isinstance(error, RateLimitExceededError):
        return 429
    if isinstance(error, ServerUnavailableError):
        return 502
    if isinstance(error, TransportFailureError):
        return 504
    if isinstance(error, ProviderError):
        if error.provider_code == ProviderErrorCode.QUOTA_EXCEEDED:
            return 429
        for code in (error.code, error.status_code):
            if code is not None and code >= 400:
                return code
    return 502


def _describe(error: WatcherError) -> str:
    if isinstance(error, RateLimitExceededError):
        return _QUOTA_MESSAGE
    if isinstance(error, ProviderError) and error.provider_code == ProviderErrorCode.QUOTA_EXCEEDED:
        return _QUOTA_MESSAGE
    if isinstance(error, ServerUnavailableError):
        return "PSI server error (5xx), retry later"
    return error.message


def build_http_client(http_config: HttpConfig) -> httpx.Client:
    """Create the httpx client used for PSI requests.

    Transport retries only repeat failed connection attempts.
    """
    return httpx.Client(
        transport=httpx.HTTPTransport(retries=http_config.retries),
        timeout=httpx.Timeout(http_config.timeout, connect=http_config.connect_timeout)
    )


def create_client(
    config: WatcherConfig,
    http_client: Optional[httpx.Client] = None,
    store: Optional[CounterStore] = None
) -> PSIClient:
    """Wire a PSIClient from configuration.

    Creates the database schema if it is missing. The counter store
    defaults to the SQLite store in the configured database so limits are
    shared across processes.
    """
    initialize_schema(config.db_path)
    clock = config.clock()
    if store is None:
        store = SQLiteCounterStore(config.db_path, clock=clock)

    return PSIClient(
        http_client=http_client or build_http_client(config.http),
        api_key=config.api_key,
        rate_limiter=RateLimiter(store, config.quota, clock=clock),
        ledger=UsageLedger(config.quota, db_path=config.db_path, clock=clock),
        endpoint=config.endpoint,
        http_config=config.http,
        app_host=config.app_host,
        enforce_same_host=config.enforce_same_host
    )
