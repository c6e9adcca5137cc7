"""
SiteMirror - Transport Strategies

Interchangeable ways of fetching one outbound request. The dispatcher
tries them in priority order; each one either returns an
:class:`UpstreamResponse` or raises :class:`StrategyError`. None of them
follow redirects.
"""

import logging
import time
from dataclasses import dataclass, field
from http.cookiejar import DefaultCookiePolicy
from typing import Dict, List, Optional, Tuple

import httpx
import requests
import urllib3
from curl_cffi import CurlError
from curl_cffi import requests as curl_requests
from requests.adapters import HTTPAdapter

from .cookie_handler import parse_cookie_header, serialize_cookies
from .errors import StrategyError
from .fingerprint import FingerprintEngine
from .sessions import Session, SessionStore
from .utils import decode_body, is_html_content


logger = logging.getLogger(__name__)

# Upstream certificates are not verified (self-signed targets are common)
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


RETRY_STATUS_CODES = frozenset({408, 413, 429, 500, 502, 503, 504})
RETRY_METHODS = frozenset({'GET', 'HEAD', 'OPTIONS', 'PUT', 'DELETE', 'TRACE'})
RETRY_LIMIT = 2

REQUEST_TIMEOUT = 30

# Pooled clients are shared by every proxy session and must not keep cookies
NO_COOKIES = DefaultCookiePolicy(allowed_domains=[])


@dataclass
class OutboundRequest:
    """A fully prepared request to the target origin."""
    method: str
    url: str
    headers: Dict[str, str]
    body: Optional[bytes] = None
    session: Optional[Session] = None


@dataclass
class UpstreamResponse:
    """Strategy-independent view of a target response."""
    status: int
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b''

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return default

    @property
    def content_type(self) -> str:
        return self.header('content-type', '') or ''

    @property
    def text(self) -> str:
        return decode_body(self.body, self.content_type)


class TransportStrategy:
    """Base class: one way of sending an :class:`OutboundRequest`."""

    name = 'transport'

    def __init__(self, timeout: float = REQUEST_TIMEOUT):
        self.timeout = timeout

    def applies_to(self, request: OutboundRequest) -> bool:
        return True

    def attempt(self, request: OutboundRequest) -> UpstreamResponse:
        raise NotImplementedError()

    def close(self) -> None:
        pass

    def _fail(self, error: Exception, status_code: Optional[int] = None) -> StrategyError:
        return StrategyError(self.name, str(error) or error.__class__.__name__, status_code)


class FingerprintedStrategy(TransportStrategy):
    """
    HTTP/2 over TLS with a browser-identical handshake (curl_cffi).

    Only used for targets that look protected. A challenge response is
    solved and the resubmission fetched once; an unsolvable challenge is
    returned as-is.
    """

    name = 'fingerprinted'

    def __init__(self, engine: FingerprintEngine, timeout: float = REQUEST_TIMEOUT):
        super().__init__(timeout)
        self.engine = engine

    def applies_to(self, request: OutboundRequest) -> bool:
        return self.engine.is_likely_protected(request.url)

    def attempt(self, request: OutboundRequest) -> UpstreamResponse:
        response = self._fetch(request.method, request.url, request.headers, request.body)

        if is_html_content(response.content_type) and self.engine.is_challenge_page(response.text):
            solved_url = self.engine.solve_challenge(response.text, request.url)
            if solved_url:
                logger.info("Resubmitting solved challenge for %s", request.url)
                response = self._fetch('GET', solved_url, request.headers, None)
            else:
                logger.info("Challenge for %s left unsolved", request.url)

        return response

    def _fetch(self, method: str, url: str, headers: Dict[str, str],
               body: Optional[bytes]) -> UpstreamResponse:
        profile = self.engine.build_handshake_profile()
        try:
            response = curl_requests.request(
                method,
                url,
                headers=headers,
                data=body,
                ja3=profile.ja3,
                akamai=profile.akamai,
                extra_fp=profile.extra_fp,
                allow_redirects=False,
                timeout=self.timeout,
                verify=False,
            )
        except CurlError as e:
            raise self._fail(e)

        return UpstreamResponse(
            status=response.status_code,
            headers=list(response.headers.multi_items()),
            body=response.content,
        )


class PooledStrategy(TransportStrategy):
    """High-throughput keep-alive connection pool (httpx)."""

    name = 'pooled'

    def __init__(self, timeout: float = REQUEST_TIMEOUT, client: Optional[httpx.Client] = None):
        super().__init__(timeout)
        self.client = client or httpx.Client(
            timeout=httpx.Timeout(timeout),
            follow_redirects=False,
            verify=False,
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20,
                                keepalive_expiry=30.0),
        )
        self.client.cookies.jar.set_policy(NO_COOKIES)

    def attempt(self, request: OutboundRequest) -> UpstreamResponse:
        try:
            response = self.client.request(
                method=request.method,
                url=request.url,
                headers=request.headers,
                content=request.body,
            )
        except httpx.TimeoutException as e:
            raise self._fail(e, 504)
        except httpx.HTTPError as e:
            raise self._fail(e)

        return _from_httpx(response)

    def close(self) -> None:
        self.client.close()


class Http2RetryStrategy(TransportStrategy):
    """
    HTTP/2-capable client with a small retry budget (httpx + h2).

    Idempotent requests answered with a transient status, or failing at
    the transport level, are retried up to ``retries`` times. Cookies the
    target sets are kept in the session's jar.
    """

    name = 'http2'

    def __init__(self, sessions: Optional[SessionStore] = None,
                 timeout: float = REQUEST_TIMEOUT, retries: int = RETRY_LIMIT,
                 client: Optional[httpx.Client] = None):
        super().__init__(timeout)
        self.sessions = sessions
        self.retries = retries
        self.client = client or httpx.Client(
            http2=True,
            timeout=httpx.Timeout(timeout),
            follow_redirects=False,
            verify=False,
        )
        self.client.cookies.jar.set_policy(NO_COOKIES)

    def attempt(self, request: OutboundRequest) -> UpstreamResponse:
        jar = None
        if self.sessions is not None and request.session is not None:
            jar = self.sessions.cookie_jar(request.session.id)

        retryable = request.method.upper() in RETRY_METHODS
        attempts = self.retries + 1 if retryable else 1

        attempt = 1
        while True:
            outbound = self.client.build_request(
                request.method, request.url,
                headers=self._with_jar_cookies(request.headers, jar, request.url),
                content=request.body,
            )
            try:
                response = self.client.send(outbound)
            except httpx.TransportError as e:
                if attempt >= attempts:
                    raise self._fail(e, 504 if isinstance(e, httpx.TimeoutException) else None)
                logger.debug("%s %s failed (%s), retrying", request.method, request.url, e)
            else:
                if jar is not None:
                    jar.extract_cookies(response)
                if response.status_code not in RETRY_STATUS_CODES or attempt >= attempts:
                    return _from_httpx(response)
                logger.debug("%s %s returned %d, retrying", request.method, request.url,
                             response.status_code)
                response.close()

            self._backoff(attempt)
            attempt += 1

    def _with_jar_cookies(self, headers: Dict[str, str], jar: Optional[httpx.Cookies],
                          url: str) -> Dict[str, str]:
        if not jar:
            return headers

        carrier = httpx.Request('GET', url)
        jar.set_cookie_header(carrier)
        cookies = parse_cookie_header(headers.get('cookie', ''))
        cookies.update(parse_cookie_header(carrier.headers.get('cookie', '')))
        if not cookies:
            return headers

        merged = dict(headers)
        merged['cookie'] = serialize_cookies(cookies)
        return merged

    @staticmethod
    def _backoff(attempt: int) -> None:
        time.sleep(min(0.25 * (2 ** (attempt - 1)), 2.0))

    def close(self) -> None:
        self.client.close()


class FallbackStrategy(TransportStrategy):
    """Plain requests session with explicit keep-alive connection pools."""

    name = 'fallback'

    def __init__(self, timeout: float = REQUEST_TIMEOUT, session: Optional[requests.Session] = None):
        super().__init__(timeout)
        self.session = session or requests.Session()
        adapter = HTTPAdapter(pool_connections=16, pool_maxsize=64, max_retries=0)
        self.session.mount('http://', adapter)
        self.session.mount('https://', adapter)
        self.session.headers['Connection'] = 'keep-alive'
        self.session.cookies.set_policy(NO_COOKIES)

    def attempt(self, request: OutboundRequest) -> UpstreamResponse:
        try:
            response = self.session.request(
                method=request.method,
                url=request.url,
                headers=request.headers,
                data=request.body,
                allow_redirects=False,
                timeout=self.timeout,
                verify=False,
            )
        except requests.exceptions.Timeout as e:
            raise self._fail(e, 504)
        except requests.exceptions.RequestException as e:
            raise self._fail(e)

        return UpstreamResponse(
            status=response.status_code,
            headers=list(response.raw.headers.iteritems()),
            body=response.content,
        )

    def close(self) -> None:
        self.session.close()


def _from_httpx(response: httpx.Response) -> UpstreamResponse:
    return UpstreamResponse(
        status=response.status_code,
        headers=list(response.headers.multi_items()),
        body=response.content,
    )
