"""
SiteMirror - Request Dispatcher
Builds the browser-like outbound request and walks the transport
strategies until one of them produces a response.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
from urllib.parse import quote

from .config import ProxyConfig
from .cookie_handler import parse_cookie_header, serialize_cookies
from .errors import DispatchError, StrategyError
from .fingerprint import FingerprintEngine
from .sessions import Session, SessionStore
from .strategies import (
    FallbackStrategy,
    FingerprintedStrategy,
    Http2RetryStrategy,
    OutboundRequest,
    PooledStrategy,
    TransportStrategy,
    UpstreamResponse,
)
from .url_rewriter import URLRewriter


logger = logging.getLogger(__name__)


# Inbound headers copied onto the outbound request when present
FORWARDED_HEADERS = (
    'accept',
    'accept-language',
    'content-type',
    'range',
    'if-none-match',
    'if-modified-since',
    'x-requested-with',
    'authorization',
)

DEFAULT_ACCEPT = 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8'

METHODS_WITHOUT_BODY = {'GET', 'HEAD', 'OPTIONS'}

# RFC 3986 pchar characters plus the path separator
PATH_SAFE_CHARS = "/:@!$&'()*+,;=-._~"


@dataclass
class InboundRequest:
    """The parts of a client request the proxy core needs."""
    method: str
    path: str = '/'
    query_string: str = ''
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None

    def __post_init__(self):
        self.method = self.method.upper()
        self.headers = {key.lower(): value for key, value in self.headers.items()}

    @property
    def full_path(self) -> str:
        if self.query_string:
            return f"{self.path}?{self.query_string}"
        return self.path

    @classmethod
    def from_flask(cls, flask_request) -> 'InboundRequest':
        return cls(
            method=flask_request.method,
            path=raw_path(flask_request),
            query_string=flask_request.query_string.decode('latin-1'),
            headers=dict(flask_request.headers),
            cookies=dict(flask_request.cookies),
            body=flask_request.get_data(),
        )


def raw_path(flask_request) -> str:
    """
    Path exactly as the client sent it, percent-encoding intact.

    Werkzeug decodes ``request.path``, which would turn ``%3F`` into a
    query separator and ``%2F`` into a path segment.
    """
    environ = flask_request.environ
    raw_uri = environ.get('RAW_URI') or environ.get('REQUEST_URI')
    if raw_uri:
        path = raw_uri.split('?', 1)[0]
        if path.startswith('/'):
            return path
    return quote(flask_request.path, safe=PATH_SAFE_CHARS)


class RequestDispatcher:
    """
    Issues one logical request against the target using an ordered list
    of transport strategies.

    A failing strategy is logged and the next one is tried; only when all
    of them fail does :class:`DispatchError` reach the caller, carrying
    the last error seen.
    """

    def __init__(self, rewriter: URLRewriter, strategies: Sequence[TransportStrategy],
                 session_cookie_name: str = 'sessionId'):
        self.rewriter = rewriter
        self.strategies: List[TransportStrategy] = list(strategies)
        self.session_cookie_name = session_cookie_name

    @classmethod
    def from_config(cls, config: ProxyConfig, rewriter: URLRewriter,
                    sessions: SessionStore,
                    engine: Optional[FingerprintEngine] = None) -> 'RequestDispatcher':
        engine = engine or FingerprintEngine()
        timeout = config.request_timeout
        strategies = [
            FingerprintedStrategy(engine, timeout=timeout),
            PooledStrategy(timeout=timeout),
            Http2RetryStrategy(sessions, timeout=timeout),
            FallbackStrategy(timeout=timeout),
        ]
        return cls(rewriter, strategies, session_cookie_name=config.session_cookie_name)

    def target_url_for(self, inbound: InboundRequest) -> str:
        return f"{self.rewriter.target_base}{inbound.full_path}"

    def build_headers(self, inbound: InboundRequest, session: Session) -> Dict[str, str]:
        """
        Build the outbound header set: a full desktop browser profile, the
        session's pinned user agent and accumulated cookies, and the
        inbound referer and origin translated to the target origin.
        """
        referer = inbound.headers.get('referer')

        headers = {
            'host': self.rewriter.target_host,
            'user-agent': session.user_agent,
            'accept': DEFAULT_ACCEPT,
            'accept-language': 'en-US,en;q=0.9',
            'accept-encoding': 'gzip, deflate, br',
            'cache-control': 'no-cache',
            'pragma': 'no-cache',
            'dnt': '1',
            'sec-ch-ua': '"Chromium";v="122", "Not(A:Brand";v="24", "Google Chrome";v="122"',
            'sec-ch-ua-mobile': '?0',
            'sec-ch-ua-platform': '"Windows"',
            'sec-fetch-dest': 'document',
            'sec-fetch-mode': 'navigate',
            'sec-fetch-site': 'same-origin' if referer else 'none',
            'sec-fetch-user': '?1',
            'upgrade-insecure-requests': '1',
            'connection': 'keep-alive',
        }

        for name in FORWARDED_HEADERS:
            if inbound.headers.get(name):
                headers[name] = inbound.headers[name]

        if referer:
            headers['referer'] = self.rewriter.to_target_url(referer)

        if inbound.method == 'POST' or 'origin' in inbound.headers:
            headers['origin'] = self.rewriter.target_base
        if inbound.method == 'POST':
            headers.setdefault('content-type', 'application/x-www-form-urlencoded')

        cookies = parse_cookie_header(session.cookie_header)
        client_cookies = {name: value for name, value in inbound.cookies.items()
                          if name != self.session_cookie_name}
        cookies.update(client_cookies)
        if cookies:
            headers['cookie'] = serialize_cookies(cookies)

        return headers

    def prepare(self, inbound: InboundRequest, session: Session) -> OutboundRequest:
        body = None
        if inbound.method not in METHODS_WITHOUT_BODY:
            body = inbound.body or b''
        return OutboundRequest(
            method=inbound.method,
            url=self.target_url_for(inbound),
            headers=self.build_headers(inbound, session),
            body=body,
            session=session,
        )

    def dispatch(self, inbound: InboundRequest, session: Session) -> UpstreamResponse:
        """
        Fetch the target resource for an inbound request.

        Raises:
            DispatchError: when every applicable strategy failed
        """
        request = self.prepare(inbound, session)
        return self.send(request)

    def send(self, request: OutboundRequest) -> UpstreamResponse:
        last_error: Optional[Exception] = None

        for strategy in self.strategies:
            if not strategy.applies_to(request):
                continue
            try:
                response = strategy.attempt(request)
            except StrategyError as e:
                logger.warning("Strategy %s failed for %s %s: %s",
                               strategy.name, request.method, request.url, e)
                last_error = e
                continue
            except Exception as e:
                logger.warning("Strategy %s raised unexpectedly for %s %s: %r",
                               strategy.name, request.method, request.url, e)
                last_error = e
                continue

            logger.debug("%s %s -> %d via %s", request.method, request.url,
                         response.status, strategy.name)
            return response

        status_code = getattr(last_error, 'status_code', None)
        message = str(last_error) if last_error else "No request strategy applied"
        raise DispatchError(message, status_code=status_code, last_error=last_error)

    def close(self) -> None:
        for strategy in self.strategies:
            strategy.close()
