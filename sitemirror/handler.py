"""
SiteMirror - Proxy Request Handler
Ties the pieces together for one inbound request: session, cache,
dispatch, body rewriting and response-header normalization.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from flask import Response

from .cache import CacheEntry, ResponseCache
from .config import ProxyConfig
from .cookie_handler import get_set_cookie_list, rewrite_set_cookie
from .dispatcher import InboundRequest, RequestDispatcher
from .fingerprint import FingerprintEngine
from .rewrite_html import ContentTransformer
from .sessions import Session, SessionStore
from .strategies import UpstreamResponse
from .url_rewriter import URLRewriter
from .utils import decode_body, encode_body, is_text_content


logger = logging.getLogger(__name__)


REDIRECT_STATUSES = {301, 302, 303, 307, 308}

# Hop-by-hop and framing headers; the body may have been decoded or rewritten
STRIPPED_RESPONSE_HEADERS = {
    'content-encoding',
    'content-length',
    'transfer-encoding',
    'connection',
    'keep-alive',
}

# Headers that would stop the mirrored page from working on the proxy origin
PROTECTIVE_HEADERS = {
    'content-security-policy',
    'content-security-policy-report-only',
    'x-frame-options',
    'x-content-type-options',
    'x-xss-protection',
    'strict-transport-security',
    'report-to',
    'nel',
    'expect-ct',
    'permissions-policy',
}

CORS_ALLOW_METHODS = 'GET, POST, PUT, DELETE, PATCH, OPTIONS, HEAD'

Headers = List[Tuple[str, str]]


class ProxyHandler:
    """
    The proxy core behind the catch-all route.

    Collaborators are created from the configuration unless passed in,
    which is how tests swap in stub transport strategies.
    """

    def __init__(self, config: ProxyConfig,
                 rewriter: Optional[URLRewriter] = None,
                 transformer: Optional[ContentTransformer] = None,
                 sessions: Optional[SessionStore] = None,
                 cache: Optional[ResponseCache] = None,
                 dispatcher: Optional[RequestDispatcher] = None,
                 engine: Optional[FingerprintEngine] = None):
        self.config = config
        self.rewriter = rewriter or URLRewriter.from_config(config)
        self.transformer = transformer or ContentTransformer(
            self.rewriter, inject_stealth=config.inject_stealth)
        self.sessions = sessions or SessionStore(max_age=config.session_max_age)
        self.cache = cache or ResponseCache(
            ttl=config.cache_ttl,
            capacity=config.cache_capacity,
            enabled=config.enable_cache,
        )
        self.dispatcher = dispatcher or RequestDispatcher.from_config(
            config, self.rewriter, self.sessions, engine)

    def handle(self, inbound: InboundRequest) -> Response:
        """
        Serve one inbound request through the target origin.

        Raises:
            DispatchError: when no transport strategy could reach the target
        """
        presented = inbound.cookies.get(self.config.session_cookie_name)
        session, created = self.sessions.resolve(presented)
        # A client holding any session id, even a stale one, is not sent a new cookie
        issue = created and not presented
        target_url = self.dispatcher.target_url_for(inbound)
        cacheable = inbound.method == 'GET' and self.cache.enabled

        if cacheable:
            entry = self.cache.get(target_url)
            if entry is not None:
                logger.debug("Cache hit: %s", target_url)
                response = Response(entry.body, status=entry.status_code, headers=entry.headers)
                return self._issue_session(response, session, issue)
            logger.debug("Cache miss: %s", target_url)

        upstream = self.dispatcher.dispatch(inbound, session)
        self.sessions.record_cookies(session.id, get_set_cookie_list(upstream.headers))

        headers = self.normalize_headers(upstream.headers, target_url)

        if upstream.status in REDIRECT_STATUSES and upstream.header('location'):
            response = Response(b'', status=upstream.status, headers=headers)
            return self._issue_session(response, session, issue)

        body = self.rewrite_body(upstream, target_url)

        if cacheable and upstream.status == 200:
            # Cookies belong to the session that triggered the fetch
            shared = [(name, value) for name, value in headers if name.lower() != 'set-cookie']
            self.cache.put(target_url, CacheEntry(target_url, body, shared, upstream.status))

        response = Response(body, status=upstream.status, headers=headers)
        return self._issue_session(response, session, issue)

    def rewrite_body(self, upstream: UpstreamResponse, page_url: str) -> bytes:
        """Rewrite text bodies; anything else is passed through byte for byte."""
        content_type = upstream.content_type
        if not upstream.body or not is_text_content(content_type):
            return upstream.body

        text = decode_body(upstream.body, content_type)
        rewritten = self.transformer.transform(text, content_type, page_url)
        if rewritten is text:
            return upstream.body
        return encode_body(rewritten, content_type)

    def normalize_headers(self, headers: Iterable[Tuple[str, str]], page_url: str) -> Headers:
        """
        Filter and rewrite upstream response headers for the client.

        Set-Cookie lines stay separate; Location is moved onto the proxy
        origin; permissive CORS headers replace whatever upstream sent.
        """
        insecure = self.config.proxy_scheme == 'http'
        normalized: Headers = []

        for name, value in headers:
            lower = name.lower()
            if (lower in STRIPPED_RESPONSE_HEADERS or lower in PROTECTIVE_HEADERS
                    or lower.startswith('cross-origin-') or lower.startswith('access-control-')):
                continue

            if lower == 'set-cookie':
                value = rewrite_set_cookie(value, insecure)
            elif lower == 'location':
                value = self.rewriter.rewrite_location(value, page_url)

            normalized.append((name, value))

        normalized.extend(self.cors_headers())
        return normalized

    def cors_headers(self) -> Headers:
        headers = [
            ('Access-Control-Allow-Origin', '*'),
            ('Access-Control-Allow-Methods', CORS_ALLOW_METHODS),
            ('Access-Control-Allow-Headers', '*'),
        ]
        if self.config.allow_credentials:
            headers.append(('Access-Control-Allow-Credentials', 'true'))
        return headers

    def _issue_session(self, response: Response, session: Session, issue: bool) -> Response:
        if issue:
            response.set_cookie(
                self.config.session_cookie_name,
                session.id,
                max_age=self.config.session_max_age,
                httponly=True,
                secure=not self.config.is_local,
                samesite='Lax',
            )
        return response

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Response cache cleared")

    def close(self) -> None:
        self.sessions.stop()
        self.dispatcher.close()
