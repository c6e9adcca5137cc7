import pytest

from sitemirror.app import create_app
from sitemirror.cache import ResponseCache
from sitemirror.config import ProxyConfig
from sitemirror.dispatcher import RequestDispatcher
from sitemirror.handler import ProxyHandler
from sitemirror.sessions import SessionStore
from sitemirror.strategies import TransportStrategy, UpstreamResponse
from sitemirror.url_rewriter import URLRewriter


PROXY_ORIGIN = "http://localhost:3000"
TARGET_ORIGIN = "https://example.com"


class StubStrategy(TransportStrategy):
    """Strategy double serving canned responses and recording requests."""

    name = 'stub'

    def __init__(self, responses=None, error=None):
        super().__init__()
        self.responses = list(responses or [])
        self.error = error
        self.requests = []

    def attempt(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def html_response(body, status=200, headers=None):
    return UpstreamResponse(
        status=status,
        headers=[('Content-Type', 'text/html; charset=utf-8')] + list(headers or []),
        body=body.encode('utf-8'),
    )


@pytest.fixture
def config():
    return ProxyConfig(target_url=TARGET_ORIGIN, proxy_host="localhost:3000", port=3000)


@pytest.fixture
def rewriter(config):
    return URLRewriter.from_config(config)


@pytest.fixture
def sessions():
    return SessionStore()


@pytest.fixture
def stub():
    return StubStrategy([html_response('<html><head></head><body><a href="/x">x</a></body></html>')])


@pytest.fixture
def make_client(config, rewriter, sessions):
    """Build a Flask test client whose only transport is the given stub."""

    def factory(stub, enable_cache=False):
        config.enable_cache = enable_cache
        cache = ResponseCache(ttl=config.cache_ttl, capacity=config.cache_capacity,
                              enabled=enable_cache)
        dispatcher = RequestDispatcher(rewriter, [stub])
        handler = ProxyHandler(config, rewriter=rewriter, sessions=sessions,
                               cache=cache, dispatcher=dispatcher)
        app = create_app(config, handler=handler)
        app.config['TESTING'] = True
        return app.test_client()

    return factory


@pytest.fixture
def client(make_client, stub):
    return make_client(stub)
