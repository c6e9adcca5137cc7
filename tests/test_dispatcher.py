from unittest import mock

import pytest

from sitemirror.dispatcher import InboundRequest, RequestDispatcher, raw_path
from sitemirror.errors import DispatchError, StrategyError
from sitemirror.sessions import Session
from sitemirror.strategies import UpstreamResponse

from conftest import PROXY_ORIGIN, StubStrategy


OK = UpstreamResponse(status=200, headers=[('Content-Type', 'text/plain')], body=b'ok')


@pytest.fixture
def session():
    return Session(id='s1', user_agent='TestAgent/1.0', cookie_header='upstream=1')


def test_first_successful_strategy_wins(rewriter, session):
    first = StubStrategy([OK])
    second = StubStrategy([OK])
    dispatcher = RequestDispatcher(rewriter, [first, second])

    response = dispatcher.dispatch(InboundRequest('GET', '/page'), session)

    assert response is OK
    assert len(first.requests) == 1
    assert second.requests == []


def test_falls_through_failing_strategies(rewriter, session):
    failing = StubStrategy(error=StrategyError('pooled', 'connection refused'))
    exploding = StubStrategy(error=RuntimeError('bad state'))
    working = StubStrategy([OK])
    dispatcher = RequestDispatcher(rewriter, [failing, exploding, working])

    assert dispatcher.dispatch(InboundRequest('GET', '/'), session) is OK
    assert len(failing.requests) == len(exploding.requests) == len(working.requests) == 1


def test_last_error_is_surfaced(rewriter, session):
    dispatcher = RequestDispatcher(rewriter, [
        StubStrategy(error=StrategyError('pooled', 'refused')),
        StubStrategy(error=StrategyError('fallback', 'timed out', 504)),
    ])

    with pytest.raises(DispatchError) as excinfo:
        dispatcher.dispatch(InboundRequest('GET', '/'), session)

    assert excinfo.value.status_code == 504
    assert 'fallback: timed out' in excinfo.value.message
    assert excinfo.value.last_error.strategy == 'fallback'


def test_status_defaults_to_500(rewriter, session):
    dispatcher = RequestDispatcher(rewriter, [StubStrategy(error=StrategyError('pooled', 'refused'))])
    with pytest.raises(DispatchError) as excinfo:
        dispatcher.dispatch(InboundRequest('GET', '/'), session)
    assert excinfo.value.status_code == 500


def test_strategies_that_do_not_apply_are_skipped(rewriter, session):
    skipped = StubStrategy([OK])
    skipped.applies_to = mock.Mock(return_value=False)
    used = StubStrategy([OK])
    dispatcher = RequestDispatcher(rewriter, [skipped, used])

    dispatcher.dispatch(InboundRequest('GET', '/'), session)

    skipped.applies_to.assert_called_once()
    assert skipped.requests == []
    assert len(used.requests) == 1


def test_outbound_request_shape(rewriter, session):
    stub = StubStrategy([OK])
    dispatcher = RequestDispatcher(rewriter, [stub])
    inbound = InboundRequest(
        'post',
        path='/login',
        query_string='next=%2Fhome',
        headers={
            'Referer': f'{PROXY_ORIGIN}/form',
            'X-Forwarded-For': '10.0.0.1',
            'X-Forwarded-Proto': 'http',
            'Origin': PROXY_ORIGIN,
            'Accept-Language': 'de-DE',
        },
        cookies={'sessionId': 's1', 'pref': 'dark'},
        body=b'user=a&pw=b',
    )

    dispatcher.dispatch(inbound, session)
    request = stub.requests[0]

    assert request.method == 'POST'
    assert request.url == 'https://example.com/login?next=%2Fhome'
    assert request.body == b'user=a&pw=b'
    assert request.session is session

    headers = request.headers
    assert headers['host'] == 'example.com'
    assert headers['user-agent'] == 'TestAgent/1.0'
    assert headers['referer'] == 'https://example.com/form'
    assert headers['origin'] == 'https://example.com'
    assert headers['sec-fetch-site'] == 'same-origin'
    assert headers['content-type'] == 'application/x-www-form-urlencoded'
    assert headers['accept-language'] == 'de-DE'
    assert headers['cookie'] == 'upstream=1; pref=dark'
    assert not [name for name in headers if name.startswith('x-forwarded')]


def test_get_without_referer(rewriter, session):
    stub = StubStrategy([OK])
    RequestDispatcher(rewriter, [stub]).dispatch(InboundRequest('GET', '/', body=b''), session)

    request = stub.requests[0]
    assert request.body is None
    assert request.headers['sec-fetch-site'] == 'none'
    assert 'referer' not in request.headers
    assert 'origin' not in request.headers


def test_close_closes_every_strategy(rewriter):
    strategies = [mock.Mock(), mock.Mock()]
    RequestDispatcher(rewriter, strategies).close()
    for strategy in strategies:
        strategy.close.assert_called_once_with()


def test_raw_path_prefers_server_supplied_uri():
    request = mock.Mock(path='/a?b', environ={'RAW_URI': '/a%3Fb?q=1'})
    assert raw_path(request) == '/a%3Fb'


def test_raw_path_requotes_decoded_path_without_raw_uri():
    request = mock.Mock(path='/a?b c%d', environ={})
    assert raw_path(request) == '/a%3Fb%20c%25d'
