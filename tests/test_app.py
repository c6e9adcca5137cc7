from bs4 import BeautifulSoup

from sitemirror.errors import StrategyError
from sitemirror.inject import SHIM_MARKER
from sitemirror.strategies import UpstreamResponse

from conftest import PROXY_ORIGIN, StubStrategy, html_response


def session_cookie(response):
    for header in response.headers.getlist('Set-Cookie'):
        if header.startswith('sessionId='):
            return header
    return None


def test_page_is_rewritten_end_to_end(client, stub):
    response = client.get('/page')

    assert response.status_code == 200
    soup = BeautifulSoup(response.get_data(as_text=True), 'lxml')
    assert soup.find('a')['href'] == f"{PROXY_ORIGIN}/x"
    assert soup.head.find('base')['href'] == f"{PROXY_ORIGIN}/"
    assert soup.head.find('script', attrs={SHIM_MARKER: 'true'}) is not None
    assert stub.requests[0].url == 'https://example.com/page'


def test_session_cookie_issued_once_and_reused(client, stub, sessions):
    first = client.get('/')
    issued = session_cookie(first)
    assert issued is not None
    assert 'HttpOnly' in issued
    assert 'SameSite=Lax' in issued
    assert 'Secure' not in issued

    session_id = issued.split(';')[0].split('=', 1)[1]
    second = client.get('/again')

    assert session_cookie(second) is None
    assert stub.requests[1].session.id == session_id
    assert stub.requests[1].headers['user-agent'] == sessions.get(session_id).user_agent
    assert stub.requests[0].headers['user-agent'] == stub.requests[1].headers['user-agent']


def test_stale_session_cookie_is_not_reissued(client, stub, sessions):
    client.set_cookie('sessionId', 'expired-id')
    response = client.get('/')

    assert session_cookie(response) is None
    assert stub.requests[0].session.id != 'expired-id'
    assert sessions.get(stub.requests[0].session.id) is not None


def test_response_headers_normalized(make_client):
    stub = StubStrategy([html_response('<p>x</p>', headers=[
        ('Content-Security-Policy', "default-src 'self'"),
        ('X-Frame-Options', 'DENY'),
        ('Strict-Transport-Security', 'max-age=63072000'),
        ('Cross-Origin-Opener-Policy', 'same-origin'),
        ('Content-Encoding', 'gzip'),
        ('Set-Cookie', 'a=1; Domain=example.com; Secure; SameSite=None'),
        ('Set-Cookie', 'b=2; Path=/'),
        ('X-Custom', 'kept'),
    ])])
    response = make_client(stub).get('/')

    headers = response.headers
    for name in ('Content-Security-Policy', 'X-Frame-Options', 'Strict-Transport-Security',
                 'Cross-Origin-Opener-Policy', 'Content-Encoding'):
        assert name not in headers
    assert headers['X-Custom'] == 'kept'
    assert headers['Access-Control-Allow-Origin'] == '*'
    assert headers['Access-Control-Allow-Credentials'] == 'true'

    upstream_cookies = [c for c in headers.getlist('Set-Cookie') if not c.startswith('sessionId=')]
    assert upstream_cookies == ['a=1; SameSite=Lax', 'b=2; Path=/']


def test_upstream_cookies_sent_on_later_requests(make_client):
    stub = StubStrategy([
        html_response('<p>login</p>', headers=[('Set-Cookie', 'auth=tok; Path=/')]),
        html_response('<p>home</p>'),
    ])
    client = make_client(stub)
    client.get('/login')
    client.get('/home')

    assert 'auth=tok' in stub.requests[1].headers['cookie']


def test_absolute_redirect_rewritten(make_client):
    stub = StubStrategy([UpstreamResponse(302, [('Location', 'https://example.com/next?a=1')])])
    response = make_client(stub).get('/start')

    assert response.status_code == 302
    assert response.headers['Location'] == f"{PROXY_ORIGIN}/next?a=1"


def test_root_relative_redirect_passes_through(make_client):
    stub = StubStrategy([UpstreamResponse(301, [('Location', '/moved')])])
    response = make_client(stub).get('/old')

    assert response.status_code == 301
    assert response.headers['Location'] == '/moved'


def test_binary_body_untouched(make_client):
    payload = bytes(range(256))
    stub = StubStrategy([UpstreamResponse(200, [('Content-Type', 'image/png')], payload)])
    response = make_client(stub).get('/logo.png')

    assert response.get_data() == payload
    assert response.headers['Content-Type'] == 'image/png'


def test_css_response_rewritten(make_client):
    stub = StubStrategy([UpstreamResponse(200, [('Content-Type', 'text/css')], b'a{b:url(/c.png)}')])
    response = make_client(stub).get('/site.css')
    assert response.get_data(as_text=True) == f"a{{b:url('{PROXY_ORIGIN}/c.png')}}"


def test_post_body_forwarded(client, stub):
    client.post('/form?x=1', data=b'name=value', content_type='application/x-www-form-urlencoded')

    request = stub.requests[0]
    assert request.method == 'POST'
    assert request.url == 'https://example.com/form?x=1'
    assert request.body == b'name=value'


def test_get_responses_cached_when_enabled(make_client):
    stub = StubStrategy([html_response('<p>cached</p>')])
    client = make_client(stub, enable_cache=True)

    first = client.get('/cacheable')
    second = client.get('/cacheable')

    assert len(stub.requests) == 1
    assert first.get_data() == second.get_data()

    client.post('/_cache/clear')
    client.get('/cacheable')
    assert len(stub.requests) == 2


def test_cache_bypassed_when_disabled_and_for_post(make_client):
    stub = StubStrategy([html_response('<p>x</p>')])
    client = make_client(stub)
    client.get('/a')
    client.get('/a')
    assert len(stub.requests) == 2

    post_stub = StubStrategy([html_response('<p>x</p>')])
    cached = make_client(post_stub, enable_cache=True)
    cached.post('/a')
    cached.post('/a')
    assert len(post_stub.requests) == 2


def test_encoded_path_forwarded_verbatim(client, stub):
    client.get('/files/a%3Fb%2Fc%25d?x=1')

    assert stub.requests[0].url == 'https://example.com/files/a%3Fb%2Fc%25d?x=1'


def test_encoded_and_decoded_paths_cached_separately(make_client):
    stub = StubStrategy([html_response('<p>x</p>')])
    client = make_client(stub, enable_cache=True)

    client.get('/files/a%2Fb')
    client.get('/files/a/b')

    assert [request.url for request in stub.requests] == [
        'https://example.com/files/a%2Fb',
        'https://example.com/files/a/b',
    ]


def test_dispatch_failure_renders_error_page(make_client):
    stub = StubStrategy(error=StrategyError('fallback', 'connection refused', 502))
    response = make_client(stub).get('/down')

    assert response.status_code == 502
    body = response.get_data(as_text=True)
    assert 'Unable to Load Page' in body
    assert 'fallback: connection refused' in body
    assert 'Try refreshing the page' in body


def test_health_endpoint(client, stub):
    response = client.get('/_health')

    assert response.status_code == 200
    assert response.get_json() == {
        'status': 'ok',
        'targetUrl': 'https://example.com',
        'proxyHost': 'localhost:3000',
        'isVercel': False,
        'cacheEnabled': False,
    }
    assert stub.requests == []


def test_cache_clear_endpoint(client):
    response = client.post('/_cache/clear')
    assert response.status_code == 200
    assert response.get_json() == {'message': 'Cache cleared'}
