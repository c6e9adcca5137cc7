from sitemirror.cookie_handler import (
    get_set_cookie_list,
    merge_set_cookies,
    parse_cookie_header,
    parse_set_cookie,
    rewrite_set_cookie,
)


def test_rewrite_for_insecure_local_proxy():
    header = "sid=abc123; Domain=example.com; Path=/; Secure; HttpOnly; SameSite=None"
    rewritten = rewrite_set_cookie(header, insecure_proxy=True)

    assert rewritten == "sid=abc123; Path=/; HttpOnly; SameSite=Lax"
    assert 'domain' not in rewritten.lower()
    assert 'secure' not in rewritten.lower()


def test_rewrite_keeps_secure_over_tls():
    header = "sid=abc123; domain=.example.com; secure; samesite=strict"
    assert rewrite_set_cookie(header, insecure_proxy=False) == "sid=abc123; secure; SameSite=Lax"


def test_rewrite_leaves_other_attributes_alone():
    header = "theme=dark; Expires=Wed, 21 Oct 2030 07:28:00 GMT; Max-Age=3600"
    assert rewrite_set_cookie(header, insecure_proxy=True) == header


def test_parse_set_cookie():
    cookie = parse_set_cookie("sid=a=b; Path=/app; Domain=.example.com; Max-Age=60; Secure; HttpOnly")
    assert cookie['name'] == 'sid'
    assert cookie['value'] == 'a=b'
    assert cookie['path'] == '/app'
    assert cookie['domain'] == 'example.com'
    assert cookie['maxAge'] == 60
    assert cookie['secure'] and cookie['httpOnly']


def test_parse_cookie_header():
    assert parse_cookie_header("a=1; b=2;  c=x=y") == {'a': '1', 'b': '2', 'c': 'x=y'}
    assert parse_cookie_header("") == {}


def test_merge_set_cookies_accumulates_and_expires():
    jar = merge_set_cookies("", ["a=1; Path=/", "b=2"])
    assert jar == "a=1; b=2"

    jar = merge_set_cookies(jar, ["a=3", "b=; Max-Age=0"])
    assert jar == "a=3"


def test_get_set_cookie_list_keeps_each_line():
    headers = [
        ('Content-Type', 'text/html'),
        ('Set-Cookie', 'a=1'),
        ('set-cookie', 'b=2; Expires=Wed, 21 Oct 2030 07:28:00 GMT'),
    ]
    assert get_set_cookie_list(headers) == ['a=1', 'b=2; Expires=Wed, 21 Oct 2030 07:28:00 GMT']
