"""
SiteMirror - Cookie Handler
Set-Cookie rewriting for the proxy origin and per-session cookie accumulation.
"""

from typing import Any, Dict, Iterable, List, Tuple


def parse_set_cookie(header: str) -> Dict[str, Any]:
    """
    Parse a Set-Cookie header into a cookie object.

    Args:
        header: The Set-Cookie header value

    Returns:
        A dictionary with the cookie name, value and attributes
    """
    cookie = {
        'name': '',
        'value': '',
        'path': '/',
        'domain': '',
        'expires': None,
        'maxAge': None,
        'secure': False,
        'httpOnly': False,
        'sameSite': None
    }

    if not header:
        return cookie

    parts = header.split(';')

    # First part is name=value
    first_part = parts[0].strip()
    eq_index = first_part.find('=')
    if eq_index > 0:
        cookie['name'] = first_part[:eq_index].strip()
        cookie['value'] = first_part[eq_index + 1:].strip()

    for part in parts[1:]:
        part = part.strip()
        if not part:
            continue

        lower_part = part.lower()

        if lower_part == 'secure':
            cookie['secure'] = True
        elif lower_part == 'httponly':
            cookie['httpOnly'] = True
        elif '=' in part:
            attr_name, attr_value = part.split('=', 1)
            attr_name = attr_name.strip().lower()
            attr_value = attr_value.strip()

            if attr_name == 'path':
                cookie['path'] = attr_value
            elif attr_name == 'domain':
                cookie['domain'] = attr_value.lstrip('.')
            elif attr_name == 'expires':
                cookie['expires'] = attr_value
            elif attr_name == 'max-age':
                try:
                    cookie['maxAge'] = int(attr_value)
                except ValueError:
                    pass
            elif attr_name == 'samesite':
                cookie['sameSite'] = attr_value.lower()

    return cookie


def rewrite_set_cookie(header: str, insecure_proxy: bool) -> str:
    """
    Rewrite a Set-Cookie header so the browser binds it to the proxy host.

    Drops Domain, drops Secure when the proxy is served over plain http,
    and normalizes SameSite to Lax. Every other attribute passes through
    in its original order.

    Args:
        header: The original Set-Cookie header
        insecure_proxy: True when clients reach the proxy without TLS

    Returns:
        Rewritten Set-Cookie header
    """
    modified = []

    for part in header.split(';'):
        part = part.strip()
        if not part:
            continue
        lower = part.lower()

        if lower.startswith('domain='):
            continue
        if lower == 'secure' and insecure_proxy:
            continue
        if lower.startswith('samesite='):
            modified.append('SameSite=Lax')
            continue

        modified.append(part)

    return '; '.join(modified)


def parse_cookie_header(cookie_header: str) -> Dict[str, str]:
    """
    Parse a Cookie header into an ordered name -> value mapping.

    Args:
        cookie_header: The Cookie header value

    Returns:
        Mapping of cookie names to values
    """
    cookies = {}

    if not cookie_header:
        return cookies

    for part in cookie_header.split(';'):
        part = part.strip()
        eq_index = part.find('=')
        if eq_index > 0:
            cookies[part[:eq_index].strip()] = part[eq_index + 1:].strip()

    return cookies


def serialize_cookies(cookies: Dict[str, str]) -> str:
    """Serialize a name -> value mapping into a Cookie header string."""
    return '; '.join(f"{name}={value}" for name, value in cookies.items())


def merge_set_cookies(cookie_header: str, set_cookie_headers: Iterable[str]) -> str:
    """
    Fold upstream Set-Cookie values into an accumulated Cookie header.

    Later values replace earlier ones with the same name; cookies expired
    with Max-Age=0 are removed.

    Args:
        cookie_header: Accumulated Cookie header so far
        set_cookie_headers: Set-Cookie values from an upstream response

    Returns:
        The updated Cookie header string
    """
    cookies = parse_cookie_header(cookie_header)

    for header in set_cookie_headers:
        cookie = parse_set_cookie(header)
        if not cookie['name']:
            continue
        if cookie['maxAge'] is not None and cookie['maxAge'] <= 0:
            cookies.pop(cookie['name'], None)
        else:
            cookies[cookie['name']] = cookie['value']

    return serialize_cookies(cookies)


def get_set_cookie_list(header_items: Iterable[Tuple[str, str]]) -> List[str]:
    """Collect every Set-Cookie value from (name, value) header pairs."""
    return [value for key, value in header_items if key.lower() == 'set-cookie']
