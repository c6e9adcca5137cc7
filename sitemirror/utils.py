"""
SiteMirror - Utility Functions
"""

import codecs


# References that are never rewritten
PASSTHROUGH_PREFIXES = ('data:', 'javascript:', 'mailto:')

# Content types whose bodies are decoded as text
TEXT_CONTENT_TYPES = (
    'text/',
    'application/javascript',
    'application/json',
    'application/xml',
    'application/xhtml+xml',
)


def should_skip_url(url: str) -> bool:
    """
    Check if a reference must be passed through untouched.

    Args:
        url: Reference to check

    Returns:
        True if the reference is a data:, javascript: or mailto: URL
    """
    return url.strip().lower().startswith(PASSTHROUGH_PREFIXES)


def is_html_content(content_type: str) -> bool:
    """Check if content type is HTML."""
    return 'text/html' in content_type.lower() if content_type else False


def is_css_content(content_type: str) -> bool:
    """Check if content type is CSS."""
    return 'text/css' in content_type.lower() if content_type else False


def is_javascript_content(content_type: str) -> bool:
    """Check if content type is JavaScript."""
    js_types = ['javascript', 'ecmascript']
    return any(t in content_type.lower() for t in js_types) if content_type else False


def is_text_content(content_type: str) -> bool:
    """Check if the body should be decoded as text."""
    if not content_type:
        return False
    content_type = content_type.lower()
    return any(t in content_type for t in TEXT_CONTENT_TYPES)


def get_charset(content_type: str, default: str = 'utf-8') -> str:
    """Return the charset parameter of a Content-Type value, if it names a known codec."""
    for param in (content_type or '').split(';')[1:]:
        key, _, value = param.strip().partition('=')
        if key.lower() == 'charset' and value:
            charset = value.strip('"\' ')
            try:
                codecs.lookup(charset)
            except LookupError:
                return default
            return charset
    return default


def decode_body(body: bytes, content_type: str) -> str:
    """
    Decode a text body using the charset from its content type.

    Args:
        body: Raw response body
        content_type: Full Content-Type header value

    Returns:
        Decoded text (undecodable bytes are replaced)
    """
    return body.decode(get_charset(content_type), errors='replace')


def encode_body(text: str, content_type: str) -> bytes:
    """Encode rewritten text back into the charset the upstream declared."""
    return text.encode(get_charset(content_type), errors='xmlcharrefreplace')
