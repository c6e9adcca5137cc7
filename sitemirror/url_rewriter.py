"""
SiteMirror - URL Rewriting Module
Translates references between the target origin and the proxy origin.

All functions here are best-effort: a reference that cannot be parsed is
returned unmodified, never raised to the caller.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin, urlparse

from .utils import should_skip_url


logger = logging.getLogger(__name__)


# url(...) tokens in stylesheets and style attributes
CSS_URL_REGEX = re.compile(r"""url\(\s*(['"]?)([^'")\s]+)\1\s*\)""", re.IGNORECASE)

# @import "sheet.css"
CSS_IMPORT_REGEX = re.compile(r"""@import\s+(['"])([^'"]+)\1""", re.IGNORECASE)

# fetch('/x'), $.ajax('/x'), axios.get('/x'), $.post('/x')
JS_CALL_REGEX = re.compile(
    r"""(\bfetch|\.ajax|\baxios\.(?:get|post|put|patch|delete)|\$\.(?:get|post))"""
    r"""\(\s*(['"])([^'"\n]+)\2"""
)

# location.href = '/x'
JS_LOCATION_REGEX = re.compile(r"""(\blocation\.href\s*=\s*)(['"])([^'"\n]+)\2""")

# srcset candidates: a URL runs to whitespace, a descriptor runs to the next comma
SRCSET_URL_REGEX = re.compile(r"[\s,]*(\S+)")
SRCSET_DESCRIPTOR_REGEX = re.compile(r"[^,]*,?")


@dataclass(frozen=True)
class RewriteContext:
    """Per-request translation context; never persisted."""
    target_origin: str
    proxy_origin: str
    page_url: str


class URLRewriter:
    """Bidirectional translation between target-origin and proxy-origin URLs."""

    def __init__(self, target_url: str, proxy_host: str, proxy_scheme: str = 'http'):
        """
        Args:
            target_url: URL of the site being mirrored
            proxy_host: Externally visible host[:port] of the proxy
            proxy_scheme: Scheme clients use to reach the proxy
        """
        parsed = urlparse(target_url)
        self.target_scheme = parsed.scheme
        self.target_host = parsed.netloc.lower()
        self.target_base = f"{parsed.scheme}://{parsed.netloc}"
        self.proxy_host = proxy_host
        # Resolved once so every URL in a response agrees on it
        self.proxy_scheme = proxy_scheme
        self.proxy_origin = f"{proxy_scheme}://{proxy_host}"

    @classmethod
    def from_config(cls, config) -> 'URLRewriter':
        return cls(config.target_url, config.proxy_host, config.proxy_scheme)

    def context(self, page_url: str) -> RewriteContext:
        return RewriteContext(self.target_base, self.proxy_origin, page_url)

    def to_proxy_url(self, url: str, base_url: Optional[str] = None) -> str:
        """
        Convert a target-origin reference into a proxy-origin URL.

        Cross-origin absolute references are returned unmodified; only
        references that resolve to the target host, or that are
        root-relative, are moved onto the proxy origin.

        Args:
            url: Reference found in the page
            base_url: URL the reference is relative to (defaults to target origin)

        Returns:
            The rewritten URL, or the reference unchanged
        """
        if not url or should_skip_url(url):
            return url

        reference = url.strip()

        # Handle protocol-relative URLs
        if reference.startswith('//'):
            reference = f"{self.target_scheme}:{reference}"

        try:
            absolute = urljoin(base_url or self.target_base, reference)
            parsed = urlparse(absolute)

            if parsed.netloc.lower() != self.target_host and not reference.startswith('/'):
                return url

            rest = absolute[len(f"{parsed.scheme}://{parsed.netloc}"):]
            if not rest.startswith('/'):
                rest = '/' + rest
            return f"{self.proxy_origin}{rest}"
        except ValueError as e:
            logger.debug("Leaving unparsable reference %r: %s", url, e)
            return url

    def to_target_url(self, url: str) -> str:
        """
        Convert a proxy-origin reference back into a target-origin URL.

        Args:
            url: Absolute or relative reference on the proxy origin

        Returns:
            The equivalent target URL
        """
        if not url:
            return url

        try:
            absolute = urljoin(f"{self.proxy_origin}/", url)
        except ValueError:
            return url

        if absolute.startswith(self.proxy_origin):
            return self.target_base + absolute[len(self.proxy_origin):]
        return absolute

    def rewrite_css(self, css: str, base_url: Optional[str] = None) -> str:
        """
        Rewrite url() and @import references in CSS content.

        Args:
            css: CSS content
            base_url: URL of the stylesheet or page

        Returns:
            CSS with rewritten URLs
        """
        if not css:
            return css

        def replace_url(match):
            quote, url = match.group(1), match.group(2)
            rewritten = self.to_proxy_url(url, base_url)
            if rewritten == url:
                return match.group(0)
            quote = '"' if quote == '"' else "'"
            return f"url({quote}{rewritten}{quote})"

        def replace_import(match):
            quote, url = match.group(1), match.group(2)
            return f"@import {quote}{self.to_proxy_url(url, base_url)}{quote}"

        css = CSS_URL_REGEX.sub(replace_url, css)
        return CSS_IMPORT_REGEX.sub(replace_import, css)

    def rewrite_javascript(self, js: str, base_url: Optional[str] = None) -> str:
        """
        Rewrite URL literals at recognizable call sites in script text.

        This is pattern based and deliberately non-exhaustive: anything
        not matched is left exactly as it was.

        Args:
            js: Script source
            base_url: URL of the script or page

        Returns:
            Script with rewritten URL literals
        """
        if not js:
            return js

        def replace_call(match):
            call, quote, url = match.groups()
            return f"{call}({quote}{self.to_proxy_url(url, base_url)}{quote}"

        def replace_location(match):
            assignment, quote, url = match.groups()
            return f"{assignment}{quote}{self.to_proxy_url(url, base_url)}{quote}"

        js = JS_CALL_REGEX.sub(replace_call, js)
        return JS_LOCATION_REGEX.sub(replace_location, js)

    def rewrite_srcset(self, srcset: str, base_url: Optional[str] = None) -> str:
        """
        Rewrite every candidate URL in a srcset attribute.

        Args:
            srcset: Original srcset value
            base_url: URL of the page

        Returns:
            Rewritten srcset value
        """
        if not srcset:
            return srcset

        parts = []
        pos = 0
        while True:
            match = SRCSET_URL_REGEX.match(srcset, pos)
            if not match:
                break
            url, pos = match.group(1), match.end()

            # A comma inside the URL (data: payloads) does not end the candidate
            descriptor = ''
            if url.endswith(','):
                url = url.rstrip(',')
            else:
                match = SRCSET_DESCRIPTOR_REGEX.match(srcset, pos)
                descriptor, pos = ' '.join(match.group(0).rstrip(',').split()), match.end()

            url = self.to_proxy_url(url, base_url)
            parts.append(f"{url} {descriptor}" if descriptor else url)

        return ', '.join(parts)

    def rewrite_location(self, location: str, page_url: str) -> str:
        """
        Rewrite a redirect target.

        Root-relative locations already resolve on the proxy origin and
        pass through unchanged.
        """
        if not location or location.startswith('/'):
            return location
        return self.to_proxy_url(location, page_url)
