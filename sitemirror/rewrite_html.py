"""
SiteMirror - Content Transformer
Rewrites HTML, CSS and JavaScript payloads so every reference resolves on
the proxy origin.
"""

import logging
import re

from bs4 import BeautifulSoup, Tag

from .inject import SHIM_MARKER, STEALTH_MARKER, get_shim_script, get_stealth_script
from .url_rewriter import RewriteContext, URLRewriter
from .utils import is_css_content, is_html_content, is_javascript_content


logger = logging.getLogger(__name__)


# Attributes holding a single URL, rewritten on every element
DATA_URL_ATTRIBUTES = ('data-src', 'data-href', 'data-url')

# content="5; url=/next"
META_REFRESH_REGEX = re.compile(r"""^(\s*\d+\s*;\s*url\s*=\s*)(['"]?)(.+?)\2\s*$""", re.IGNORECASE)


class ContentTransformer:
    """
    Rewrites response bodies through a :class:`URLRewriter`.

    HTML steps run in a fixed order: base tag, reference rewriting, form
    actions, meta refresh, then the client-side shim. The shim goes in
    last so its own source is never fed back through the rewriter.
    """

    def __init__(self, rewriter: URLRewriter, inject_stealth: bool = True):
        self.rewriter = rewriter
        self.inject_stealth = inject_stealth

    def transform(self, body: str, content_type: str, page_url: str) -> str:
        """
        Rewrite a decoded body according to its content type.

        Unrecognized types are returned unchanged.
        """
        if is_html_content(content_type):
            return self.rewrite_html(body, page_url)
        if is_css_content(content_type):
            return self.rewriter.rewrite_css(body, page_url)
        if is_javascript_content(content_type):
            return self.rewriter.rewrite_javascript(body, page_url)
        return body

    def rewrite_html(self, html: str, page_url: str) -> str:
        """
        Rewrite all references in an HTML document.

        Args:
            html: Document source
            page_url: Target URL the document was fetched from

        Returns:
            The rewritten document, or the original on parse failure
        """
        if not html:
            return html

        try:
            soup = BeautifulSoup(html, 'lxml')
            head = self._ensure_head(soup)

            self._ensure_base(soup, head)
            self._rewrite_urls(soup, page_url)
            self._modify_forms(soup, page_url)
            self._handle_meta_refresh(soup, page_url)
            self._inject_scripts(soup, head, self.rewriter.context(page_url))

            return str(soup)
        except Exception as e:
            logger.warning("HTML rewrite failed for %s: %s", page_url, e)
            return html

    def _ensure_head(self, soup: BeautifulSoup) -> Tag:
        if soup.head:
            return soup.head

        head = soup.new_tag('head')
        if soup.html:
            soup.html.insert(0, head)
        else:
            soup.insert(0, head)
        return head

    def _ensure_base(self, soup: BeautifulSoup, head: Tag) -> None:
        existing = soup.find('base')
        if existing is not None:
            if existing.get('href'):
                existing['href'] = self.rewriter.to_proxy_url(existing['href'])
            return

        base = soup.new_tag('base', href=f"{self.rewriter.proxy_origin}/")
        head.insert(0, base)

    def _rewrite_urls(self, soup: BeautifulSoup, page_url: str) -> None:
        rewriter = self.rewriter

        for element in soup.find_all('a', href=True):
            element['href'] = rewriter.to_proxy_url(element['href'], page_url)

        for element in soup.find_all(src=True):
            element['src'] = rewriter.to_proxy_url(element['src'], page_url)

        for element in soup.find_all(srcset=True):
            element['srcset'] = rewriter.rewrite_srcset(element['srcset'], page_url)

        for element in soup.find_all('form', action=True):
            element['action'] = rewriter.to_proxy_url(element['action'], page_url)

        for element in soup.find_all('link', href=True):
            element['href'] = rewriter.to_proxy_url(element['href'], page_url)

        for element in soup.find_all(style=True):
            style = element['style']
            if 'url(' in style:
                element['style'] = rewriter.rewrite_css(style, page_url)

        for style in soup.find_all('style'):
            if style.string:
                style.string.replace_with(rewriter.rewrite_css(str(style.string), page_url))

        for script in soup.find_all('script'):
            if script.get('src') or not script.string:
                continue
            script.string.replace_with(rewriter.rewrite_javascript(str(script.string), page_url))

        for attr in DATA_URL_ATTRIBUTES:
            for element in soup.find_all(attrs={attr: True}):
                element[attr] = rewriter.to_proxy_url(element[attr], page_url)

        for video in soup.find_all('video', poster=True):
            video['poster'] = rewriter.to_proxy_url(video['poster'], page_url)

    def _modify_forms(self, soup: BeautifulSoup, page_url: str) -> None:
        """Point forms without an action back at the current page on the proxy."""
        for form in soup.find_all('form'):
            if not form.get('action'):
                form['action'] = self.rewriter.to_proxy_url(page_url)

    def _handle_meta_refresh(self, soup: BeautifulSoup, page_url: str) -> None:
        for meta in soup.find_all('meta', attrs={'http-equiv': re.compile(r'^refresh$', re.I)}):
            content = meta.get('content', '')
            match = META_REFRESH_REGEX.match(content)
            if not match:
                continue
            prefix, quote, url = match.groups()
            meta['content'] = f"{prefix}{quote}{self.rewriter.to_proxy_url(url, page_url)}{quote}"

    def _inject_scripts(self, soup: BeautifulSoup, head: Tag, context: RewriteContext) -> None:
        shim = soup.new_tag('script', attrs={SHIM_MARKER: 'true'})
        shim.string = get_shim_script(context.target_origin, context.proxy_origin)
        head.append(shim)

        if self.inject_stealth:
            stealth = soup.new_tag('script', attrs={STEALTH_MARKER: 'true'})
            stealth.string = get_stealth_script()
            head.append(stealth)
