"""
SiteMirror - Client-side Injection Scripts

The rewriting shim re-implements ``URLRewriter.to_proxy_url`` in the page
so URLs built at runtime stay on the proxy origin. It must keep the same
rules as the server side: data:/javascript:/mailto: untouched,
protocol-relative expanded with the target scheme, cross-origin absolute
URLs left alone unless root-relative.
"""

import json


SHIM_MARKER = 'data-sitemirror-shim'
STEALTH_MARKER = 'data-sitemirror-stealth'


def get_shim_script(target_origin: str, proxy_origin: str) -> str:
    """
    Build the URL-rewriting shim.

    Args:
        target_origin: scheme://host of the mirrored site
        proxy_origin: scheme://host[:port] clients reach the proxy on

    Returns:
        JavaScript source (without the surrounding <script> tag)
    """
    return f'''
(function() {{
    'use strict';
    if (window.__sitemirror) return;
    window.__sitemirror = true;

    const TARGET_ORIGIN = {json.dumps(target_origin)};
    const PROXY_ORIGIN = {json.dumps(proxy_origin)};
    const TARGET = new URL(TARGET_ORIGIN);

    function rewriteUrl(url) {{
        if (url === undefined || url === null) return url;
        url = String(url);
        if (!url || /^\\s*(data|javascript|mailto):/i.test(url)) return url;

        let ref = url.trim();
        if (ref.startsWith('//')) ref = TARGET.protocol + ref;

        try {{
            const base = location.href.startsWith(PROXY_ORIGIN)
                ? TARGET_ORIGIN + location.href.slice(PROXY_ORIGIN.length)
                : TARGET_ORIGIN + '/';
            const absolute = new URL(ref, base);
            if (absolute.host !== TARGET.host && !ref.startsWith('/')) {{
                return url;
            }}
            return PROXY_ORIGIN + absolute.href.slice(absolute.origin.length);
        }} catch (e) {{
            return url;
        }}
    }}
    window.__sitemirrorRewrite = rewriteUrl;

    const originalFetch = window.fetch;
    if (originalFetch) {{
        window.fetch = function(input, init) {{
            if (typeof input === 'string' || input instanceof URL) {{
                input = rewriteUrl(String(input));
            }} else if (input instanceof Request) {{
                input = new Request(rewriteUrl(input.url), input);
            }}
            return originalFetch.call(this, input, init);
        }};
    }}

    const originalOpen = XMLHttpRequest.prototype.open;
    XMLHttpRequest.prototype.open = function(method, url) {{
        const args = Array.prototype.slice.call(arguments);
        args[1] = rewriteUrl(url);
        return originalOpen.apply(this, args);
    }};

    const originalPushState = History.prototype.pushState;
    const originalReplaceState = History.prototype.replaceState;

    History.prototype.pushState = function(state, title, url) {{
        if (url) url = rewriteUrl(url);
        return originalPushState.call(this, state, title, url);
    }};

    History.prototype.replaceState = function(state, title, url) {{
        if (url) url = rewriteUrl(url);
        return originalReplaceState.call(this, state, title, url);
    }};

    document.addEventListener('click', function(e) {{
        const anchor = e.target && e.target.closest ? e.target.closest('a[href]') : null;
        if (!anchor) return;
        const href = anchor.getAttribute('href');
        const rewritten = rewriteUrl(href);
        if (rewritten !== href && rewritten !== anchor.href) {{
            e.preventDefault();
            window.location.href = rewritten;
        }}
    }}, true);
}})();
'''


def get_stealth_script() -> str:
    """
    Anti-fingerprinting overrides applied in the page.

    Pure presentation: nothing here talks back to the server.
    """
    return '''
(function() {
    const overrides = {
        navigator: {
            webdriver: false,
            plugins: [1, 2, 3, 4, 5],
            languages: ['en-US', 'en'],
            platform: 'Win32',
            hardwareConcurrency: 8,
            deviceMemory: 8,
            maxTouchPoints: 0
        },
        screen: {
            width: 1920,
            height: 1080,
            availWidth: 1920,
            availHeight: 1040,
            colorDepth: 24,
            pixelDepth: 24
        }
    };

    for (const [obj, props] of Object.entries(overrides)) {
        for (const [prop, value] of Object.entries(props)) {
            try {
                Object.defineProperty(window[obj], prop, {
                    get: () => value,
                    configurable: true
                });
            } catch (e) {}
        }
    }

    if (!window.chrome) {
        window.chrome = {
            runtime: {},
            loadTimes: function() {},
            csi: function() {},
            app: {}
        };
    }

    if (window.WebGLRenderingContext) {
        const getParameter = WebGLRenderingContext.prototype.getParameter;
        WebGLRenderingContext.prototype.getParameter = function(parameter) {
            if (parameter === 37445) return 'Intel Inc.';
            if (parameter === 37446) return 'Intel Iris OpenGL Engine';
            return getParameter.apply(this, arguments);
        };
    }

    const permissions = window.navigator.permissions;
    if (permissions && permissions.query) {
        const originalQuery = permissions.query.bind(permissions);
        permissions.query = (parameters) => (
            parameters.name === 'notifications'
                ? Promise.resolve({ state: Notification.permission })
                : originalQuery(parameters)
        );
    }

    const devtools = { open: false };
    setInterval(() => {
        devtools.open = window.outerHeight - window.innerHeight > 200 ||
            window.outerWidth - window.innerWidth > 200;
    }, 500);
})();
'''
