"""
SiteMirror - a content-rewriting reverse proxy that mirrors one target site
on its own origin.
"""

from .app import create_app
from .config import ProxyConfig, get_config, set_config
from .handler import ProxyHandler
from .url_rewriter import URLRewriter

__version__ = "1.0.0"

__all__ = [
    'create_app',
    'ProxyConfig',
    'ProxyHandler',
    'URLRewriter',
    'get_config',
    'set_config',
]
