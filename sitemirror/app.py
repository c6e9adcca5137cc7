"""
SiteMirror - Main Application
Flask front end for the rewriting reverse proxy.
"""

import logging
from typing import Optional

from flask import Flask, jsonify, render_template, request
from flask_cors import CORS

from .config import ProxyConfig, get_config, set_config
from .dispatcher import InboundRequest
from .errors import DispatchError
from .handler import ProxyHandler


logger = logging.getLogger(__name__)


PROXY_METHODS = ['GET', 'POST', 'PUT', 'DELETE', 'PATCH', 'OPTIONS', 'HEAD']

ERROR_SUGGESTIONS = (
    'The website may be using advanced protection',
    'Try refreshing the page in a few seconds',
    'Check if the target URL is accessible',
)


def create_app(config: Optional[ProxyConfig] = None,
               handler: Optional[ProxyHandler] = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config: Optional ProxyConfig instance (defaults to the environment)
        handler: Optional pre-built ProxyHandler

    Returns:
        Configured Flask application
    """
    app = Flask(__name__, template_folder='templates')

    CORS(app, resources={r"/*": {"origins": "*"}})

    if config:
        set_config(config)
    config = get_config()

    handler = handler or ProxyHandler(config)

    app.config['PROXY_CONFIG'] = config
    app.config['PROXY_HANDLER'] = handler

    # ============== Operational Routes ==============

    @app.route('/_health', methods=['GET'])
    def health():
        return jsonify({
            'status': 'ok',
            'targetUrl': config.target_url,
            'proxyHost': config.proxy_host,
            'isVercel': config.hosted,
            'cacheEnabled': config.enable_cache,
        })

    @app.route('/_cache/clear', methods=['POST'])
    def clear_cache():
        handler.clear_cache()
        return jsonify({'message': 'Cache cleared'})

    # ============== Proxy Route ==============

    @app.route('/', defaults={'path': ''}, methods=PROXY_METHODS)
    @app.route('/<path:path>', methods=PROXY_METHODS)
    def proxy(path):
        return handler.handle(InboundRequest.from_flask(request))

    # ============== Error Handlers ==============

    @app.errorhandler(DispatchError)
    def dispatch_failed(error: DispatchError):
        logger.error("Request to %s failed: %s", request.full_path, error.message)
        html = render_template(
            'error.html',
            status_code=error.status_code,
            message=error.message,
            suggestions=ERROR_SUGGESTIONS,
        )
        return html, error.status_code, {'Content-Type': 'text/html; charset=utf-8'}

    return app
