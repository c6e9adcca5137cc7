#!/usr/bin/env python3
"""
SiteMirror - Launcher Script
Run this script (or the ``sitemirror`` command) to start the proxy server.
"""

import logging
import socket

from .app import create_app
from .config import get_config


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger."""
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def get_network_address() -> str:
    """Best guess at the LAN address other machines can reach us on."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"


def print_banner(config) -> None:
    print("=" * 60)
    print("  SiteMirror - Rewriting Reverse Proxy")
    print("=" * 60)
    print(f"  Target:    {config.target_url}")
    print(f"  Local:     http://localhost:{config.port}")
    print(f"  Network:   http://{get_network_address()}:{config.port}")
    print(f"  Public:    {config.proxy_origin}")
    if config.enable_cache:
        print(f"  Cache:     enabled (ttl {config.cache_ttl}s, {config.cache_capacity} entries)")
    else:
        print("  Cache:     disabled")
    print(f"  Debug:     {config.debug}")
    print("=" * 60)
    print()
    print("  Press Ctrl+C to stop the server")
    print("=" * 60)


def main():
    """Start the proxy server."""
    config = get_config()
    configure_logging(config.log_level)

    app = create_app(config)
    handler = app.config['PROXY_HANDLER']
    handler.sessions.start_sweeper(config.session_sweep_interval)

    print_banner(config)

    try:
        app.run(
            host=config.host,
            port=config.port,
            debug=config.debug,
            threaded=True,
            use_reloader=False,
        )
    except KeyboardInterrupt:
        print("\n\nServer stopped.")
    finally:
        handler.close()


if __name__ == '__main__':
    main()
