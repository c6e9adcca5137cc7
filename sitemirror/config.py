"""
SiteMirror - Configuration
Deployment settings for the rewriting reverse proxy.
"""

import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class ProxyConfig:
    """
    Proxy configuration object.

    The target and proxy origins are fixed for the lifetime of the process;
    every URL translation is derived from them.
    """
    # Origin the proxy fetches content from
    target_url: str = "https://example.com"

    # Externally visible host[:port] of the proxy itself
    proxy_host: str = ""

    # Server settings
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False
    log_level: str = "INFO"

    # Deployed behind a hosting platform that terminates TLS (e.g. Vercel)
    hosted: bool = False

    # Response cache
    enable_cache: bool = False
    cache_ttl: int = 3600
    cache_capacity: int = 500

    # Outbound request timeout in seconds, per attempt
    request_timeout: int = 30

    # Sessions
    session_cookie_name: str = "sessionId"
    session_max_age: int = 24 * 60 * 60
    session_sweep_interval: int = 60 * 60

    # Inject the anti-fingerprinting overrides next to the rewriting shim
    inject_stealth: bool = True

    # Value of access-control-allow-credentials
    allow_credentials: bool = True

    def __post_init__(self):
        self.target_url = self.target_url.rstrip("/")
        if not self.proxy_host:
            self.proxy_host = f"localhost:{self.port}"

    @property
    def is_local(self) -> bool:
        return "localhost" in self.proxy_host

    @property
    def proxy_scheme(self) -> str:
        """Scheme clients use to reach the proxy; fixed per deployment."""
        if self.hosted:
            return "https"
        return "http" if self.is_local else "https"

    @property
    def proxy_origin(self) -> str:
        return f"{self.proxy_scheme}://{self.proxy_host}"

    @property
    def target_origin(self) -> str:
        parsed = urlparse(self.target_url)
        return f"{parsed.scheme}://{parsed.netloc}"


# Global configuration instance
_config: Optional[ProxyConfig] = None


def get_config() -> ProxyConfig:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        _config = load_config_from_env()
    return _config


def set_config(config: ProxyConfig) -> None:
    """Set the global configuration instance"""
    global _config
    _config = config


def load_config_from_env() -> ProxyConfig:
    """Load configuration from environment variables"""
    port = int(os.getenv("PORT", "3000"))
    vercel_url = os.getenv("VERCEL_URL")

    if vercel_url:
        proxy_host = vercel_url
    else:
        proxy_host = os.getenv("PROXY_HOST", f"localhost:{port}")

    return ProxyConfig(
        target_url=os.getenv("TARGET_URL", "https://example.com"),
        proxy_host=proxy_host,
        host=os.getenv("HOST", "0.0.0.0"),
        port=port,
        debug=_env_flag("DEBUG"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        hosted=vercel_url is not None,
        enable_cache=_env_flag("ENABLE_CACHE"),
        cache_ttl=int(os.getenv("CACHE_TTL", "3600")),
        cache_capacity=int(os.getenv("CACHE_CAPACITY", "500")),
        inject_stealth=_env_flag("INJECT_STEALTH", "true"),
    )
