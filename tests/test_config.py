import logging

from sitemirror.config import ProxyConfig, load_config_from_env
from sitemirror.run import configure_logging


def test_defaults_derive_local_proxy_origin():
    config = ProxyConfig(target_url="https://example.com/")
    assert config.target_url == "https://example.com"
    assert config.proxy_host == "localhost:3000"
    assert config.is_local
    assert config.proxy_origin == "http://localhost:3000"
    assert config.target_origin == "https://example.com"


def test_public_host_uses_https():
    config = ProxyConfig(target_url="https://example.com", proxy_host="mirror.example.net")
    assert not config.is_local
    assert config.proxy_scheme == "https"


def test_load_from_env(monkeypatch):
    monkeypatch.setenv("TARGET_URL", "https://target.test")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("ENABLE_CACHE", "true")
    monkeypatch.setenv("CACHE_TTL", "120")
    monkeypatch.setenv("INJECT_STEALTH", "false")
    monkeypatch.delenv("VERCEL_URL", raising=False)
    monkeypatch.delenv("PROXY_HOST", raising=False)

    config = load_config_from_env()

    assert config.target_url == "https://target.test"
    assert config.port == 8080
    assert config.proxy_host == "localhost:8080"
    assert config.enable_cache
    assert config.cache_ttl == 120
    assert not config.inject_stealth
    assert not config.hosted


def test_vercel_deployment(monkeypatch):
    monkeypatch.setenv("VERCEL_URL", "mirror-abc.vercel.app")
    config = load_config_from_env()
    assert config.hosted
    assert config.proxy_origin == "https://mirror-abc.vercel.app"


def test_configure_logging_installs_one_handler():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        configure_logging("debug")
        configure_logging("warning")

        assert len(root.handlers) == 1
        assert root.level == logging.WARNING
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
