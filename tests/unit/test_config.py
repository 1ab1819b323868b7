"""
Unit tests for ServerConfig and HTTPSOptions.
"""

import dataclasses

import pytest

from liveserver.config import DEFAULT_IGNORE_PATTERNS, HTTPSOptions, ServerConfig


class TestDefaults:

    def test_defaults(self):
        config = ServerConfig()

        assert config.port == 5500
        assert config.host == "127.0.0.1"
        assert config.default_file == "/index.html"
        assert config.auto_port is True
        assert config.port_attempts == 10
        assert config.startup_timeout == 5.0
        assert config.batch_delay == 0.25
        assert config.https.enabled is False
        assert config.protocol == "http"

    def test_default_ignores_cover_vcs_and_dependencies(self):
        patterns = " ".join(DEFAULT_IGNORE_PATTERNS)
        assert ".git" in patterns
        assert "node_modules" in patterns

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            ServerConfig().port = 1

    def test_version_constant(self):
        assert ServerConfig.CONFIG_VERSION == 1


class TestFromOptions:
    """Merging caller options over a base config."""

    def test_snake_and_camel_case(self):
        config = ServerConfig.from_options({"port": 8080, "autoPort": False, "startup_timeout": 2})

        assert config.port == 8080
        assert config.auto_port is False
        assert config.startup_timeout == 2

    def test_unknown_keys_ignored(self):
        config = ServerConfig.from_options({"port": 8080, "nonsense": True})
        assert config.port == 8080
        assert not hasattr(config, "nonsense")

    def test_merges_over_base(self):
        base = ServerConfig(port=3000, cors=True)
        config = ServerConfig.from_options({"verbose": True}, base)

        assert config.port == 3000
        assert config.cors is True
        assert config.verbose is True

    def test_nested_https_merged(self):
        base = ServerConfig(https=HTTPSOptions(domain="dev.test"))
        config = ServerConfig.from_options(
            {"https": {"enabled": True, "certPath": "a.crt", "autoGenerateCert": False}},
            base,
        )

        assert config.https.enabled is True
        assert config.https.domain == "dev.test"
        assert config.https.cert_path == "a.crt"
        assert config.https.auto_generate_cert is False
        assert config.protocol == "https"

    def test_https_bool_shorthand(self):
        config = ServerConfig.from_options({"https": True})
        assert config.https.enabled is True

    def test_ignored_becomes_tuple(self):
        config = ServerConfig.from_options({"ignored": ["**/*.tmp"]})
        assert config.ignored == ("**/*.tmp",)

    def test_aliases(self):
        config = ServerConfig.from_options({"openOnStart": True})
        assert config.open_browser is True

    def test_empty_options_returns_base(self):
        base = ServerConfig(port=1234)
        assert ServerConfig.from_options(None, base) is base

    def test_string_values_converted(self):
        """Settings read from JSON or the environment arrive as strings."""
        config = ServerConfig.from_options({
            "port": "8080",
            "cors": "true",
            "verbose": "off",
            "startupTimeout": "2.5",
            "https": {"enabled": "yes", "port": "8443"},
        })

        assert config.port == 8080
        assert config.cors is True
        assert config.verbose is False
        assert config.startup_timeout == 2.5
        assert config.https.enabled is True
        assert config.https.port == 8443

    @pytest.mark.parametrize("options", [
        {"port": "not-a-port"},
        {"port": 80.5},
        {"port": True},
        {"cors": "maybe"},
        {"host": 42},
        {"https": {"port": "x"}},
    ])
    def test_unconvertible_values_rejected(self, options):
        with pytest.raises(ValueError):
            ServerConfig.from_options(options)

    def test_none_port_fails_validation(self):
        config = ServerConfig.from_options({"port": None})
        with pytest.raises((TypeError, ValueError)):
            config.validate()


class TestListenPort:

    def test_https_port_used_when_enabled(self):
        config = ServerConfig(port=5500, https=HTTPSOptions(enabled=True, port=5501))
        assert config.listen_port == 5501

    def test_https_port_ignored_when_disabled(self):
        config = ServerConfig(port=5500, https=HTTPSOptions(enabled=False, port=5501))
        assert config.listen_port == 5500


class TestFromEnv:

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("LIVESERVER_PORT", "8123")
        monkeypatch.setenv("LIVESERVER_HOST", "0.0.0.0")
        monkeypatch.setenv("LIVESERVER_CORS", "yes")
        monkeypatch.setenv("LIVESERVER_HTTPS", "1")
        monkeypatch.setenv("LIVESERVER_HTTPS_DOMAIN", "dev.test")

        config = ServerConfig.from_env()

        assert config.port == 8123
        assert config.host == "0.0.0.0"
        assert config.cors is True
        assert config.https.enabled is True
        assert config.https.domain == "dev.test"

    def test_defaults_without_environment(self, monkeypatch):
        for name in ("LIVESERVER_PORT", "LIVESERVER_HOST", "LIVESERVER_HTTPS"):
            monkeypatch.delenv(name, raising=False)

        config = ServerConfig.from_env()
        assert config.port == 5500
        assert config.https.enabled is False


class TestValidate:

    def test_valid_config(self):
        ServerConfig().validate()
        ServerConfig(port=0).validate()

    @pytest.mark.parametrize("changes", [
        {"port": -1},
        {"port": 65536},
        {"port_attempts": 0},
        {"startup_timeout": 0},
        {"batch_delay": -0.1},
        {"default_file": "index.html"},
        {"min_workers": 0},
        {"min_workers": 4, "max_workers": 2},
    ])
    def test_invalid_values(self, changes):
        with pytest.raises(ValueError):
            ServerConfig(**changes).validate()

    def test_invalid_https_port(self):
        with pytest.raises(ValueError):
            ServerConfig(https=HTTPSOptions(port=70000)).validate()
