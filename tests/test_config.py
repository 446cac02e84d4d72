"""Tests for templar.config — defaults, immutability and overrides."""

import dataclasses

import pytest

from templar.config import ForgeConfig, RouterConfig, TemplarConfig, with_overrides
from templar.errors import ConfigurationError


class TestDefaults:
    def test_forge(self) -> None:
        config = ForgeConfig()
        assert config.base_path == "./components/"
        assert config.extension == ".html"
        assert config.tag_prefix == "templar-"
        assert config.shadow_mode == "open"
        assert not config.nested_dirs

    def test_router(self) -> None:
        config = RouterConfig()
        assert config.base_path == "./views/"
        assert config.index == "index"
        assert config.history_default == "push"
        assert config.link_selector == "a[href]:not([download])"
        assert config.transitions == {}
        assert not config.fallback_to_native_on_miss

    def test_frozen(self) -> None:
        with pytest.raises(dataclasses.FrozenInstanceError):
            TemplarConfig().debug = True  # type: ignore[misc]


class TestValidation:
    def test_bad_history_default(self) -> None:
        with pytest.raises(ConfigurationError, match="history_default"):
            RouterConfig(history_default="sideways")


class TestWithOverrides:
    def test_applies_known_keys(self) -> None:
        config = with_overrides(ForgeConfig(), {"tag_prefix": "app-", "nested_dirs": True})
        assert config.tag_prefix == "app-"
        assert config.nested_dirs

    def test_empty_returns_same_instance(self) -> None:
        config = RouterConfig()
        assert with_overrides(config, {}) is config

    def test_unknown_keys_named(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown RouterConfig option\\(s\\): colour, flavour"):
            with_overrides(RouterConfig(), {"flavour": 1, "colour": 2, "root": "#app"})

    def test_validation_reruns(self) -> None:
        with pytest.raises(ConfigurationError):
            with_overrides(RouterConfig(), {"history_default": "bogus"})
