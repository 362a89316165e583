"""Tests for settings loading, the subscription file and logging setup."""

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from fanout.errors import MalformedPolicyError
from fanout.logging_config import setup_logging
from fanout.registry import ConfirmationState, SubscriptionRegistry
from fanout.settings import get_default_settings, get_setting, load_settings, reload_settings
from fanout.subscriptions import apply_subscriptions, load_subscriptions_file


@pytest.fixture(autouse=True)
def _fresh_settings():
    reload_settings()
    yield
    reload_settings()


class TestSettings:
    def test_defaults_without_file(self, tmp_path: Path) -> None:
        settings = load_settings(tmp_path)
        assert get_setting(settings, "delivery.retry.max_attempts") == 5
        assert get_setting(settings, "delivery.retry.max_delay") == 60.0
        assert get_setting(settings, "router.remove_after_permanent_failures") == 3

    def test_file_overrides_are_deep_merged(self, tmp_path: Path) -> None:
        (tmp_path / "settings.yaml").write_text(
            "delivery:\n  retry:\n    max_attempts: 8\nlogging:\n  level: DEBUG\n",
            encoding="utf-8",
        )
        settings = load_settings(tmp_path)
        assert get_setting(settings, "delivery.retry.max_attempts") == 8
        assert get_setting(settings, "delivery.retry.base_delay") == 1.0
        assert get_setting(settings, "logging.level") == "DEBUG"

    def test_invalid_yaml_falls_back_to_defaults(self, tmp_path: Path) -> None:
        (tmp_path / "settings.yaml").write_text("delivery: [unclosed", encoding="utf-8")
        assert load_settings(tmp_path) == get_default_settings()

    def test_settings_cached_until_reload(self, tmp_path: Path) -> None:
        first = load_settings(tmp_path)
        (tmp_path / "settings.yaml").write_text("router:\n  remove_after_permanent_failures: 0\n")
        assert load_settings(tmp_path) is first
        reload_settings()
        assert get_setting(load_settings(tmp_path), "router.remove_after_permanent_failures") == 0

    def test_get_setting_missing_path_returns_default(self) -> None:
        assert get_setting({"a": {"b": 1}}, "a.c.d", "fallback") == "fallback"

    def test_defaults_are_copies(self) -> None:
        get_default_settings()["delivery"]["retry"]["max_attempts"] = 99
        assert get_default_settings()["delivery"]["retry"]["max_attempts"] == 5


_SUBSCRIPTIONS_YAML = """
subscriptions:
  - name: audit-all
    endpoint: https://audit.example.com/hook
    confirmed: true
  - name: deletions
    endpoint: https://security.example.com/hook
    confirmed: true
    filter_policy:
      event_name:
        - prefix: "ObjectRemoved:"
  - name: awaiting-confirmation
    endpoint: https://reports.example.com/hook
  - name: retired
    endpoint: https://old.example.com/hook
    enabled: false
"""


class TestSubscriptionFile:
    def test_load_and_apply(self, tmp_path: Path) -> None:
        path = tmp_path / "subscriptions.yaml"
        path.write_text(_SUBSCRIPTIONS_YAML, encoding="utf-8")
        registry = SubscriptionRegistry()
        ids = apply_subscriptions(registry, load_subscriptions_file(path))

        assert set(ids) == {"audit-all", "deletions", "awaiting-confirmation"}
        assert [s.name for s in registry.list_confirmed()] == ["audit-all", "deletions"]
        pending = registry.get(ids["awaiting-confirmation"])
        assert pending.confirmation_state is ConfirmationState.PENDING

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "subscriptions.yaml"
        path.write_text("", encoding="utf-8")
        assert load_subscriptions_file(path).subscriptions == []

    def test_missing_endpoint_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "subscriptions.yaml"
        path.write_text("subscriptions:\n  - name: x\n", encoding="utf-8")
        with pytest.raises(ValidationError):
            load_subscriptions_file(path)

    def test_bad_policy_registers_nothing(self, tmp_path: Path) -> None:
        path = tmp_path / "subscriptions.yaml"
        path.write_text(
            "subscriptions:\n"
            "  - name: ok\n    endpoint: https://a\n"
            "  - name: bad\n    endpoint: https://b\n"
            "    filter_policy: {bucket: [x]}\n",
            encoding="utf-8",
        )
        registry = SubscriptionRegistry()
        with pytest.raises(MalformedPolicyError):
            apply_subscriptions(registry, load_subscriptions_file(path))
        assert registry.list_all() == []

    def test_example_file_is_valid(self) -> None:
        path = Path(__file__).resolve().parent.parent / "config" / "subscriptions.example.yaml"
        registry = SubscriptionRegistry()
        ids = apply_subscriptions(registry, load_subscriptions_file(path))
        assert len(ids) == 4
        assert len(registry.list_confirmed()) == 3


class TestSetupLogging:
    def test_writes_to_configured_file(self, tmp_path: Path) -> None:
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(
                tmp_path,
                {"logging": {"file": "logs/test.log", "level": "INFO", "log_to_console": False}},
            )
            logging.getLogger("fanout.test").info("hello from test")
            for h in root.handlers:
                h.flush()
            content = (tmp_path / "logs" / "test.log").read_text(encoding="utf-8")
            assert "[INFO] fanout.test: hello from test" in content
        finally:
            for h in root.handlers[:]:
                root.removeHandler(h)
                h.close()
            for h in saved_handlers:
                root.addHandler(h)
            root.setLevel(saved_level)
