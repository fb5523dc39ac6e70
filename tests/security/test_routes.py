"""Tests for route protection rules."""

import pytest
from unittest.mock import Mock

from knackshield.security.routes import (
    ApiKeyRegistry,
    ApiKeyType,
    find_route_rule,
    get_rate_limit_config_for_route,
    is_protected_route,
    match_route,
    should_bypass,
)


class TestMatchRoute:
    """Test path matching."""

    def test_exact(self):
        assert match_route("/api/sync", "/api/sync")

    def test_param_segment(self):
        assert match_route("/api/records/object_7", "/api/records/[object_key]")

    def test_param_does_not_span_segments(self):
        assert not match_route("/api/records/object_7/abc", "/api/records/[object_key]")

    def test_query_string_ignored(self):
        assert match_route("/api/sync?force=1", "/api/sync")


class TestRouteTable:
    """Test the protection table."""

    def test_sync_requires_sync_key(self):
        rule = find_route_rule("POST", "/api/sync")
        assert rule.requires_auth
        assert rule.key_type == ApiKeyType.SYNC
        assert rule.rate_limit.max_requests == 10

    def test_record_writes_require_admin(self):
        for method, path in (
            ("POST", "/api/records/object_7"),
            ("PUT", "/api/records/object_7/abc"),
            ("DELETE", "/api/records/object_7/abc"),
        ):
            assert is_protected_route(method, path)
            assert find_route_rule(method, path).key_type == ApiKeyType.ADMIN

    def test_public_reads_are_rate_limited_only(self):
        assert not is_protected_route("GET", "/api/records/object_7")
        config = get_rate_limit_config_for_route("GET", "/api/records/object_7")
        assert config.max_requests == 100

    def test_unlisted_route(self):
        assert find_route_rule("GET", "/api/health") is None

    def test_static_assets_bypass(self):
        assert should_bypass("/static/app.js")
        assert should_bypass("/favicon.ico")
        assert not should_bypass("/api/sync")


class TestApiKeyRegistry:
    """Test expected key resolution."""

    def test_from_settings(self, test_settings):
        registry = ApiKeyRegistry.from_settings(test_settings)
        assert registry.expected_key(ApiKeyType.ADMIN) == "admin-key-0123456789"

    def test_cron_falls_back_to_sync(self, test_settings):
        registry = ApiKeyRegistry.from_settings(test_settings)
        assert registry.expected_key(ApiKeyType.CRON) == "sync-key-0123456789"

    def test_unconfigured_key(self):
        assert ApiKeyRegistry().expected_key(ApiKeyType.ADMIN) is None

    def test_from_vault(self, test_settings):
        test_settings.vault_enabled = True
        manager = Mock()
        manager.get_api_key.side_effect = lambda name: f"vault-{name}"

        registry = ApiKeyRegistry.from_settings(test_settings, secret_manager=manager)
        assert registry.expected_key(ApiKeyType.SYNC) == "vault-sync"
