"""
Tests for phone pipeline configuration

Kill switches, tunables and their fallbacks on bad values.
"""

from services.pipeline_config import (
    get_arka_base_url,
    get_fetch_batch,
    get_fetch_interval,
    get_start_fetch_id,
    is_fetch_enabled,
    is_scheduler_enabled,
    is_title_refresh_enabled,
    is_transfer_enabled,
)


# =============================================================================
# Kill Switch Tests
# =============================================================================

class TestKillSwitches:

    def test_defaults(self):
        """Fetch runs by default; transfer and title sweep are opt-in."""
        assert is_scheduler_enabled() is True
        assert is_fetch_enabled() is True
        assert is_transfer_enabled() is False
        assert is_title_refresh_enabled() is False

    def test_master_switch_disables_everything(self, monkeypatch):
        monkeypatch.setenv('SCHEDULER_ENABLED', 'false')
        monkeypatch.setenv('ENABLE_ARKA_TRANSFER_CRON', 'true')
        monkeypatch.setenv('ENABLE_BUSINESS_TITLE_CRON', 'true')
        assert is_fetch_enabled() is False
        assert is_transfer_enabled() is False
        assert is_title_refresh_enabled() is False

    def test_component_switch(self, monkeypatch):
        monkeypatch.setenv('ENABLE_ARKA_FETCH_CRON', 'off')
        monkeypatch.setenv('ENABLE_ARKA_TRANSFER_CRON', '1')
        assert is_fetch_enabled() is False
        assert is_transfer_enabled() is True

    def test_switch_values_are_case_insensitive(self, monkeypatch):
        monkeypatch.setenv('ENABLE_ARKA_FETCH_CRON', ' FALSE ')
        assert is_fetch_enabled() is False


# =============================================================================
# Tunables
# =============================================================================

class TestTunables:

    def test_start_fetch_id_default(self):
        assert get_start_fetch_id() == 10000

    def test_start_fetch_id_from_env(self, monkeypatch):
        monkeypatch.setenv('ARKA_START_FETCH_ID', '19015')
        assert get_start_fetch_id() == 19015

    def test_invalid_int_falls_back(self, monkeypatch):
        monkeypatch.setenv('ARKA_START_FETCH_ID', 'abc')
        assert get_start_fetch_id() == 10000

    def test_batch_is_at_least_one(self, monkeypatch):
        monkeypatch.setenv('ARKA_FETCH_BATCH', '0')
        assert get_fetch_batch() == 1

    def test_non_positive_interval_falls_back(self, monkeypatch):
        monkeypatch.setenv('ARKA_FETCH_INTERVAL_SECONDS', '-3')
        assert get_fetch_interval() == 5.0

    def test_base_url_trailing_slash_dropped(self, monkeypatch):
        monkeypatch.setenv('ARKA_API_BASE_URL', 'http://catalog.local/')
        assert get_arka_base_url() == 'http://catalog.local'
