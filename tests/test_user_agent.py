"""Tests for user-agent parsing."""

import pytest

from site_analytics.user_agent import DeviceInfo, parse_user_agent


class TestParseUserAgent:
    """Test parse_user_agent across common devices."""

    def test_chrome_on_windows(self):
        info = parse_user_agent(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        )
        assert info.type == "desktop"
        assert info.browser == "Chrome"
        assert info.browser_version == "120"
        assert info.os == "Windows"
        assert info.os_version == "10"
        assert info.is_desktop
        assert not info.is_mobile
        assert not info.is_tablet

    def test_safari_on_iphone(self):
        info = parse_user_agent(
            "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
        )
        assert info.type == "mobile"
        assert info.browser == "Safari"
        assert info.os == "iOS"
        assert info.os_version == "17.1"
        assert info.is_mobile

    def test_ipad_is_tablet(self):
        info = parse_user_agent(
            "Mozilla/5.0 (iPad; CPU OS 16_6 like Mac OS X) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1"
        )
        assert info.type == "tablet"
        assert info.os == "iPadOS"
        assert info.is_tablet
        assert not info.is_mobile

    def test_android_phone(self):
        info = parse_user_agent(
            "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
        )
        assert info.type == "mobile"
        assert info.os == "Android"
        assert info.os_version == "14"

    def test_edge_is_not_chrome(self):
        info = parse_user_agent(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0"
        )
        assert info.browser == "Edge"

    def test_firefox_on_mac(self):
        info = parse_user_agent(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15) Gecko/20100101 Firefox/121.0"
        )
        assert info.browser == "Firefox"
        assert info.os == "macOS"
        assert info.os_version == "10.15"

    def test_smart_tv(self):
        info = parse_user_agent("Mozilla/5.0 (SMART-TV; Linux; Tizen 6.0) AppleWebKit/537.36")
        assert info.type == "tv"

    @pytest.mark.parametrize("ua", [None, "", "   ", 42, "curl/8.4.0"])
    def test_unknown_input_never_raises(self, ua):
        """Unparseable input falls back to the unknown markers."""
        info = parse_user_agent(ua)
        assert isinstance(info, DeviceInfo)
        assert info.type == "unknown"
        assert info.browser == "Unknown"
        assert info.os == "Unknown"
        assert not info.is_desktop

    def test_to_dict(self):
        data = parse_user_agent(None).to_dict()
        assert data["browser_version"] == "Unknown"
        assert data["is_mobile"] is False
