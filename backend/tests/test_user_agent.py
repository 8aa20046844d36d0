"""Device, browser and OS detection from User-Agent headers"""
import pytest

from user_agent import DeviceInfo, parse_user_agent


def test_iphone_safari():
    info = parse_user_agent("Mozilla/5.0 (iPhone; CPU iPhone OS) AppleWebKit/605 Safari/604")
    assert info == DeviceInfo(device_type="mobile", browser="Safari", os="iOS")


def test_windows_chrome_is_desktop():
    info = parse_user_agent(
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"
    )
    assert info.device_type == "desktop"
    # Chrome wins over the Safari token it also carries
    assert info.browser == "Chrome"
    assert info.os == "Windows"


def test_mac_maps_to_macos():
    info = parse_user_agent("Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) Firefox/121.0")
    assert info.os == "MacOS"
    assert info.browser == "Firefox"


def test_android_resolves_to_first_matching_os_rule():
    info = parse_user_agent("Mozilla/5.0 (Linux; Android 14) Chrome/120.0 Mobile Safari/537.36")
    assert info.device_type == "mobile"
    # Linux is listed before Android
    assert info.os == "Linux"


@pytest.mark.parametrize("header", [None, ""])
def test_missing_header_yields_no_device_info(header):
    assert parse_user_agent(header) == DeviceInfo(None, None, None)


def test_unknown_agent_is_other():
    info = parse_user_agent("curl/8.4.0")
    assert info == DeviceInfo(device_type="desktop", browser="Other", os="Other")
