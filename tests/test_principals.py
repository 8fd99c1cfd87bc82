import pytest

from utils.principals import channel_for, mask_code, mask_principal, normalize_principal


@pytest.mark.parametrize("raw, expected", [
    ("  Lead@Example.COM ", "lead@example.com"),
    ("+1 (555) 555-0123", "+15555550123"),
    ("0044 20 7946 0958", "+442079460958"),
    ("", ""),
])
def test_normalize_principal(raw, expected):
    assert normalize_principal(raw) == expected


@pytest.mark.parametrize("principal, channel", [
    ("lead@example.com", "email"),
    ("+15555550123", "sms"),
    ("5555550123", None),
    ("+1555", None),
    ("lead@localhost", None),
    ("", None),
])
def test_channel_for(principal, channel):
    assert channel_for(principal) == channel


@pytest.mark.parametrize("raw", [
    "call me at x+1y555z555w0123 thanks",
    "+1/555/555/0123",
    "tel:+15555550123",
    "+1 555 555 0123 ext 4",
    "+1555555O123",
])
def test_phone_with_stray_characters_is_rejected(raw):
    assert channel_for(normalize_principal(raw)) is None


def test_masking_hides_identity_and_code():
    assert mask_principal("lead@example.com") == "l***@example.com"
    assert mask_principal("+15555550123") == "********0123"
    assert mask_code("482913") == "****13"
