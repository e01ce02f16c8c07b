"""Tests for the utils module."""
from unittest.mock import patch
import pytest
from fastapi import HTTPException

from epic_auth.core.config import settings
from epic_auth.core.utils import (
    get_info_from_request,
    read_html_template,
    render_html_template,
    validate_email,
    validate_password,
    validate_username,
)


@pytest.mark.parametrize("username, expected", [
    ("Kody", "kody"),
    ("kody_42", "kody_42"),
    ("abc", "abc"),
    ("ab", None),
    ("a" * 21, None),
    ("kody!", None),
])
def test_validate_username(username, expected):
    """Test usernames are lowercased and restricted."""
    if expected is None:
        with pytest.raises(HTTPException):
            validate_username(username)
    else:
        assert validate_username(username) == expected


def test_validate_email():
    """Test emails are normalized, and invalid ones rejected or reported."""
    assert validate_email("Kody@Example.com") == "kody@example.com"
    assert validate_email("not-an-email", raise_error=False) is False
    with pytest.raises(HTTPException) as exc_info:
        validate_email("not-an-email")
    assert exc_info.value.status_code == 400


@pytest.mark.parametrize("environment, raises", [
    ("local", False),
    ("production", True),
])
def test_validate_password_length(environment, raises):
    """Test short passwords are only tolerated locally."""
    assert validate_password("kodylovesyou") == "kodylovesyou"
    with patch.object(settings, "ENVIRONMENT", environment):
        if raises:
            with pytest.raises(HTTPException):
                validate_password("abc")
        else:
            assert validate_password("abc") == "abc"


def test_render_verification_template():
    """Test the verification template shows the code."""
    html = render_html_template(read_html_template("email_verification.html"), {
        "OTP_CODE": "123456",
        "VERIFY_URL": "http://localhost/api/auth/verify",
    })
    assert "123456" in html
    assert "http://localhost/api/auth/verify" in html


def test_get_info_from_request_without_request():
    """Test the info of an unknown request."""
    assert get_info_from_request(None)["ip_address"] == "Unknown IP"
