from __future__ import annotations

from starlette.datastructures import FormData

from signboard.apps.web.forms import (
    BusinessForm,
    CmsCredentialsForm,
    InviteUserForm,
    LoginForm,
    ScreenForm,
    SetupForm,
    parse_form,
)


def test_login_form_trims_username_but_not_password() -> None:
    values, error = parse_form(LoginForm, FormData({"username": "  owner ", "password": " pw "}))
    assert error is None
    assert values.username == "owner"
    assert values.password == " pw "


def test_missing_field_reports_label() -> None:
    values, error = parse_form(LoginForm, FormData({"username": "owner"}))
    assert values is None
    assert error == "Password is required"


def test_blank_required_text_is_required() -> None:
    _values, error = parse_form(BusinessForm, FormData({"name": "   "}))
    assert error == "Business name is required"


def test_min_length_message() -> None:
    _values, error = parse_form(
        SetupForm,
        FormData({"admin_username": "owner", "admin_password": "short", "admin_password_confirm": "short"}),
    )
    assert error == "Password must be at least 8 characters"


def test_setup_form_cms_fields_are_optional() -> None:
    values, error = parse_form(
        SetupForm,
        FormData(
            {
                "admin_username": "owner",
                "admin_password": "longenough",
                "admin_password_confirm": "longenough",
            }
        ),
    )
    assert error is None
    assert values.xibo_api_url == ""


def test_invalid_role_and_url_are_rejected() -> None:
    _values, error = parse_form(InviteUserForm, FormData({"username": "bob", "admin_level": "root"}))
    assert error == "Role is invalid"
    _values, error = parse_form(
        CmsCredentialsForm,
        FormData({"xibo_api_url": "ftp://cms", "xibo_client_id": "id"}),
    )
    assert error == "CMS API URL is invalid"


def test_optional_display_select_accepts_blank() -> None:
    values, error = parse_form(ScreenForm, FormData({"name": "Front", "xibo_display_id": ""}))
    assert error is None
    assert values.xibo_display_id is None
    values, _ = parse_form(ScreenForm, FormData({"name": "Front", "xibo_display_id": "12"}))
    assert values.xibo_display_id == 12


def test_too_long_and_extra_fields() -> None:
    _values, error = parse_form(BusinessForm, FormData({"name": "x" * 129}))
    assert error == "Business name is too long"
    values, error = parse_form(BusinessForm, FormData({"name": "Cafe", "csrf_token": "abc"}))
    assert error is None and values.name == "Cafe"
