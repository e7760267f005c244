from __future__ import annotations

from typing import Annotated, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError
from starlette.datastructures import FormData


# Names and URLs are trimmed; passwords are taken verbatim.
Text = Annotated[str, StringConstraints(strip_whitespace=True)]

# Optional selects submit "" for "none chosen".
_OPTIONAL_INT_FIELDS = frozenset({"xibo_display_id", "media_id", "folder_id"})


class FormModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


M = TypeVar("M", bound=FormModel)


class LoginForm(FormModel):
    username: Text = Field(min_length=1, title="Username")
    password: str = Field(min_length=1, title="Password")


class SetupForm(FormModel):
    admin_username: Text = Field(min_length=1, max_length=64, title="Username")
    admin_password: str = Field(min_length=8, title="Password")
    admin_password_confirm: str = Field(min_length=1, title="Confirm password")
    xibo_api_url: Text = Field(default="", title="CMS API URL")
    xibo_client_id: Text = Field(default="", title="Client ID")
    xibo_client_secret: Text = Field(default="", title="Client secret")


class ChangePasswordForm(FormModel):
    current_password: str = Field(min_length=1, title="Current password")
    new_password: str = Field(min_length=8, title="New password")
    new_password_confirm: str = Field(min_length=1, title="Confirm new password")


class CmsCredentialsForm(FormModel):
    xibo_api_url: Text = Field(min_length=1, pattern=r"^https?://", title="CMS API URL")
    xibo_client_id: Text = Field(min_length=1, title="Client ID")
    # Blank keeps the stored secret.
    xibo_client_secret: Text = Field(default="", title="Client secret")


class InviteUserForm(FormModel):
    username: Text = Field(min_length=1, max_length=64, title="Username")
    admin_level: Literal["owner", "manager", "user"] = Field(title="Role")


class JoinForm(FormModel):
    password: str = Field(min_length=8, title="Password")
    password_confirm: str = Field(min_length=1, title="Confirm password")


class BusinessForm(FormModel):
    name: Text = Field(min_length=1, max_length=128, title="Business name")


class ScreenForm(FormModel):
    name: Text = Field(min_length=1, max_length=128, title="Screen name")
    xibo_display_id: int | None = Field(default=None, title="Display")


class MenuBoardForm(FormModel):
    name: Text = Field(min_length=1, max_length=128, title="Name")
    code: Text = Field(default="", title="Code")
    description: Text = Field(default="", title="Description")


class CategoryForm(FormModel):
    name: Text = Field(min_length=1, max_length=128, title="Name")
    code: Text = Field(default="", title="Code")
    media_id: int | None = Field(default=None, title="Image")


class ProductForm(FormModel):
    name: Text = Field(min_length=1, max_length=128, title="Name")
    price: Text = Field(min_length=1, max_length=32, title="Price")
    description: Text = Field(default="", title="Description")
    calories: Text = Field(default="", title="Calories")
    allergy_info: Text = Field(default="", title="Allergy info")
    availability: int = Field(default=1, ge=0, le=1, title="Availability")
    media_id: int | None = Field(default=None, title="Image")


class MediaUploadForm(FormModel):
    name: Text = Field(default="", max_length=128, title="Name")
    folder_id: int | None = Field(default=None, title="Folder")


class MenuScreenForm(FormModel):
    name: Text = Field(min_length=1, max_length=128, title="Name")
    template_id: Text = Field(min_length=1, title="Template")
    display_time: int = Field(default=10, ge=1, le=3600, title="Display time")
    sort_order: int = Field(default=0, ge=0, title="Sort order")


def _describe_error(model: type[FormModel], error: dict) -> str:
    loc = error.get("loc") or ()
    field = model.model_fields.get(str(loc[0])) if loc else None
    label = field.title if field is not None and field.title else "Form"
    kind = error.get("type")
    if kind == "missing":
        return f"{label} is required"
    if kind == "string_too_short":
        min_length = (error.get("ctx") or {}).get("min_length", 1)
        if min_length <= 1:
            return f"{label} is required"
        return f"{label} must be at least {min_length} characters"
    if kind == "string_too_long":
        return f"{label} is too long"
    return f"{label} is invalid"


def parse_form(model: type[M], form: FormData) -> tuple[M | None, str | None]:
    """Validate a submitted form into ``model``.

    Returns ``(values, None)`` on success or ``(None, message)`` describing
    the first failing field.
    """
    data: dict[str, str | None] = {}
    for key, value in form.multi_items():
        if not isinstance(value, str):
            continue
        data[key] = None if key in _OPTIONAL_INT_FIELDS and not value.strip() else value
    try:
        return model.model_validate(data), None
    except ValidationError as exc:
        return None, _describe_error(model, exc.errors()[0])
