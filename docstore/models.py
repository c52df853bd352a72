"""
docstore/models.py -- Field constraints for each collection.

These pydantic models are the storage layer's schema: the Collection runs
every create and update through the matching model, and AuthFlow runs signup
and password changes through validate_new_user() / validate_password_change().
Nothing above this layer re-validates field shapes.

Unknown keys are dropped (extra="ignore"), so a client cannot write columns
the model does not declare -- in particular no credential column is reachable
through a generic create or update.

Any pydantic failure is re-raised as core.errors.ValidationError with one
human-readable message listing every failing field.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from core.errors import ValidationError

PASSWORD_MIN_LENGTH = 8
# bcrypt only hashes the first 72 bytes; longer inputs are rejected up front.
PASSWORD_MAX_BYTES = 72
PASSWORD_SPECIAL_CHARS = '!@#$%^&*(),.?":{}|<>'


class Role(str, Enum):
    user = "user"
    guide = "guide"
    lead_guide = "lead-guide"
    admin = "admin"


class Difficulty(str, Enum):
    easy = "easy"
    medium = "medium"
    difficult = "difficult"


def slugify(text: str) -> str:
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def check_password_policy(value: str) -> str:
    """Raise ValueError naming the first rule the password breaks."""
    if len(value) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes long")
    if not re.search(r"[A-Z]", value):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"[0-9]", value):
        raise ValueError("Password must contain at least one number")
    if not any(ch in PASSWORD_SPECIAL_CHARS for ch in value):
        raise ValueError("Password must contain at least one special character")
    return value


# ---------------------------------------------------------------------------
# Tours
# ---------------------------------------------------------------------------


class GeoPoint(BaseModel):
    """GeoJSON point. coordinates are [longitude, latitude]."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["Point"] = "Point"
    coordinates: list[float] = Field(min_length=2, max_length=2)
    address: Optional[str] = None
    description: Optional[str] = None

    @field_validator("coordinates")
    @classmethod
    def check_range(cls, value: list[float]) -> list[float]:
        lng, lat = value
        if not (-180 <= lng <= 180 and -90 <= lat <= 90):
            raise ValueError("Coordinates must be [longitude, latitude] within valid ranges")
        return value


class TourLocation(GeoPoint):
    day: Optional[int] = None


class TourDocument(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(min_length=10, max_length=40)
    slug: Optional[str] = None
    duration: int = Field(gt=0)
    max_group_size: int = Field(gt=0)
    difficulty: Difficulty
    price: float = Field(ge=0)
    price_discount: Optional[float] = Field(default=None, ge=0)
    rating: float = 4.5
    ratings_average: Optional[float] = Field(default=None, ge=1, le=5)
    ratings_quantity: int = Field(default=0, ge=0)
    summary: str = Field(min_length=1)
    description: Optional[str] = None
    cover: str = Field(min_length=1)
    images: list[str] = Field(default_factory=list)
    start_dates: list[str] = Field(default_factory=list)
    start_location: Optional[GeoPoint] = None
    locations: list[TourLocation] = Field(default_factory=list)
    guides: list[int] = Field(default_factory=list)

    @field_validator("start_dates")
    @classmethod
    def check_dates(cls, values: list[str]) -> list[str]:
        for value in values:
            try:
                date.fromisoformat(value[:10])
            except ValueError as exc:
                raise ValueError(f"Invalid start date: {value!r}") from exc
        return values

    @model_validator(mode="after")
    def derive_fields(self) -> "TourDocument":
        if self.price_discount is not None and self.price_discount >= self.price:
            raise ValueError(f"Discount price ({self.price_discount:g}) should be below regular price")
        self.slug = slugify(self.name)
        return self


def duration_weeks(doc: dict[str, Any]) -> float | None:
    duration = doc.get("duration")
    return duration / 7 if duration is not None else None


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


class ReviewDocument(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    review: str = Field(min_length=1)
    rating: int = Field(ge=1, le=5)
    tour: int
    user: int


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserProfile(BaseModel):
    """Public, user-editable fields of a user document."""

    # No str_strip_whitespace here: NewUser inherits this config and passwords
    # must reach the hasher byte-for-byte.
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    photo: str = "user.png"
    role: Role = Role.user

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("email", mode="before")
    @classmethod
    def lowercase_email(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class PasswordFields(BaseModel):
    model_config = ConfigDict(extra="ignore")

    password: str
    password_confirm: str

    @field_validator("password")
    @classmethod
    def check_policy(cls, value: str) -> str:
        return check_password_policy(value)

    @model_validator(mode="after")
    def check_confirmation(self) -> "PasswordFields":
        if self.password != self.password_confirm:
            raise ValueError("Passwords are not the same")
        return self


class NewUser(UserProfile, PasswordFields):
    """Signup payload: profile plus a password that meets the policy."""


# ---------------------------------------------------------------------------
# Validation entry points
# ---------------------------------------------------------------------------


def _format_errors(exc: PydanticValidationError) -> tuple[str, list[str]]:
    messages = []
    fields = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        msg = str(err.get("msg", "invalid"))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, ") :]
        messages.append(f"{loc}: {msg}" if loc else msg)
        if loc:
            fields.append(loc)
    return "Invalid input data. " + ". ".join(messages) + ".", fields


def validate_document(model: type[BaseModel], data: dict[str, Any]) -> dict[str, Any]:
    """Validate data against model and return the JSON-ready field dict."""
    try:
        instance = model.model_validate(data)
    except PydanticValidationError as exc:
        message, fields = _format_errors(exc)
        raise ValidationError(message, context={"fields": fields}) from exc
    return instance.model_dump(mode="json")


def validate_new_user(data: dict[str, Any]) -> dict[str, Any]:
    return validate_document(NewUser, data)


def validate_password_change(data: dict[str, Any]) -> dict[str, Any]:
    return validate_document(PasswordFields, data)
