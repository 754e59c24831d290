from datetime import date

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from birthdays.core.datetime_utils import is_valid_timezone


class UserPayload(BaseModel):
    """Request body for creating or replacing a user."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    email: EmailStr
    first_name: str = Field(alias="firstName", min_length=1, max_length=100)
    last_name: str = Field(alias="lastName", min_length=1, max_length=100)
    birth_date: date = Field(alias="birthDate")
    location: str = Field(min_length=1, max_length=64)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("birth_date", mode="before")
    @classmethod
    def strip_birth_date(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v

    @field_validator("location")
    @classmethod
    def validate_location(cls, v: str) -> str:
        if not is_valid_timezone(v):
            raise ValueError(f"Invalid timezone: {v}")
        return v


class OperationError(BaseModel):
    """Machine-readable error code."""

    code: str


class OperationResponse(BaseModel):
    """Response envelope for user mutations."""

    success: bool
    error: OperationError | None = None
