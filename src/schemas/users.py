"""Schemas for user management and account request endpoints."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class UserSchema(BaseModel):
    """A user row as stored."""

    model_config = ConfigDict(extra="allow")

    id: Any
    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    date_of_birth: str | None = None
    gender: str | None = None
    phone: str | None = None
    email: str | None = None
    role: str | None = None
    status: str | None = None
    created_at: str | None = None
    img_url: str | None = None


class UserListResponse(BaseModel):
    total: int
    users: list[UserSchema]


class CreateUserRequest(BaseModel):
    """Manually added user. Admins need an email, everyone else a phone."""

    first_name: str = Field(min_length=1)
    middle_name: str | None = None
    last_name: str = Field(min_length=1)
    date_of_birth: str
    gender: str | None = None
    role: str = "patient"
    phone: str | None = None
    email: str | None = None


class SmsResponse(BaseModel):
    message_id: str | None = None
    phone_number: str


class AccountRequestSchema(BaseModel):
    """A pending patient account request."""

    model_config = ConfigDict(extra="allow")

    id: Any
    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    date_of_birth: str | None = None
    gender: str | None = None
    phone: str | None = None
    id_photo_url: str | None = None
    created_at: str | None = None


class AccountRequestListResponse(BaseModel):
    total: int
    requests: list[AccountRequestSchema]


class ApprovalResponse(BaseModel):
    request_id: Any
    user: UserSchema
    notified: bool
    warnings: list[str] = Field(default_factory=list)
