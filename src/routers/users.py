"""User management endpoints."""

from typing import Literal

from fastapi import APIRouter, Query, status

from src.routers.deps import CurrentUserDep, UserServiceDep
from src.schemas.users import (
    CreateUserRequest,
    SmsResponse,
    UserListResponse,
    UserSchema,
)
from src.services.user_service import UserTab

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("", response_model=UserListResponse)
async def list_users(
    users: UserServiceDep,
    current_user: CurrentUserDep,
    tab: UserTab = Query(default="patient"),
    search: str | None = Query(default=None, description="Name search"),
    sort_by: str = Query(default="first_name"),
    order: Literal["asc", "desc"] = Query(default="asc"),
) -> UserListResponse:
    """List the users of a role tab."""
    rows = await users.list_users(
        tab, search=search, sort_by=sort_by, descending=order == "desc"
    )
    return UserListResponse(total=len(rows), users=[UserSchema(**row) for row in rows])


@router.post("", response_model=UserSchema, status_code=status.HTTP_201_CREATED)
async def create_user(
    request: CreateUserRequest,
    users: UserServiceDep,
    current_user: CurrentUserDep,
) -> UserSchema:
    """Add a single user with the next sequential ID."""
    created = await users.create_user(request.model_dump())
    return UserSchema(**created)


@router.post("/{user_id}/toggle-status", response_model=UserSchema)
async def toggle_user_status(
    user_id: int, users: UserServiceDep, current_user: CurrentUserDep
) -> UserSchema:
    """Switch a user between active and inactive."""
    return UserSchema(**await users.toggle_status(user_id))


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: int, users: UserServiceDep, current_user: CurrentUserDep
) -> None:
    await users.delete_user(user_id)


@router.post("/{user_id}/sms", response_model=SmsResponse)
async def send_welcome_sms(
    user_id: int, users: UserServiceDep, current_user: CurrentUserDep
) -> SmsResponse:
    """Send (or re-send) the welcome SMS to a user."""
    result = await users.send_welcome_sms(user_id)
    return SmsResponse(message_id=result.message_id, phone_number=result.phone_number)
