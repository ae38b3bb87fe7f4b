"""Patient account request endpoints."""

from fastapi import APIRouter, Query, status

from src.routers.deps import AccountRequestServiceDep, CurrentUserDep
from src.schemas.users import (
    AccountRequestListResponse,
    AccountRequestSchema,
    ApprovalResponse,
    UserSchema,
)

router = APIRouter(prefix="/requests", tags=["Account Requests"])


@router.get("", response_model=AccountRequestListResponse)
async def list_requests(
    requests: AccountRequestServiceDep,
    current_user: CurrentUserDep,
    search: str | None = Query(default=None, description="Name search"),
) -> AccountRequestListResponse:
    """List pending account requests, newest first."""
    rows = await requests.list_requests(search)
    return AccountRequestListResponse(
        total=len(rows), requests=[AccountRequestSchema(**row) for row in rows]
    )


@router.post("/{request_id}/approve", response_model=ApprovalResponse)
async def approve_request(
    request_id: int, requests: AccountRequestServiceDep, current_user: CurrentUserDep
) -> ApprovalResponse:
    """
    Approve a request into an active patient user.

    The welcome SMS is best-effort: a gateway failure is returned as a
    warning and the approval still stands.
    """
    result = await requests.approve(request_id)
    return ApprovalResponse(
        request_id=result.request_id,
        user=UserSchema(**result.user),
        notified=result.notified,
        warnings=result.warnings,
    )


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def reject_request(
    request_id: int, requests: AccountRequestServiceDep, current_user: CurrentUserDep
) -> None:
    """Reject (delete) a request."""
    await requests.reject(request_id)
