"""Dashboard statistics schemas."""

from pydantic import BaseModel


class GrowthPointSchema(BaseModel):
    date: str
    count: int


class DashboardStatsResponse(BaseModel):
    total_users: int
    pending_verifications: int
    total_records: int
    active_users: int
    user_growth: list[GrowthPointSchema]
