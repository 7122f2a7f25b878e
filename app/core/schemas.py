from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =========================
# QUERY (natural language -> SQL)
# =========================
class QueryRequest(BaseModel):
    # Loosely typed; QueryService.run coerces and answers bad input with 400
    question: Optional[Any] = None
    format: Optional[Any] = None


class QueryResponse(BaseModel):
    answer: str
    executed_sql: str
    row_count: int = Field(alias="rowCount")
    rows: List[Dict[str, Any]] = []

    model_config = ConfigDict(populate_by_name=True)


class QueryErrorResponse(BaseModel):
    error: str
    reason: Optional[str] = None
    detail: Optional[str] = None
    sql: Optional[str] = None


# =========================
# ASSISTANT
# =========================
class AssistantRequest(BaseModel):
    message: Optional[str] = None


class AssistantResponse(BaseModel):
    reply: str


# =========================
# DASHBOARD
# =========================
class DashboardStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_members: int = Field(0, alias="totalMembers")
    total_products: int = Field(0, alias="totalProducts")
    total_orders: int = Field(0, alias="totalOrders")


class RecentActivity(BaseModel):
    type: str
    text: str
    time: str
    icon: str


class DashboardResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stats: DashboardStats
    recent_activities: List[RecentActivity] = Field(
        [], alias="recentActivities"
    )


# =========================
# AUTH
# =========================
class CurrentUser(BaseModel):
    """Claims taken from an identity-provider access token."""

    id: str
    email: Optional[str] = None
    role: Optional[str] = None
