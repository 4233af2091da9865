"""
Pydantic models for API request/response validation.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional, List, Union


class DashboardCreateRequest(BaseModel):
    """Request to declare a new dashboard."""
    name: str = Field(
        ...,
        min_length=1,
        max_length=63,
        pattern=r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$",
        description="Resource name (DNS-1123 label)",
        examples=["team-overview"],
    )
    namespace: Optional[str] = Field(
        default=None,
        max_length=63,
        pattern=r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$",
        description="Target namespace (defaults to the API's DEFAULT_NAMESPACE)",
    )
    config: Union[Dict[str, Any], str] = Field(
        ...,
        description="Dashboard definition passed verbatim to the dashboard service",
        examples=[{"title": "Team overview"}],
    )


class DashboardCondition(BaseModel):
    type: str
    status: str
    reason: str = ""
    message: str = ""
    lastTransitionTime: Optional[str] = None


class DashboardResponse(BaseModel):
    """Dashboard resource as seen by API clients."""
    name: str
    namespace: str
    phase: str = "Pending"
    dashboardId: Optional[str] = None
    dashboardTitle: Optional[str] = None
    config: str = ""
    createdAt: Optional[str] = None
    conditions: List[DashboardCondition] = []


class DashboardListResponse(BaseModel):
    dashboards: List[DashboardResponse]
    total: int


class ErrorResponse(BaseModel):
    detail: str
    code: str = "UNKNOWN_ERROR"

