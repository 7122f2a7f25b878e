import asyncio
import logging
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from app.core import schemas
from app.core.database import Datastore, DatastoreError, get_datastore, normalize_rows
from app.core.security import get_current_user

router = APIRouter(prefix="/api", tags=["Dashboard"])

user_dep = Annotated[schemas.CurrentUser, Depends(get_current_user)]
datastore_dep = Annotated[Datastore, Depends(get_datastore)]

DASHBOARD_TIMEOUT_SECONDS = 10

STATS_QUERY = (
    "select (select count(*) from members) as total_members, "
    "(select count(*) from products) as total_products, "
    "(select count(*) from orders) as total_orders"
)
RECENT_QUERY = "select name, created_at from {table} order by created_at desc limit 2"

# table -> (activity type, label, icon)
RECENT_SOURCES = {
    "members": ("member", "Member baru", "user-plus"),
    "products": ("product", "Produk baru", "shopping-bag"),
}


async def _read(datastore: Datastore, query: str) -> List[Dict[str, Any]]:
    payload = await asyncio.wait_for(
        datastore.execute(query), timeout=DASHBOARD_TIMEOUT_SECONDS
    )
    return normalize_rows(payload)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except (TypeError, ValueError):
        return None


@router.get("/dashboard", response_model=schemas.DashboardResponse)
async def get_dashboard(current_user: user_dep, datastore: datastore_dep):
    """Record counts plus the newest members and products."""
    try:
        stats_rows = await _read(datastore, STATS_QUERY)
    except (DatastoreError, asyncio.TimeoutError) as error:
        logging.error(f"Dashboard API error: {error!r}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error fetching statistics",
        )
    counts = stats_rows[0] if stats_rows else {}

    activities = []
    for table, (kind, label, icon) in RECENT_SOURCES.items():
        try:
            rows = await _read(datastore, RECENT_QUERY.format(table=table))
        except (DatastoreError, asyncio.TimeoutError) as error:
            logging.warning(f"Skipping recent {table}: {error!r}")
            continue
        for row in rows:
            created_at = _parse_timestamp(row.get("created_at"))
            activities.append((created_at, kind, f"{label}: {row.get('name')}", icon))

    # Newest first; rows without a timestamp go last
    activities.sort(
        key=lambda a: a[0].timestamp() if a[0] else float("-inf"), reverse=True
    )

    recent = [
        schemas.RecentActivity(
            type=kind,
            text=text,
            time=created_at.strftime("%d/%m/%Y, %H.%M.%S") if created_at else "",
            icon=icon,
        )
        for created_at, kind, text, icon in activities[:5]
    ]

    return schemas.DashboardResponse(
        stats=schemas.DashboardStats(
            total_members=counts.get("total_members") or 0,
            total_products=counts.get("total_products") or 0,
            total_orders=counts.get("total_orders") or 0,
        ),
        recent_activities=recent,
    )
