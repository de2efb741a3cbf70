from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from app.core.security import check_api_key
from app.analytics import db as analytics_db

router = APIRouter()


def _auth(x_api_key: str | None = Header(default=None, alias="X-API-Key")):
    check_api_key(x_api_key)


@router.get("/analytics/summary")
def summary(_: None = Depends(_auth)):
    return analytics_db.get_summary()


@router.get("/analytics/latest")
def latest(
    limit: int = Query(default=20, ge=1, le=200),
    _: None = Depends(_auth),
):
    return analytics_db.get_latest(limit=limit)


@router.get("/analytics/runs/{run_id}/decisions")
def run_decisions(run_id: str, _: None = Depends(_auth)):
    decisions = analytics_db.get_run_decisions(run_id)
    if not decisions:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No decision calls recorded for this run.")
    return decisions
