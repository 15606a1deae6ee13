import sqlite3
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..db import get_db_dependency
from ..services.datapoints import list_data_points

router = APIRouter()


@router.get("/")
def get_data_points(
    user_id: str,
    provider: Optional[str] = None,
    days: int = Query(default=30, ge=1, le=3660),
    ending: Optional[date] = None,
    conn: sqlite3.Connection = Depends(get_db_dependency),
):
    end_date = ending or date.today()
    return list_data_points(
        conn,
        user_id=user_id,
        provider=provider,
        start=end_date - timedelta(days=days - 1),
        end=end_date,
    )
