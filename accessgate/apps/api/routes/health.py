from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.apps.api.deps import get_db
from accessgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from accessgate.apps.api.response import SuccessEnvelope, success_response


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    database: str
    pool: dict[str, int | None]


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    # Public check; reports degraded rather than failing when the database is unreachable.
    database_state = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("health_database_unreachable error=%s", type(exc).__name__)
        database_state = "unavailable"
    payload = HealthResponse(
        status="ok" if database_state == "ok" else "degraded",
        database=database_state,
        pool=request.app.state.database.pool_stats(),
    )
    return success_response(request=request, data=payload.model_dump())
