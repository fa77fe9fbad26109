from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, FastAPI, HTTPException
from pydantic import BaseModel, Field

from precastplan.core.errors import BatchNotFound, ConcurrentRescheduleConflict, SchedulingError
from precastplan.core.models import PieceEnvelope
from precastplan.scheduler.service import ScheduleService

logger = logging.getLogger(__name__)


class SuggestDateRequest(BaseModel):
    height: float = Field(gt=0)
    width: float = Field(gt=0)
    length: float = Field(gt=0)
    quantity: int = Field(gt=0)
    unit_minutes: float = Field(ge=0)
    mold_id: str | None = None


class DelayRequest(BaseModel):
    batch_id: str
    delay_minutes: int = Field(gt=0)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, BatchNotFound):
        return HTTPException(status_code=404, detail=exc.to_row())
    if isinstance(exc, ConcurrentRescheduleConflict):
        return HTTPException(status_code=409, detail=exc.to_row())
    if isinstance(exc, SchedulingError):
        return HTTPException(status_code=422, detail=exc.to_row())
    return HTTPException(status_code=422, detail={"error": "ValueError", "message": str(exc)})


def build_router(service: ScheduleService) -> APIRouter:
    router = APIRouter(prefix="/api/schedule", tags=["schedule"])

    @router.post("/reschedule")
    async def reschedule():
        try:
            result = await service.reschedule_async()
        except ValueError as exc:
            raise _http_error(exc) from exc
        return result.to_row()

    @router.post("/suggest-date")
    async def suggest_date(req: SuggestDateRequest):
        envelope = PieceEnvelope(height=req.height, width=req.width, length=req.length)
        try:
            suggestion = await asyncio.to_thread(
                lambda: service.suggest_date(
                    envelope=envelope,
                    quantity=req.quantity,
                    unit_minutes=req.unit_minutes,
                    mold_id=req.mold_id,
                )
            )
        except ValueError as exc:
            raise _http_error(exc) from exc
        return suggestion.to_row()

    @router.post("/delay")
    async def delay(req: DelayRequest):
        try:
            return await asyncio.to_thread(
                lambda: service.apply_delay(batch_id=req.batch_id, delay_minutes=req.delay_minutes)
            )
        except ValueError as exc:
            raise _http_error(exc) from exc

    @router.get("")
    async def get_schedule():
        return {"molds": await asyncio.to_thread(service.get_schedule)}

    @router.get("/runs/last")
    async def last_run():
        run = await asyncio.to_thread(service.get_last_run)
        if run is None:
            raise HTTPException(status_code=404, detail={"error": "NoRun", "message": "no schedule run yet"})
        return run

    return router


def register_routes(app: FastAPI, service: ScheduleService) -> None:
    app.include_router(build_router(service))
    logger.info("Schedule API mounted at /api/schedule")
