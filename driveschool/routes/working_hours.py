# driveschool/routes/working_hours.py
"""Instructor working hours and per-date availability."""

from __future__ import annotations

from datetime import date
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Path, Query, Request, Response

from ..auth import Caller, get_optional_caller
from ..core.constants import INSTRUCTOR_ID_PATTERN
from ..core.exceptions import ForbiddenException
from ..dependencies import get_orchestrator, get_working_hours_service, inbound_request
from ..orchestrator import InboundRequest, Priority, RequestOrchestrator, RouteConfig
from ..schemas.working_hours import AvailabilityResponse, WorkingHoursResponse, WorkingHoursUpdate
from ..services.working_hours_service import WorkingHoursService

router = APIRouter(tags=["instructors"])

HOURS_READ_ROUTE = RouteConfig(
    route_id="working_hours.read", priority=Priority.LOW, require_auth=False
)
HOURS_SAVE_ROUTE = RouteConfig(route_id="working_hours.save", priority=Priority.HIGH)
AVAILABILITY_ROUTE = RouteConfig(
    route_id="availability.read", priority=Priority.MEDIUM, require_auth=False
)

InstructorId = Annotated[str, Path(pattern=INSTRUCTOR_ID_PATTERN)]


@router.get("/{instructor_id}/working-hours", response_model=WorkingHoursResponse)
async def get_working_hours(
    request: Request,
    response: Response,
    instructor_id: InstructorId,
    caller: Optional[Caller] = Depends(get_optional_caller),
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
    service: WorkingHoursService = Depends(get_working_hours_service),
) -> WorkingHoursResponse:
    async def handler(req: InboundRequest) -> WorkingHoursResponse:
        days = await service.get_working_hours(instructor_id)
        return WorkingHoursResponse(instructor_id=instructor_id, days=days)

    return await orchestrator.execute(
        inbound_request(request, caller, {"instructor_id": instructor_id}),
        handler,
        HOURS_READ_ROUTE,
        response,
    )


@router.put("/{instructor_id}/working-hours", response_model=WorkingHoursResponse)
async def set_working_hours(
    body: WorkingHoursUpdate,
    request: Request,
    response: Response,
    instructor_id: InstructorId,
    caller: Optional[Caller] = Depends(get_optional_caller),
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
    service: WorkingHoursService = Depends(get_working_hours_service),
) -> WorkingHoursResponse:
    """Replace the weekly schedule. Instructors edit their own; editors edit anyone's."""

    async def handler(req: InboundRequest) -> WorkingHoursResponse:
        if req.caller_id != instructor_id and not req.is_editor:
            raise ForbiddenException("Cannot change another instructor's working hours")
        days = await service.set_working_hours(instructor_id, body)
        return WorkingHoursResponse(instructor_id=instructor_id, days=days)

    payload = {"instructor_id": instructor_id, **body.model_dump(mode="json")}
    return await orchestrator.execute(
        inbound_request(request, caller, payload), handler, HOURS_SAVE_ROUTE, response
    )


@router.get("/{instructor_id}/availability", response_model=AvailabilityResponse)
async def get_availability(
    request: Request,
    response: Response,
    instructor_id: InstructorId,
    on_date: date = Query(..., alias="date"),
    caller: Optional[Caller] = Depends(get_optional_caller),
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
    service: WorkingHoursService = Depends(get_working_hours_service),
) -> AvailabilityResponse:
    async def handler(req: InboundRequest) -> AvailabilityResponse:
        slots = await service.get_availability(instructor_id, on_date)
        return AvailabilityResponse(
            instructor_id=instructor_id,
            date=on_date,
            slot_minutes=service.slot_minutes,
            slots=slots,
        )

    return await orchestrator.execute(
        inbound_request(request, caller, {"instructor_id": instructor_id, "date": on_date.isoformat()}),
        handler,
        AVAILABILITY_ROUTE,
        response,
    )
