"""Active timeline endpoints"""

from fastapi import APIRouter, Depends

from bisyaroh_gateway.api.v1.schemas import (
    TimelineCreateRequest,
    TimelineResponse,
    PeriodSchema,
    SimulationDateRequest,
    TimelineMaintenanceResponse,
)
from bisyaroh_gateway.api.dependencies import get_timeline_service, get_query_service
from bisyaroh_gateway.domain.allocation import period_key_for
from bisyaroh_gateway.domain.models import Period, Timeline
from bisyaroh_gateway.services.payment_queries import PaymentQueryService
from bisyaroh_gateway.services.timelines import TimelineService

router = APIRouter()


def _to_response(timeline: Timeline) -> TimelineResponse:
    return TimelineResponse(
        id=timeline.id,
        name=timeline.name,
        mode=timeline.mode,
        simulation_date=timeline.simulation_date,
        periods=[
            PeriodSchema(
                key=p.key,
                number=p.number,
                label=p.label,
                amount=p.amount,
                due_date=p.due_date,
                active=p.active,
            )
            for p in timeline.ordered_periods()
        ],
    )


@router.post("/timelines", response_model=TimelineResponse, status_code=201)
def create_timeline(
    request_body: TimelineCreateRequest,
    service: TimelineService = Depends(get_timeline_service),
):
    """Create the active timeline from explicit periods; the previous one is archived"""
    periods = {}
    for p in request_body.periods:
        key = p.key or period_key_for(p.number)
        periods[key] = Period(
            key=key,
            number=p.number,
            label=p.label,
            amount=p.amount,
            due_date=p.due_date,
            active=p.active,
        )

    timeline = service.create_active_timeline(
        Timeline(
            id=request_body.id,
            name=request_body.name,
            mode=request_body.mode,
            simulation_date=request_body.simulation_date,
            periods=periods,
        )
    )
    return _to_response(timeline)


@router.get("/timelines/active", response_model=TimelineResponse)
def get_active_timeline(queries: PaymentQueryService = Depends(get_query_service)):
    return _to_response(queries.get_active_timeline())


@router.put("/timelines/active/simulation-date", response_model=TimelineResponse)
def update_simulation_date(
    request_body: SimulationDateRequest,
    service: TimelineService = Depends(get_timeline_service),
):
    """Pin the date used for overdue checks (manual mode only)"""
    return _to_response(service.update_simulation_date(request_body.simulation_date))


@router.post("/timelines/active/reset", response_model=TimelineMaintenanceResponse)
def reset_timeline_payments(
    service: TimelineService = Depends(get_timeline_service),
    queries: PaymentQueryService = Depends(get_query_service),
):
    """Delete every payment record of the active timeline"""
    timeline = queries.get_active_timeline()
    removed = service.reset_payments()
    return TimelineMaintenanceResponse(timeline_id=timeline.id, removed_payments=removed)


@router.delete("/timelines/active", response_model=TimelineMaintenanceResponse)
def delete_active_timeline(service: TimelineService = Depends(get_timeline_service)):
    timeline_id = service.delete_active_timeline()
    return TimelineMaintenanceResponse(timeline_id=timeline_id)
