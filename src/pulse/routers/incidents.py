from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from pulse.dependencies import get_engine
from pulse.engine import Engine
from pulse.incidents import IncidentNotFoundError, IncidentStateError
from pulse.models.incident import IncidentStatus
from pulse.schemas import AcknowledgeRequest, IncidentResponse, IncidentUpdate

router = APIRouter(prefix="/api/incidents", tags=["incidents"])


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Incident not found",
    )


@router.get("", response_model=list[IncidentResponse])
async def list_incidents(
    state: Optional[IncidentStatus] = Query(None, alias="status"),
    limit: int = 100,
    engine: Engine = Depends(get_engine),
):
    incidents = await engine.incidents(status=state.value if state else None, limit=limit)
    return [IncidentResponse.model_validate(i) for i in incidents]


@router.get("/{incident_id}", response_model=IncidentResponse)
async def get_incident(incident_id: str, engine: Engine = Depends(get_engine)):
    try:
        incident = await engine.incident(incident_id)
    except IncidentNotFoundError:
        raise _not_found()
    return IncidentResponse.model_validate(incident)


@router.post("/{incident_id}/acknowledge", response_model=IncidentResponse)
async def acknowledge_incident(
    incident_id: str,
    body: AcknowledgeRequest,
    engine: Engine = Depends(get_engine),
):
    try:
        incident = await engine.acknowledge(incident_id, body.by)
    except IncidentNotFoundError:
        raise _not_found()
    except IncidentStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return IncidentResponse.model_validate(incident)


@router.patch("/{incident_id}", response_model=IncidentResponse)
async def update_incident(
    incident_id: str,
    body: IncidentUpdate,
    engine: Engine = Depends(get_engine),
):
    try:
        incident = await engine.annotate(incident_id, body.notes)
    except IncidentNotFoundError:
        raise _not_found()
    return IncidentResponse.model_validate(incident)
