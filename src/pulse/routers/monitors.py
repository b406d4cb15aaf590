from fastapi import APIRouter, Depends, HTTPException, status

from pulse.dependencies import get_engine
from pulse.engine import Engine, MonitorNotFoundError
from pulse.models.monitor import Monitor
from pulse.schemas import (
    CheckHistoryResponse,
    IncidentResponse,
    MonitorConfig,
    MonitorResponse,
    MonitorUpdate,
)

router = APIRouter(prefix="/api/monitors", tags=["monitors"])


async def _get_monitor(engine: Engine, monitor_id: str) -> Monitor:
    try:
        return await engine.monitor(monitor_id)
    except MonitorNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Monitor not found",
        )


@router.get("", response_model=list[MonitorResponse])
async def list_monitors(engine: Engine = Depends(get_engine)):
    monitors = await engine.all_monitors()
    return [MonitorResponse.model_validate(m) for m in monitors]


@router.post("", response_model=MonitorResponse, status_code=201)
async def create_monitor(body: MonitorConfig, engine: Engine = Depends(get_engine)):
    monitor = await engine.register(body)
    return MonitorResponse.model_validate(monitor)


@router.get("/{monitor_id}", response_model=MonitorResponse)
async def get_monitor(monitor_id: str, engine: Engine = Depends(get_engine)):
    monitor = await _get_monitor(engine, monitor_id)
    return MonitorResponse.model_validate(monitor)


@router.patch("/{monitor_id}", response_model=MonitorResponse)
async def update_monitor(
    monitor_id: str,
    body: MonitorUpdate,
    engine: Engine = Depends(get_engine),
):
    await _get_monitor(engine, monitor_id)
    monitor = await engine.update(monitor_id, body)
    return MonitorResponse.model_validate(monitor)


@router.post("/{monitor_id}/pause", response_model=MonitorResponse)
async def pause_monitor(monitor_id: str, engine: Engine = Depends(get_engine)):
    await _get_monitor(engine, monitor_id)
    monitor = await engine.pause(monitor_id)
    return MonitorResponse.model_validate(monitor)


@router.post("/{monitor_id}/resume", response_model=MonitorResponse)
async def resume_monitor(monitor_id: str, engine: Engine = Depends(get_engine)):
    await _get_monitor(engine, monitor_id)
    monitor = await engine.resume(monitor_id)
    return MonitorResponse.model_validate(monitor)


@router.delete("/{monitor_id}", status_code=204)
async def delete_monitor(monitor_id: str, engine: Engine = Depends(get_engine)):
    await _get_monitor(engine, monitor_id)
    await engine.remove(monitor_id)


@router.get("/{monitor_id}/checks", response_model=list[CheckHistoryResponse])
async def get_check_history(
    monitor_id: str,
    hours: int = 24,
    limit: int = 100,
    engine: Engine = Depends(get_engine),
):
    await _get_monitor(engine, monitor_id)
    checks = await engine.check_history(monitor_id, hours=hours, limit=limit)
    return [CheckHistoryResponse.model_validate(c) for c in checks]


@router.get("/{monitor_id}/incidents", response_model=list[IncidentResponse])
async def get_monitor_incidents(
    monitor_id: str,
    limit: int = 100,
    engine: Engine = Depends(get_engine),
):
    await _get_monitor(engine, monitor_id)
    incidents = await engine.incidents(monitor_id=monitor_id, limit=limit)
    return [IncidentResponse.model_validate(i) for i in incidents]
