"""
api/endpoints/system_routes.py — Operator controls.

GET  /system/status              — Inventory, approvals, stale claims, workers
GET  /system/settings            — Current runtime toggles
PUT  /system/settings/{key}      — Flip one toggle
GET  /system/workers             — Worker health
POST /system/workers/start       — Start all workers, or one with ?name=
POST /system/workers/stop        — Stop all workers, or one with ?name=
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.schemas import OKResponse, SettingUpdate
from leadflow.db.session import get_db
from leadflow.services import runtime_settings
from leadflow.services.status import get_system_status
from leadflow.workers.supervisor import get_supervisor

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/status", summary="Operational status")
def status(db: Session = Depends(get_db)):
    return get_system_status(db, workers=get_supervisor().status())


@router.get("/settings", summary="Runtime toggles")
def get_settings(db: Session = Depends(get_db)):
    return runtime_settings.load_snapshot(db).as_dict()


@router.put("/settings/{key}", summary="Update a runtime toggle")
def put_setting(key: str, payload: SettingUpdate, db: Session = Depends(get_db)):
    try:
        snapshot = runtime_settings.set_setting(db, key, payload.value)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown setting: {key}")
    db.commit()
    return snapshot.as_dict()


@router.get("/workers", summary="Worker health")
def workers():
    return get_supervisor().status()


def _check_worker(name: Optional[str]) -> None:
    if name and name not in get_supervisor().names:
        raise HTTPException(status_code=404, detail=f"Unknown worker: {name}")


@router.post("/workers/start", response_model=OKResponse, summary="Start workers")
def start_workers(name: Optional[str] = Query(default=None)):
    """Starting a worker that is already running is a no-op."""
    _check_worker(name)
    started = get_supervisor().start(name)
    return OKResponse(message=f"Started: {', '.join(started) or 'none (already running)'}")


@router.post("/workers/stop", response_model=OKResponse, summary="Stop workers")
def stop_workers(name: Optional[str] = Query(default=None)):
    """Stopping lets each worker finish its in-flight item."""
    _check_worker(name)
    stopped = get_supervisor().stop(name)
    return OKResponse(message=f"Stopped: {', '.join(stopped) or 'none (not running)'}")
