"""
Routes for slice jobs.

A client posts meshes and settings, receives a slice identifier and
polls the job status.  The build itself runs as a background task on
a ``SlicingSession`` kept in memory for the lifetime of the process;
job metadata is persisted as ``BuildRecord`` rows.  Changing settings
re-slices the same meshes, cancelling a build that is still running.
Layer geometry is served from the session's current store, so a client
reading layers while a re-slice is in progress keeps seeing the
previous complete result.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query

from .models import (
    InfillInfo,
    LayerResponse,
    SettingsPayload,
    ShellRingInfo,
    ShellSetInfo,
    SliceCreateRequest,
    SliceInfo,
    SliceStatusInfo,
)
from ..services import build_records
from ..services.build_records import BuildRecord
from ..services.diagnostics import BuildCancelled, ConfigError
from ..services.layers import Layer
from ..services.mesh import Bounds, Mesh
from ..services.session import SlicingSession
from ..services.settings import SlicingSettings

logger = logging.getLogger(__name__)

router = APIRouter()

# In-memory registry of sessions keyed by sliceId.
slice_registry: Dict[str, SlicingSession] = {}
_registry_lock = threading.Lock()


def _get_session(slice_id: str) -> SlicingSession:
    with _registry_lock:
        session = slice_registry.get(slice_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Slice not found")
    return session


def _settings_from_payload(payload: SettingsPayload) -> SlicingSettings:
    try:
        return payload.to_settings().validate()
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid settings: {exc}")


def run_slice_job(slice_id: str, session: SlicingSession, settings: SlicingSettings) -> None:
    """Build a store for ``settings`` and record the outcome."""
    with _registry_lock:
        if slice_registry.get(slice_id) is not session:
            logger.info("slice %s was deleted before its build started", slice_id)
            return
    build_records.update_build_record(slice_id, status=build_records.RUNNING, error_message=None)
    try:
        store = session.rebuild(settings)
    except BuildCancelled:
        logger.info("slice %s build cancelled", slice_id)
        build_records.update_build_record(slice_id, status=build_records.CANCELLED)
        return
    except Exception as exc:
        logger.exception("slice %s failed", slice_id)
        build_records.update_build_record(slice_id, status=build_records.FAILED, error_message=str(exc))
        return
    if store is None:
        # Superseded by a newer submission or cancelled by a delete;
        # whichever caused it owns the record now
        logger.info("slice %s build superseded", slice_id)
        return
    build_records.update_build_record(
        slice_id,
        status=store.status.value,
        fingerprint=store.fingerprint,
        layer_count=len(store),
        failed_layer_count=len(store.failed_layers),
        issue_count=len(store.all_issues()),
    )


@router.post("/slices", response_model=SliceInfo, status_code=202)
async def create_slice(body: SliceCreateRequest, background_tasks: BackgroundTasks) -> SliceInfo:
    """Accept meshes and settings and start slicing in the background."""
    settings = _settings_from_payload(body.settings)
    meshes: List[Mesh] = []
    for i, payload in enumerate(body.meshes):
        if payload.transform is not None and len(payload.transform) != 16:
            raise HTTPException(status_code=400, detail=f"Mesh {i}: transform needs 16 values")
        if len(payload.vertices) % 3 != 0:
            raise HTTPException(status_code=400, detail=f"Mesh {i}: vertex buffer length must be a multiple of 3")
        try:
            meshes.append(Mesh.from_buffers(payload.vertices, payload.indices, payload.transform))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Mesh {i}: {exc}")
    bounds = None
    if body.bounds is not None:
        if len(body.bounds.min) != 3 or len(body.bounds.max) != 3:
            raise HTTPException(status_code=400, detail="Bounds need three coordinates")
        bounds = Bounds(min=tuple(body.bounds.min), max=tuple(body.bounds.max))
    slice_id = uuid.uuid4().hex
    session = SlicingSession(meshes, bounds=bounds)
    with _registry_lock:
        slice_registry[slice_id] = session
    build_records.insert_build_record(
        BuildRecord(
            slice_id=slice_id,
            mesh_count=len(meshes),
            triangle_count=sum(len(m) for m in meshes),
        )
    )
    background_tasks.add_task(run_slice_job, slice_id, session, settings)
    return SliceInfo(sliceId=slice_id, status=build_records.QUEUED)


@router.get("/slices", response_model=list[SliceStatusInfo])
async def list_slices() -> list[SliceStatusInfo]:
    """Return every slice job with its status."""
    result: list[SliceStatusInfo] = []
    for r in build_records.list_build_records():
        result.append(
            SliceStatusInfo(
                sliceId=r.slice_id,
                status=r.status,
                fingerprint=r.fingerprint,
                meshCount=r.mesh_count,
                triangleCount=r.triangle_count,
                layerCount=r.layer_count,
                createdAt=r.created_at,
                updatedAt=r.updated_at,
                errorMessage=r.error_message,
            )
        )
    return result


@router.get("/slices/{slice_id}", response_model=SliceStatusInfo)
async def get_slice(slice_id: str) -> SliceStatusInfo:
    """Return the status, failed layers and issues of a slice job."""
    record = build_records.get_build_record(slice_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Slice not found")
    with _registry_lock:
        session = slice_registry.get(slice_id)
    info = SliceStatusInfo(
        sliceId=record.slice_id,
        status=record.status,
        fingerprint=record.fingerprint,
        meshCount=record.mesh_count,
        triangleCount=record.triangle_count,
        layerCount=record.layer_count,
        createdAt=record.created_at,
        updatedAt=record.updated_at,
        errorMessage=record.error_message,
    )
    store = session.store if session is not None else None
    if store is not None:
        info.failedLayers = list(store.failed_layers)
        info.issues = [issue.to_dict() for issue in store.all_issues()]
        info.settings = store.settings.to_dict()
    return info


@router.put("/slices/{slice_id}/settings", response_model=SliceInfo, status_code=202)
async def update_slice_settings(
    slice_id: str, body: SettingsPayload, background_tasks: BackgroundTasks
) -> SliceInfo:
    """Re-slice the job's meshes with new settings."""
    session = _get_session(slice_id)
    settings = _settings_from_payload(body)
    build_records.update_build_record(slice_id, status=build_records.QUEUED, error_message=None)
    background_tasks.add_task(run_slice_job, slice_id, session, settings)
    return SliceInfo(sliceId=slice_id, status=build_records.QUEUED)


def _layer_response(slice_id: str, layer: Layer) -> LayerResponse:
    shells = [
        ShellSetInfo(
            contour=shell_set.contour.to_dict(),
            rings=[
                ShellRingInfo(
                    index=ring.index,
                    kind=ring.kind,
                    regions=[r.to_dict() for r in ring.regions],
                    parents=list(ring.parents),
                )
                for ring in shell_set.rings
            ],
            truncated=shell_set.truncated,
        )
        for shell_set in layer.shells
    ]
    infill = None
    if layer.infill is not None:
        infill = InfillInfo(
            spacing=layer.infill.spacing,
            angle=layer.infill.angle,
            alternate=layer.infill.alternate,
            segments=layer.infill.to_list(),
        )
    return LayerResponse(
        sliceId=slice_id,
        index=layer.index,
        z=layer.z,
        thickness=layer.thickness,
        status=layer.status.value,
        shells=shells,
        skirt=layer.skirt.to_list() if layer.skirt is not None else None,
        infill=infill,
        issues=[issue.to_dict() for issue in layer.issues],
    )


def _current_store(slice_id: str):
    store = _get_session(slice_id).store
    if store is None:
        raise HTTPException(status_code=409, detail="Slice has no completed build yet")
    return store


@router.get("/slices/{slice_id}/layers/{index}", response_model=LayerResponse)
async def get_layer(slice_id: str, index: int) -> LayerResponse:
    """Return shells, skirt and infill of one layer."""
    store = _current_store(slice_id)
    if index < 0 or index >= len(store):
        raise HTTPException(status_code=404, detail="Layer not found")
    return _layer_response(slice_id, store[index])


@router.get("/slices/{slice_id}/preview", response_model=LayerResponse)
async def preview_layer(
    slice_id: str,
    value: float = Query(0.5, ge=0.0, le=1.0, description="Cutting plane position from 0 (bottom) to 1 (top)"),
) -> LayerResponse:
    """Return the layer at a fractional height of the build."""
    store = _current_store(slice_id)
    layer = store.layer_for_fraction(value)
    if layer is None:
        raise HTTPException(status_code=404, detail="Slice has no layers")
    return _layer_response(slice_id, layer)


def _pop_session(slice_id: str) -> Optional[SlicingSession]:
    with _registry_lock:
        return slice_registry.pop(slice_id, None)


@router.delete("/slices/{slice_id}", response_model=SliceInfo)
def delete_slice(slice_id: str) -> SliceInfo:
    """Stop a slice job and release its session.

    The build record is kept; a job that had not finished is marked
    cancelled.
    """
    session = _pop_session(slice_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Slice not found")
    session.close()
    record = build_records.get_build_record(slice_id)
    if record is None:
        return SliceInfo(sliceId=slice_id, status=build_records.CANCELLED)
    if record.status in (build_records.QUEUED, build_records.RUNNING):
        record = build_records.update_build_record(slice_id, status=build_records.CANCELLED)
    logger.info("slice %s deleted", slice_id)
    return SliceInfo(sliceId=slice_id, status=record.status)


def close_all_sessions() -> None:
    """Close every registered session.  Called on application shutdown."""
    with _registry_lock:
        sessions = list(slice_registry.items())
        slice_registry.clear()
    for slice_id, session in sessions:
        logger.debug("closing session for slice %s", slice_id)
        session.close()
