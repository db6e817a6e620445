"""FastAPI routes over :class:`HierarchyService`."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from omnistudio_resolver.errors import MetadataSourceError, ReloadError
from omnistudio_resolver.models import ComponentType
from omnistudio_resolver.service import HierarchyService

router = APIRouter(prefix="/api/omnistudio")


# --- Request models ---

class LoadRequest(BaseModel):
    force: bool = False

class ToggleRequest(BaseModel):
    enabled: bool


# --- Helpers ---

def _service(request: Request) -> HierarchyService:
    return request.app.state.service


def _component_type(value: str) -> ComponentType:
    try:
        return ComponentType(value)
    except ValueError:
        valid = ", ".join(ct.value for ct in ComponentType)
        raise HTTPException(400, f"Invalid component type: {value} (expected one of {valid})")


def _no_snapshot(tenant: str) -> HTTPException:
    return HTTPException(404, {
        "message": f"No cached component data for {tenant}. Load components first.",
        "requires_reload": True,
    })


# --- Cache management (tenant independent) ---

@router.get("/cache/status")
async def cache_status(request: Request):
    return _service(request).cache_status()


@router.post("/cache/toggle")
async def toggle_persistent_cache(req: ToggleRequest, request: Request):
    return await asyncio.to_thread(_service(request).set_persistent_enabled, req.enabled)


@router.post("/cache/clear-all")
async def clear_all_caches(request: Request):
    cleared = await asyncio.to_thread(_service(request).clear_all_caches)
    return {"cleared": cleared}


# --- Loading ---

@router.post("/{tenant}/load-all")
async def load_all(tenant: str, request: Request, req: LoadRequest | None = None):
    force = req.force if req else False
    try:
        summary = await asyncio.to_thread(_service(request).load_all, tenant, force)
    except (ReloadError, MetadataSourceError) as e:
        raise HTTPException(502, f"Reload failed: {e}")
    return summary.to_dict()


@router.post("/{tenant}/force-reload")
async def force_reload(tenant: str, request: Request):
    try:
        summary = await asyncio.to_thread(_service(request).force_reload, tenant)
    except (ReloadError, MetadataSourceError) as e:
        raise HTTPException(502, f"Reload failed: {e}")
    return summary.to_dict()


@router.post("/{tenant}/cache/clear")
async def clear_cache(tenant: str, request: Request):
    await asyncio.to_thread(_service(request).clear_cache, tenant)
    return {"tenant": tenant, "cleared": True}


# --- Lookup ---

@router.get("/{tenant}/summary")
async def global_summary(tenant: str, request: Request):
    summary = await asyncio.to_thread(_service(request).global_summary, tenant)
    if summary is None:
        raise _no_snapshot(tenant)
    return summary


@router.get("/{tenant}/search")
async def search_components(
    tenant: str,
    request: Request,
    component_type: str = Query(...),
    term: str = Query(""),
    limit: int = Query(1000, ge=1, le=1000),
):
    ct = _component_type(component_type)
    results = await asyncio.to_thread(
        _service(request).search_components, tenant, ct, term, limit,
    )
    if results is None:
        raise _no_snapshot(tenant)
    return {
        "component_type": ct.value,
        "term": term,
        "total_found": len(results),
        "instances": results,
    }


@router.get("/{tenant}/ip-reference/{name}/hierarchy")
async def child_hierarchy(tenant: str, name: str, request: Request):
    try:
        steps, found = await asyncio.to_thread(_service(request).get_child_hierarchy, tenant, name)
    except MetadataSourceError as e:
        raise HTTPException(502, f"Metadata source error: {e}")
    if not found:
        raise HTTPException(404, f"Child integration procedure not found: {name}")
    return {"name": name, "hierarchy": [s.to_dict() for s in steps]}


@router.get("/{tenant}/{component_type}/{name}/details")
async def instance_details(tenant: str, component_type: str, name: str, request: Request):
    ct = _component_type(component_type)
    try:
        details = await asyncio.to_thread(_service(request).get_instance_details, tenant, ct, name)
    except ValueError as e:
        raise HTTPException(400, str(e))
    except MetadataSourceError as e:
        raise HTTPException(502, f"Metadata source error: {e}")
    if details is None:
        raise HTTPException(404, f"Component not found: {name}")
    return details.to_dict()


@router.get("/{tenant}/{component_type}/{name}/cached")
async def cached_component(tenant: str, component_type: str, name: str, request: Request):
    ct = _component_type(component_type)
    lookup = await asyncio.to_thread(_service(request).get_cached, tenant, ct, name)
    if lookup.requires_reload:
        raise _no_snapshot(tenant)
    if not lookup.found:
        raise HTTPException(404, {
            "message": f"{ct.label} '{name}' not found in cached data",
            "requires_reload": False,
        })
    return lookup.to_dict()
