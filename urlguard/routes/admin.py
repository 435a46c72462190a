# urlguard/routes/admin.py

import asyncio
import logging
from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, ValidationError

from ..errors import LoadError
from ..services.dataset import EntryRecord, InvalidEntryError, Scope, make_entry
from ..services.dataset_store import DatasetStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


class EntriesRequest(BaseModel):
    entries: List[Dict[str, Any]]
    persist: bool = False


def get_store(req: Request) -> DatasetStore:
    return req.app.state.store


@router.get("/stats")
async def get_dataset_stats(req: Request):
    """Statistics about the active dataset version"""
    return get_store(req).get_stats()


@router.post("/reload")
async def reload_dataset(req: Request):
    """
    Re-read the dataset file and publish it.

    If the file cannot be read or parsed the previous version keeps serving
    and a 503 is returned with the load error.
    """
    store = get_store(req)
    try:
        dataset = await asyncio.to_thread(store.reload)
    except LoadError as e:
        raise HTTPException(
            status_code=503,
            detail={
                "error": f"load_{e.kind.value}",
                "message": e.message,
                "active_version": store.snapshot().version,
            }
        )

    return {
        "status": "success",
        "version": dataset.version,
        "entries": len(dataset),
        "rejected": [
            {"index": r.index, "record": r.record, "reason": r.reason}
            for r in dataset.rejected
        ],
    }


@router.post("/entries")
async def add_entries(request: EntriesRequest, req: Request):
    """
    Add entries, or override existing ones with the same pattern and scope.
    Invalid records are reported back; valid ones are still applied.
    """
    store = get_store(req)

    records: List[EntryRecord] = []
    rejected = []
    for index, raw in enumerate(request.entries):
        try:
            record = EntryRecord.model_validate(raw)
            make_entry(record, store.normalizer)
            records.append(record)
        except (ValidationError, InvalidEntryError) as e:
            rejected.append({"index": index, "record": raw, "reason": str(e)})

    if not records:
        raise HTTPException(
            status_code=400,
            detail={"error": "no_valid_entries", "rejected": rejected}
        )

    dataset, _ = await asyncio.to_thread(store.update, records)
    if request.persist:
        await asyncio.to_thread(store.persist)

    return {
        "status": "success",
        "version": dataset.version,
        "added": len(records),
        "rejected": rejected,
        "persisted": request.persist,
    }


@router.delete("/entries")
async def remove_entry(
    req: Request,
    pattern: str = Query(..., description="Pattern as stored or in any equivalent form"),
    scope: Scope = Query(...),
    persist: bool = Query(default=False),
):
    """Remove a single entry identified by pattern and scope"""
    store = get_store(req)
    try:
        dataset, removed = await asyncio.to_thread(store.update, (), [(pattern, scope)])
    except InvalidEntryError as e:
        raise HTTPException(status_code=400, detail={"error": "invalid_pattern", "message": str(e)})

    if not removed:
        raise HTTPException(
            status_code=404,
            detail={"error": "not_found", "pattern": pattern, "scope": scope.value}
        )

    if persist:
        await asyncio.to_thread(store.persist)

    return {"status": "success", "version": dataset.version, "removed": removed, "persisted": persist}


@router.post("/persist")
async def persist_dataset(req: Request):
    """Write the active dataset version back to the configured file"""
    store = get_store(req)
    path = await asyncio.to_thread(store.persist)
    dataset = store.snapshot()
    return {"status": "success", "path": str(path), "version": dataset.version, "entries": len(dataset)}
