"""
Local record CRUD. Every write goes through LocalStore so it is tracked.

Handlers are async so store mutations, and the change-tracker updates they
trigger, run on the event loop alongside the sync service.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Response

from volunteer_sync.bootstrap import get_store
from volunteer_sync.entities import EntityType
from volunteer_sync.sheets.transform import validate_record
from volunteer_sync.store.local import DuplicateRecordError, LocalStore, RecordNotFoundError

router = APIRouter()


@router.get("/{entity_type}")
async def list_records(entity_type: EntityType, store: LocalStore = Depends(get_store)):
    return store.collection(entity_type).get_all()


@router.get("/{entity_type}/{record_id}")
async def get_record(entity_type: EntityType, record_id: str, store: LocalStore = Depends(get_store)):
    record = store.collection(entity_type).get(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"{entity_type.value} {record_id} not found")
    return record


@router.post("/{entity_type}", status_code=201)
async def create_record(
    entity_type: EntityType,
    record: Dict[str, Any],
    store: LocalStore = Depends(get_store),
):
    problems = validate_record(record, entity_type)
    if problems:
        raise HTTPException(status_code=422, detail=problems)
    try:
        return store.collection(entity_type).add(record)
    except DuplicateRecordError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.patch("/{entity_type}/{record_id}")
async def update_record(
    entity_type: EntityType,
    record_id: str,
    patch: Dict[str, Any],
    store: LocalStore = Depends(get_store),
):
    collection = store.collection(entity_type)
    current = collection.get(record_id)
    if current is None:
        raise HTTPException(status_code=404, detail=f"{entity_type.value} {record_id} not found")
    problems = validate_record({**current, **patch, "id": record_id}, entity_type)
    if problems:
        raise HTTPException(status_code=422, detail=problems)
    try:
        return collection.update(record_id, patch)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail=f"{entity_type.value} {record_id} not found")


@router.delete("/{entity_type}/{record_id}", status_code=204)
async def delete_record(entity_type: EntityType, record_id: str, store: LocalStore = Depends(get_store)):
    collection = store.collection(entity_type)
    if collection.get(record_id) is None:
        raise HTTPException(status_code=404, detail=f"{entity_type.value} {record_id} not found")
    collection.delete(record_id)
    return Response(status_code=204)
