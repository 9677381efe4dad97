from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, ValidationError

from services.collections import CollectionStore, CollectionStoreError

from .dependencies import get_collection_store

router = APIRouter(prefix="/tasks", tags=["tasks"])


class TaskModel(BaseModel):
    id: str
    texto: str
    concluido: bool = False


class TaskCreateRequest(BaseModel):
    texto: str | None = None
    concluido: bool | None = None


class TaskUpdateRequest(BaseModel):
    texto: str | None = None
    concluido: bool | None = None


@router.get("", response_model=list[TaskModel])
async def list_tasks(store: CollectionStore = Depends(get_collection_store)) -> list[TaskModel]:
    try:
        tasks = store.read_collection("tasks")
    except CollectionStoreError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to read tasks.") from exc
    try:
        # Newest first; ids are millisecond timestamps.
        ordered = sorted(tasks, key=lambda task: str(task.get("id", "")), reverse=True)
        return [TaskModel(**task) for task in ordered]
    except (AttributeError, TypeError, ValidationError) as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to read tasks.") from exc


@router.post("", response_model=TaskModel, status_code=status.HTTP_201_CREATED)
async def create_task(payload: TaskCreateRequest, store: CollectionStore = Depends(get_collection_store)) -> TaskModel:
    if not payload.texto:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='The "texto" field is required.')
    try:
        tasks = store.read_collection("tasks")
        task = TaskModel(id=store.next_id(), texto=payload.texto, concluido=bool(payload.concluido))
        tasks.append(task.model_dump())
        store.write_collection("tasks", tasks)
    except CollectionStoreError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save task.") from exc
    return task


@router.put("/{task_id}", response_model=TaskModel)
async def update_task(
    task_id: str,
    payload: TaskUpdateRequest,
    store: CollectionStore = Depends(get_collection_store),
) -> TaskModel:
    try:
        tasks = store.read_collection("tasks")
        index = next((i for i, task in enumerate(tasks) if task.get("id") == task_id), None)
        if index is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found.")
        try:
            current = TaskModel(**tasks[index])
        except ValidationError as exc:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update task."
            ) from exc
        updated = TaskModel(
            id=current.id,
            texto=payload.texto or current.texto,
            concluido=payload.concluido if payload.concluido is not None else current.concluido,
        )
        tasks[index] = {**tasks[index], **updated.model_dump()}
        store.write_collection("tasks", tasks)
    except CollectionStoreError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update task.") from exc
    return updated


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: str, store: CollectionStore = Depends(get_collection_store)) -> Response:
    try:
        tasks = store.read_collection("tasks")
        remaining = [task for task in tasks if task.get("id") != task_id]
        if len(remaining) == len(tasks):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found.")
        store.write_collection("tasks", remaining)
    except CollectionStoreError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to delete task.") from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
