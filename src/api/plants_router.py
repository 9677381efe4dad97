from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ValidationError

from services.collections import CollectionStore, CollectionStoreError

from .dependencies import get_collection_store

router = APIRouter(prefix="/plants", tags=["plants"])


class PlantModel(BaseModel):
    id: str
    nome: str
    local: str


class PlantCreateRequest(BaseModel):
    nome: str | None = None
    local: str | None = None


class MessageResponse(BaseModel):
    message: str


@router.get("", response_model=list[PlantModel])
async def list_plants(store: CollectionStore = Depends(get_collection_store)) -> list[PlantModel]:
    try:
        plants = store.read_collection("plants")
    except CollectionStoreError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to read plants.") from exc
    try:
        return [PlantModel(**plant) for plant in plants]
    except (TypeError, ValidationError) as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to read plants.") from exc


@router.post("", response_model=PlantModel, status_code=status.HTTP_201_CREATED)
async def create_plant(
    payload: PlantCreateRequest,
    store: CollectionStore = Depends(get_collection_store),
) -> PlantModel:
    if not payload.nome or not payload.local:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name and location are required.")
    try:
        plants = store.read_collection("plants")
        plant = PlantModel(id=store.next_id(), nome=payload.nome, local=payload.local)
        plants.append(plant.model_dump())
        store.write_collection("plants", plants)
    except CollectionStoreError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save plant.") from exc
    return plant


@router.delete("/{plant_id}", response_model=MessageResponse)
async def delete_plant(plant_id: str, store: CollectionStore = Depends(get_collection_store)) -> MessageResponse:
    try:
        plants = store.read_collection("plants")
        remaining = [plant for plant in plants if plant.get("id") != plant_id]
        if len(remaining) == len(plants):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plant not found.")
        store.write_collection("plants", remaining)
    except CollectionStoreError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to delete plant.") from exc
    return MessageResponse(message="Plant deleted.")
