from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from services.collections import CollectionStore, CollectionStoreError

from .dependencies import get_collection_store

logger = logging.getLogger("horta.hub.auth")

router = APIRouter(tags=["auth"])


class RegisterRequest(BaseModel):
    name: str | None = None
    email: str | None = None
    password: str | None = None


class LoginRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class UserSummaryModel(BaseModel):
    name: str
    email: str


class MessageResponse(BaseModel):
    message: str


class LoginResponse(BaseModel):
    message: str
    user: UserSummaryModel


def _utc_now_iso() -> str:
    iso = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return iso.replace("+00:00", "Z")


@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterRequest, store: CollectionStore = Depends(get_collection_store)) -> MessageResponse:
    if not payload.name or not payload.email or not payload.password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="All fields are required.")
    try:
        users = store.read_collection("users")
        if any(user.get("email") == payload.email for user in users):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered.")
        users.append(
            {
                "id": store.next_id(),
                "name": payload.name,
                "email": payload.email,
                "password": payload.password,
                "createdAt": _utc_now_iso(),
            }
        )
        store.write_collection("users", users)
    except CollectionStoreError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save user.") from exc
    logger.info("Registered user %s", payload.email)
    return MessageResponse(message="User registered successfully.")


@router.post("/login", response_model=LoginResponse)
async def login(payload: LoginRequest, store: CollectionStore = Depends(get_collection_store)) -> LoginResponse:
    if not payload.email or not payload.password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email and password are required.")
    try:
        users = store.read_collection("users")
    except CollectionStoreError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to process login.") from exc

    # Credentials are stored and compared as plaintext.
    user = next(
        (u for u in users if u.get("email") == payload.email and u.get("password") == payload.password),
        None,
    )
    if user is None:
        logger.info("Failed login for %s", payload.email)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect email or password.")

    logger.info("Login succeeded for %s", payload.email)
    return LoginResponse(
        message="Login successful.",
        user=UserSummaryModel(name=str(user.get("name", "")), email=str(user.get("email", ""))),
    )
