from __future__ import annotations

from fastapi.requests import HTTPConnection

from services.broadcast import BroadcastHub
from services.collections import CollectionStore
from services.commands import CommandPublisher
from services.readings import ReadingStore


def get_reading_store(connection: HTTPConnection) -> ReadingStore:
    return connection.app.state.reading_store


def get_broadcast_hub(connection: HTTPConnection) -> BroadcastHub:
    return connection.app.state.broadcast_hub


def get_command_publisher(connection: HTTPConnection) -> CommandPublisher:
    return connection.app.state.command_publisher


def get_collection_store(connection: HTTPConnection) -> CollectionStore:
    return connection.app.state.collection_store
