from __future__ import annotations

from fastapi import FastAPI, Request

from objectstore.providers.factory import build_object_store
from objectstore.storage.service import ObjectStoreFacade


def init_object_store(app: FastAPI) -> ObjectStoreFacade:
    """
    Canonical object store initialization.
    Called once during app startup/lifespan. Attaches the facade onto app.state.
    """
    app.state.object_store = build_object_store()
    return app.state.object_store


def object_store_from_request(request: Request) -> ObjectStoreFacade:
    """
    Canonical object store accessor for ALL routers.

    The facade is attached once during app startup as request.app.state.object_store.
    """
    try:
        return request.app.state.object_store
    except Exception as exc:
        raise RuntimeError("Object store not initialized on app.state (startup/lifespan not executed).") from exc
