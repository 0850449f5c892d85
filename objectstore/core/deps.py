from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from objectstore.core.providers import object_store_from_request
from objectstore.storage.service import ObjectStoreFacade


def get_object_store(request: Request) -> ObjectStoreFacade:
    """
    Canonical ObjectStoreFacade dependency.

    Source of truth: request.app.state.object_store
    """
    return object_store_from_request(request)


ObjectStoreDep = Annotated[ObjectStoreFacade, Depends(get_object_store)]
