from __future__ import annotations

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from objectstore.core.logging_config import configure_logging
from objectstore.core.providers import init_object_store
from objectstore.health.router import router as health_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # Missing bucket / unreachable backend fails startup here
    init_object_store(app)
    yield


app = FastAPI(title="Object Store Service", lifespan=lifespan)

app.include_router(health_router)


if __name__ == "__main__":
    uvicorn.run("objectstore.main:app", host="0.0.0.0", port=8000)
