"""Main FastAPI application and server startup."""

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from diary_memory import __version__
from diary_memory.config.settings import configure_logging
from diary_memory.errors import NotFoundError, ValidationError
from diary_memory.memory.integrate import MemoryIntegration
from .memory import get_memory_integration, get_settings, router as memory_router
from .schemas import HealthResponse

app = FastAPI(
    title="Diary Memory API",
    description="Long-term per-user memory for a journaling companion",
    version=__version__,
)

app.include_router(memory_router, prefix="/api", tags=["memory"])


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": exc.errors})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.on_event("startup")
async def startup_event():
    """Configure logging and open the memory store."""
    configure_logging(get_settings())
    get_memory_integration()


@app.on_event("shutdown")
async def shutdown_event():
    """Let in-flight extraction jobs finish, then close the store."""
    memory = get_memory_integration()
    if memory.jobs is not None:
        await memory.jobs.join()
    memory.store.db.close()


@app.get("/", response_model=dict)
async def root():
    return {"message": "Diary Memory API is running", "version": __version__}


@app.get("/health", response_model=HealthResponse)
async def health(memory: MemoryIntegration = Depends(get_memory_integration)):
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        version=__version__,
        components={
            "store": memory.store is not None,
            "cache": memory.cache is not None,
            "jobs": memory.jobs is not None,
        },
    )


def run():
    """Run the development server."""
    uvicorn.run("diary_memory.api.main:app", host="0.0.0.0", port=8000, reload=True)


if __name__ == "__main__":
    run()
