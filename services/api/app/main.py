from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tenant_rag import Settings, build_pipeline, close_pipeline, configure_logging, get_settings
from tenant_rag.db import close_db, init_db

from .infra.weaviate_schema import ensure_vector_schema
from .routers import documents, qa, system
from .telemetry import setup_observability


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(f"api::{settings.env}")
    if settings.vector_backend == "weaviate":
        ensure_vector_schema(settings)
    await init_db(settings)
    app.state.pipeline = build_pipeline(settings)
    try:
        yield
    finally:
        await close_pipeline(app.state.pipeline)
        app.state.pipeline = None
        await close_db()


def create_app() -> FastAPI:
    settings: Settings = get_settings()

    app = FastAPI(title="Tenant RAG API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Trace-Id"],
    )

    setup_observability(app, settings)

    app.include_router(system.router)
    app.include_router(qa.router)
    app.include_router(documents.router)

    @app.get("/")
    async def root() -> dict:
        return {"service": settings.service_name, "env": settings.env}

    return app


app = create_app()


def serve() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("app.main:app", host=settings.api_host, port=settings.api_port)
