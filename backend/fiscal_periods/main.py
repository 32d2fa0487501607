from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fiscal_periods.config import Settings
from fiscal_periods.core.exceptions import register_exception_handlers
from fiscal_periods.database import build_engine, build_session_factory, create_all


@asynccontextmanager
async def lifespan(application: FastAPI):
    settings = application.state.settings

    if settings.is_sqlite:
        db_path = settings.database_url.split("///")[-1]
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    engine = build_engine(settings.database_url)

    # Auto-create tables for SQLite in development
    if settings.is_sqlite:
        await create_all(engine)

    application.state.engine = engine
    application.state.session_factory = build_session_factory(engine)

    yield

    await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    if settings is None:
        settings = Settings()

    fastapi_app = FastAPI(
        title="Fiscal Periods",
        description="Fiscal year and monthly accounting period lifecycle",
        version="0.1.0",
        lifespan=lifespan,
    )
    fastapi_app.state.settings = settings

    # CORS
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from fiscal_periods.periods.router import router as periods_router

    fastapi_app.include_router(
        periods_router, prefix="/api/fiscal-periods", tags=["fiscal-periods"]
    )

    @fastapi_app.get("/api/system/health")
    async def health():
        return {"data": {"status": "healthy"}}

    register_exception_handlers(fastapi_app)

    return fastapi_app


app = create_app()
