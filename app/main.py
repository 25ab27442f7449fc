import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from database import init_db
from app.api import api_router
from app.core.config import settings
from app.core.entitlements import PlanGateError

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    init_db()
    yield
    # Shutdown


async def plan_gate_error_handler(request: Request, exc: PlanGateError) -> JSONResponse:
    """Render plan gating errors as a flat JSON body the dashboard can parse."""
    return JSONResponse(status_code=exc.status_code, content=exc.detail)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Zyra Plan Access",
        description="Plan-based feature and action access control for Zyra AI",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(PlanGateError, plan_gate_error_handler)

    # Include all routes
    app.include_router(api_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
