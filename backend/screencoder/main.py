from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from screencoder.core.config import get_settings
from screencoder.core.errors import ConfigurationError
from screencoder.core.logging import setup_logging
from screencoder.routers import config, processing, providers
from screencoder.services.llm.orchestrator import get_pipeline


settings = get_settings()
setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: bind the pipeline to the config store before the first request
    get_pipeline()
    yield
    # Shutdown: abort any run still in flight
    get_pipeline().cancel()


app = FastAPI(
    title="Screen Coder API",
    description="Turns screenshots of coding problems into solutions via pluggable LLM backends",
    version="1.0.0",
    lifespan=lifespan,
)
app.router.redirect_slashes = False

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:5173",
        "http://localhost",
        "http://127.0.0.1",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_errors(exc)},
    )


# Include routers
app.include_router(providers.router, prefix="/providers", tags=["Providers"])
app.include_router(config.router, prefix="/config", tags=["Config"])
app.include_router(processing.router, prefix="/process", tags=["Processing"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
