"""ModelHub Core FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..bootstrap import ensure_default_organization
from ..config import get_settings
from ..database import SessionLocal, init_db
from ..errors import ModelhubError
from ..schemas import ErrorResponse
from ..store import Stores
from .routers import organizations, projects, users, webhooks

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("modelhub-core")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and the default organization on startup."""
    init_db()
    db = SessionLocal()
    try:
        ensure_default_organization(Stores(db), settings)
    finally:
        db.close()
    logger.info("Starting ModelHub Core API")
    yield


# Create FastAPI app
app = FastAPI(
    title="ModelHub Core API",
    description="Organizations, projects, users and webhooks with scoped permissions",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    responses={code: {"model": ErrorResponse} for code in (400, 401, 403, 404, 409, 500)},
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ModelhubError)
async def modelhub_error_handler(request: Request, exc: ModelhubError):
    """Render controller errors with their status code."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(organizations.router, prefix="/api/v1/orgs")
app.include_router(projects.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1/users")
app.include_router(webhooks.router, prefix="/api/v1/webhooks")


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": "ModelHub Core API",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "healthy"}
