import logging
from pathlib import Path

from dotenv import load_dotenv

# Cargar .env antes que nada (por si uvicorn arranca desde otra ruta)
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tender_portal.config import DEBUG, LOG_LEVEL, SKIP_AUTH
from tender_portal.routers import auth, bids, categories, tenders, uploads
from tender_portal.services.exceptions import (
    AuthorizationError,
    ConflictError,
    DomainError,
    NotFoundError,
    UploadError,
    ValidationError,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Tender Portal API",
    version="1.0.0",
    description="API REST del portal de licitaciones: licitaciones, pujas, categorías y adjuntos.",
)


# CORS: permitir frontend en localhost y en IP de red (p. ej. 192.168.x.x)
origins = [
    "http://localhost:3000",
    "http://localhost:3001",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:3001",
]

# Código HTTP por tipo de error de dominio; gana la primera clase que encaje
DOMAIN_ERROR_STATUS = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (AuthorizationError, 403),
    (ConflictError, 409),
    (UploadError, 422),
)


def status_for(exc: DomainError) -> int:
    for error_cls, code in DOMAIN_ERROR_STATUS:
        if isinstance(exc, error_cls):
            return code
    return 400


@app.exception_handler(DomainError)
async def domain_exception_handler(_request: Request, exc: DomainError) -> JSONResponse:
    """Errores de negocio → { detail, field?, error } con el código del tipo."""
    content = {"detail": exc.message, "error": type(exc).__name__}
    field = getattr(exc, "field", None) or getattr(exc, "filename", None)
    if field:
        content["field"] = field
    code = status_for(exc)
    if code == 409:
        logger.warning("%s: %s", type(exc).__name__, exc.message)
    return JSONResponse(status_code=code, content=content)


# Manejador global: en producción no exponer detail del 500; solo si DEBUG=true
@app.exception_handler(Exception)
async def global_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Error no controlado")
    detail = str(exc) if DEBUG else "Internal Server Error"
    return JSONResponse(status_code=500, content={"detail": detail})


app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Registro de routers bajo /api para que el frontend llame a /api/tenders, etc.
app.include_router(auth.router, prefix="/api")
app.include_router(tenders.router, prefix="/api")
app.include_router(bids.router, prefix="/api")
app.include_router(categories.router, prefix="/api")
app.include_router(uploads.router, prefix="/api")


@app.get("/")
def root() -> dict:
    """Health check sencillo para verificar que el backend está levantado."""
    return {"status": "ok"}


@app.on_event("startup")
def startup():
    """Log de modo desarrollo al arrancar."""
    if SKIP_AUTH:
        logger.warning("Modo desarrollo: SKIP_AUTH=true (API acepta peticiones sin token)")


__all__ = ["app"]
