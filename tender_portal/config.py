import json
import os
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv

# Cargar .env desde la raíz del proyecto (donde se ejecuta uvicorn)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=_env_path)
# Por si se ejecuta desde otra ruta, intentar también el cwd
load_dotenv()

SUPABASE_URL: str | None = os.environ.get("SUPABASE_URL")
SUPABASE_KEY: str | None = os.environ.get("SUPABASE_KEY")
SUPABASE_JWT_SECRET: str | None = os.environ.get("SUPABASE_JWT_SECRET")

# Desarrollo: si es "true", la API acepta peticiones sin token (usuario dummy).
SKIP_AUTH: bool = os.environ.get("SKIP_AUTH", "").lower() in ("true", "1", "yes")
DEBUG: bool = os.environ.get("DEBUG", "").lower() in ("true", "1", "yes")
LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO").upper()

# Bucket de Supabase Storage donde se guardan los adjuntos de licitaciones y pujas.
STORAGE_BUCKET: str = os.environ.get("STORAGE_BUCKET", "tender-uploads")

# ----- Reglas de negocio -----

MIN_PROPOSAL_LENGTH = 100
TITLE_MIN_LENGTH = 5
TITLE_MAX_LENGTH = 255
DESCRIPTION_MIN_LENGTH = 10

MAX_UPLOAD_SIZE = 50 * 1024 * 1024  # 50MB
MAX_FILES_PER_BATCH = 10
ALLOWED_MIME_TYPES = frozenset({
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "image/jpeg",
    "image/png",
    "image/gif",
    "text/plain",
    "application/zip",
    "application/x-rar-compressed",
})

# Tabla de categorías heredadas (value/label) anterior a las categorías gestionadas.
# Se inyecta en CategoryResolver; se puede sustituir con LEGACY_CATEGORIES_JSON.
DEFAULT_LEGACY_CATEGORIES: List[Dict[str, str]] = [
    {"value": "Construction & Infrastructure", "label": "Construction & Infrastructure"},
    {"value": "IT & Software Services", "label": "Information Technology"},
    {"value": "Pharmaceuticals", "label": "Healthcare & Medical"},
    {"value": "Transportation & Logistics", "label": "Transportation & Logistics"},
    {"value": "Professional Services", "label": "Professional Services"},
    {"value": "Office Supplies & Equipment", "label": "Supplies & Equipment"},
    {"value": "Chemicals", "label": "Energy & Utilities"},
    {"value": "Consulting", "label": "Education & Training"},
    {"value": "Other", "label": "Other"},
]


def load_legacy_categories(raw: str | None = None) -> List[Dict[str, str]]:
    """
    Devuelve la tabla de categorías heredadas.

    Si LEGACY_CATEGORIES_JSON está definida debe ser una lista JSON de objetos
    con "value" y "label"; si no, se usa DEFAULT_LEGACY_CATEGORIES.
    """
    if raw is None:
        raw = os.environ.get("LEGACY_CATEGORIES_JSON")
    if not raw or not raw.strip():
        return [dict(c) for c in DEFAULT_LEGACY_CATEGORIES]
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"LEGACY_CATEGORIES_JSON no es JSON válido: {e.msg}") from e
    if not isinstance(data, list) or not all(
        isinstance(item, dict) and item.get("value") and item.get("label") for item in data
    ):
        raise RuntimeError(
            "LEGACY_CATEGORIES_JSON debe ser una lista de objetos con 'value' y 'label', por ejemplo:\n"
            '  [{"value": "Consulting", "label": "Education & Training"}]'
        )
    return [{k: str(v) for k, v in item.items()} for item in data]


LEGACY_CATEGORIES: List[Dict[str, str]] = load_legacy_categories()
