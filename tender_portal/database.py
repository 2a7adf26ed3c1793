from functools import lru_cache

from supabase import Client, create_client

from tender_portal.config import SUPABASE_KEY, SUPABASE_URL


def _create_supabase_client() -> Client:
    """
    Crea una instancia de cliente Supabase utilizando variables de entorno.

    Espera encontrar en `.env`:
      - SUPABASE_URL
      - SUPABASE_KEY  (usa la clave secreta o service role, NO la public key)
    """
    if not SUPABASE_URL or not SUPABASE_KEY:
        raise RuntimeError(
            "Faltan las credenciales de Supabase. En el archivo .env (raíz del proyecto) define:\n"
            "  SUPABASE_URL=https://TU_PROJECT_REF.supabase.co\n"
            "  SUPABASE_KEY=eyJhbGciOiJIUzI1NiIsInR5cCI6... (anon o service_role key)\n"
            "Obtén ambos en: Supabase → tu proyecto → Settings → API."
        )
    url = SUPABASE_URL.strip()
    if not url.startswith("http://") and not url.startswith("https://"):
        raise RuntimeError(
            "SUPABASE_URL debe ser la URL completa del proyecto, por ejemplo:\n"
            "  https://abcdefgh.supabase.co"
        )
    return create_client(url, SUPABASE_KEY)


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """
    Devuelve un cliente Supabase singleton para todo el proceso FastAPI.
    Se crea en la primera llamada, nunca al importar el paquete.
    """
    return _create_supabase_client()


__all__ = ["get_supabase_client"]
