from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_settings
from .core.logging import configure_logging
from .api.routes_enrichment import router as enrichment_router
from .api.routes_integrations import router as integrations_router
from .api.routes_records import router as records_router
from .api.routes_segments import router as segments_router

settings = get_settings()
configure_logging(settings.LOG_LEVEL)

app = FastAPI(title="CRM Enrichment API")


def _split_origins(value: str) -> list[str]:
    return [o.strip() for o in value.split(",") if o.strip()]


# CORS:
# - In prod, FRONTEND_ORIGIN is required and we never fall back to "*".
# - In non-prod, wide-open CORS unless FRONTEND_ORIGIN narrows it.
if settings.ENV.lower() == "prod":
    if not settings.FRONTEND_ORIGIN:
        raise RuntimeError(
            "FRONTEND_ORIGIN must be set in production; refusing to start with wide-open CORS."
        )
    origins = _split_origins(settings.FRONTEND_ORIGIN)
elif settings.CORS_ALLOW_ALL_ORIGINS or not settings.FRONTEND_ORIGIN:
    origins = ["*"]
else:
    origins = _split_origins(settings.FRONTEND_ORIGIN)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(integrations_router, prefix=settings.API_PREFIX)
app.include_router(records_router, prefix=settings.API_PREFIX)
app.include_router(segments_router, prefix=settings.API_PREFIX)
app.include_router(enrichment_router, prefix=settings.API_PREFIX)


@app.get("/health")
def health():
    return {"status": "ok"}
