from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storefront.api.routes_demo import router as demo_router
from storefront.api.routes_orders import router as orders_router
from storefront.api.routes_payments import router as payments_router
from storefront.api.routes_webhooks import router as webhooks_router
from storefront.core.config import get_settings
from storefront.core.errors import StorefrontError
from storefront.core.logging import configure_logging
from storefront.demo.catalog import seed_demo_catalog
from storefront.persistence.pg import init_db, session_scope

configure_logging()
logger = logging.getLogger(__name__)
settings = get_settings()

app = FastAPI(title=settings.app_name)


@app.on_event("startup")
def on_startup() -> None:
    init_db()
    if settings.bootstrap_demo_on_startup and settings.is_dev:
        with session_scope() as session:
            result = seed_demo_catalog(session)
        logger.info(
            "demo catalog ready: version=%s seeded_now=%s",
            result.get("catalog_version"),
            result.get("seeded_now"),
        )


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    if exc.expected:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.error("%s %s failed with %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(webhooks_router)
app.include_router(demo_router)
