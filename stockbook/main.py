import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from stockbook.core.observability import (
    http_exception_handler,
    log_event,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from stockbook.core.config import settings
from stockbook.db.session import engine
from stockbook.routers import audit, auth, changes, customers, dashboard, inventory, orders, products, reports, team, warehouses

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Inventory backend for small businesses: product catalog, stock ledger, "
        "orders and stock movement reports.\n\n"
        "Swagger quick test flow:\n"
        "1. Call `POST /auth/register` or `POST /auth/login`.\n"
        "2. Click **Authorize** and use your email/username + password "
        "(OAuth token URL: `/auth/token`).\n"
        "3. Test protected endpoints (`/products`, `/inventory`, `/orders`, `/reports`, `/dashboard`)."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "auth", "description": "User authentication and token lifecycle."},
        {"name": "products", "description": "Product catalog, variants and per-variant statistics."},
        {"name": "inventory", "description": "Stock movements, stock levels and safety stock."},
        {"name": "warehouses", "description": "Warehouses holding stock levels."},
        {"name": "orders", "description": "Pending orders that become sale movements when completed."},
        {"name": "customers", "description": "Customers referenced by orders."},
        {"name": "reports", "description": "CSV and PDF exports of the stock movement ledger."},
        {"name": "dashboard", "description": "Inventory KPIs, critical products and recent movements."},
        {"name": "changes", "description": "Cursor-based change feed for live clients."},
        {"name": "team", "description": "Team membership and role management."},
        {"name": "audit", "description": "Audit trail endpoints for sensitive operations."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    # Local frontends run on dynamic localhost ports.
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Request-ID"],
)

app.include_router(auth.router)
app.include_router(products.router)
app.include_router(inventory.router)
app.include_router(warehouses.router)
app.include_router(orders.router)
app.include_router(customers.router)
app.include_router(reports.router)
app.include_router(dashboard.router)
app.include_router(changes.router)
app.include_router(team.router)
app.include_router(audit.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        log_event(logging.getLogger("stockbook.api"), "readiness.failed", level=logging.WARNING, error=str(exc))
        return {"ok": False}
    return {"ok": True}
