"""API routes."""

from wallet_engine.api.routes.health import router as health_router
from wallet_engine.api.routes.invoices import router as invoices_router
from wallet_engine.api.routes.notifications import router as notifications_router
from wallet_engine.api.routes.payments import router as payments_router

__all__ = ["health_router", "invoices_router", "notifications_router", "payments_router"]
