import logging
import os
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.staticfiles import StaticFiles

from orderstream.errors import OrderNotFound
from orderstream.metrics import MetricsRegistry, NullMetrics
from orderstream.models import Order
from orderstream.service import OrderService

logger = logging.getLogger(__name__)


def create_app(
    service: OrderService,
    metrics: Optional[MetricsRegistry] = None,
    static_dir: Optional[str] = None,
) -> FastAPI:
    """HTTP query surface over the order service"""
    metrics = metrics or NullMetrics()
    app = FastAPI(title="orderstream")

    @app.get("/order/{order_uid}", response_model=Order)
    def get_order(order_uid: str):
        metrics.inc("http_requests_total", route="/order")
        try:
            return service.get_order(order_uid)
        except OrderNotFound:
            raise HTTPException(status_code=404, detail="order not found")
        except Exception as e:
            metrics.inc("http_errors_total", route="/order")
            logger.error(f"get order failed uid={order_uid} err={e}")
            raise HTTPException(status_code=500, detail="internal error")

    @app.get("/health")
    def health():
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/stats")
    def stats():
        return service.get_cache_stats()

    @app.get("/metrics")
    def metrics_snapshot():
        return metrics.snapshot()

    # mounted last so it never shadows the API routes
    if static_dir and os.path.isdir(static_dir):
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
        logger.info(f"serving static files from {static_dir}")

    return app
