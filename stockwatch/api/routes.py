"""
FastAPI Routes for the stock monitor
"""

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog

from ..monitors.discovery import DiscoveryError
from ..monitors.manager import Monitor
from ..monitors.products import Variant, VariantKind
from ..monitors.registry import InvalidProductError, ProductNotFoundError

logger = structlog.get_logger()


# Pydantic models for API
class ProductCreate(BaseModel):
    url: str
    name: str
    kind: VariantKind = VariantKind.SINGLE_BOX
    image_url: Optional[str] = None
    monitoring_interval: Optional[float] = Field(default=None, gt=0)
    auto_start: bool = False


class DiscoverRequest(BaseModel):
    url: str


class DiscoveredProductCreate(BaseModel):
    url: str
    selected: Optional[List[str]] = None  # variant URLs or labels; None keeps all
    monitoring_interval: Optional[float] = Field(default=None, gt=0)
    auto_start: bool = False


class VariantCreate(BaseModel):
    url: str
    name: str = ""
    kind: VariantKind = VariantKind.NAMED
    option: Optional[str] = None
    monitoring_interval: Optional[float] = Field(default=None, gt=0)


class SettingsUpdate(BaseModel):
    monitoring_interval: Optional[float] = None
    auto_start: Optional[bool] = None
    custom_user_agent: Optional[str] = None
    max_retries: Optional[int] = None


def create_app(monitor: Optional[Monitor] = None) -> FastAPI:
    """Create and configure FastAPI application"""

    monitor = monitor or Monitor.create()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await monitor.start()
        try:
            yield
        finally:
            await monitor.close()

    app = FastAPI(
        title="Stockwatch API",
        description="Product page stock availability monitor",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.monitor = monitor

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ProductNotFoundError)
    async def not_found(request: Request, exc: ProductNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidProductError)
    async def invalid_product(request: Request, exc: InvalidProductError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(DiscoveryError)
    async def discovery_failed(request: Request, exc: DiscoveryError):
        logger.warning("Discovery failed", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    registry = monitor.registry
    scheduler = monitor.scheduler

    # ============ Status ============

    @app.get("/api/status")
    async def get_status():
        """Get overall monitor status"""
        return monitor.get_stats()

    @app.post("/api/start-all")
    async def start_all():
        return {"started": scheduler.start_all()}

    @app.post("/api/stop-all")
    async def stop_all():
        return {"stopped": scheduler.stop_all()}

    @app.post("/api/check-all")
    async def check_all():
        """Instant-check every product"""
        outcomes = await scheduler.instant_check_all()
        return {"checked": len(outcomes)}

    # ============ Products ============

    @app.get("/api/products")
    async def list_products():
        """List all products"""
        return {"products": [p.to_dict() for p in registry.products]}

    @app.get("/api/products/{product_id}")
    async def get_product(product_id: str):
        return registry.require(product_id).to_dict()

    @app.post("/api/products")
    async def create_product(data: ProductCreate):
        """Add a single-variant product"""
        product = monitor.add_single(
            data.url,
            data.name,
            kind=data.kind,
            image_url=data.image_url,
            monitoring_interval=data.monitoring_interval,
            auto_start=data.auto_start,
        )
        return {"id": product.id, "message": "Product added"}

    @app.post("/api/products/discover")
    async def discover_product(data: DiscoverRequest):
        """List the variants found on a product page"""
        page = await monitor.discover(data.url)
        return page.to_dict()

    @app.post("/api/products/from-page")
    async def create_product_from_page(data: DiscoveredProductCreate):
        product = await monitor.add_discovered(
            data.url,
            selected=data.selected,
            monitoring_interval=data.monitoring_interval,
            auto_start=data.auto_start,
        )
        return {"id": product.id, "variants": len(product.variants), "message": "Product added"}

    @app.delete("/api/products/{product_id}")
    async def delete_product(product_id: str):
        monitor.remove_product(product_id)
        return {"message": "Product removed"}

    @app.patch("/api/products/{product_id}/settings")
    async def update_settings(product_id: str, data: SettingsUpdate):
        """Update monitoring settings; active variants are restarted"""
        product = await scheduler.update_settings(
            product_id,
            interval=data.monitoring_interval,
            auto_start=data.auto_start,
            custom_user_agent=data.custom_user_agent,
            max_retries=data.max_retries,
        )
        return product.to_dict()

    @app.post("/api/products/{product_id}/start")
    async def start_product(product_id: str):
        return {"started": scheduler.start_monitoring(product_id)}

    @app.post("/api/products/{product_id}/stop")
    async def stop_product(product_id: str):
        return {"stopped": scheduler.stop_monitoring(product_id)}

    @app.post("/api/products/{product_id}/check")
    async def check_product(product_id: str):
        """Run an instant check on every variant"""
        await scheduler.instant_check(product_id)
        return registry.require(product_id).to_dict()

    # ============ Variants ============

    @app.post("/api/products/{product_id}/variants")
    async def add_variant(product_id: str, data: VariantCreate):
        variant = Variant(
            url=data.url,
            name=data.name,
            kind=data.kind,
            option=data.option,
            monitoring_interval=data.monitoring_interval,
        )
        if not registry.add_variant(product_id, variant):
            raise HTTPException(status_code=409, detail="Variant URL already tracked")
        return {"id": variant.id, "message": "Variant added"}

    @app.delete("/api/products/{product_id}/variants/{variant_id}")
    async def delete_variant(product_id: str, variant_id: str):
        if registry.remove_variant(product_id, variant_id):
            return {"message": "Variant removed"}
        raise HTTPException(status_code=404, detail="Variant not found")

    @app.post("/api/products/{product_id}/variants/{variant_id}/start")
    async def start_variant(product_id: str, variant_id: str):
        return {"started": scheduler.start_variant(product_id, variant_id)}

    @app.post("/api/products/{product_id}/variants/{variant_id}/stop")
    async def stop_variant(product_id: str, variant_id: str):
        return {"stopped": scheduler.stop_variant(product_id, variant_id)}

    @app.post("/api/products/{product_id}/variants/{variant_id}/check")
    async def check_variant(product_id: str, variant_id: str):
        await scheduler.instant_check(product_id, variant_id)
        return registry.require_variant(product_id, variant_id).to_dict()

    # ============ Logs ============

    @app.get("/api/logs")
    async def get_logs(limit: int = 50, product_id: Optional[str] = None):
        """Get recent monitor events, newest first"""
        return {"logs": [e.to_dict() for e in registry.logs.recent(limit, product_id)]}

    @app.delete("/api/logs")
    async def clear_logs():
        return {"removed": registry.clear_logs()}

    @app.delete("/api/products/{product_id}/logs")
    async def clear_product_logs(product_id: str):
        return {"removed": registry.clear_logs_for_product(product_id)}

    return app
