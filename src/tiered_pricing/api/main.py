"""
Pricing API - FastAPI adapter in front of the pricing engine.

This is a caller of the engine, so it owns the storefront fallback policy:
when rules cannot be read, the unmodified base price is served rather
than failing the page.
"""
import asyncio
from dataclasses import asdict
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ..engine.errors import InvalidQuantity, RuleLookupFailed
from ..engine.models import PriceCalculationRequest
from ..engine.pricing_engine import PricingEngine
from ..services.product_lookup import ProductLookup
from ..utils.logger import get_logger
from .state import get_engine, get_product_lookup

logger = get_logger(__name__)

app = FastAPI(
    title="Tiered Pricing API",
    description="Customer and pricing-group price resolution",
    version="1.0.0"
)

# Enable CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


class CalcRequest(BaseModel):
    product_id: str
    customer_id: Optional[str] = None
    quantity: int = 1
    base_price: Optional[float] = Field(default=None, ge=0)


class BulkItem(BaseModel):
    product_id: str
    quantity: int = 1
    base_price: Optional[float] = Field(default=None, ge=0)


class BulkCalcRequest(BaseModel):
    customer_id: Optional[str] = None
    items: list[BulkItem]


def _build_request(
    product_id: str,
    customer_id: Optional[str],
    quantity: int,
    base_price: Optional[float],
    products: ProductLookup,
) -> PriceCalculationRequest:
    if base_price is None:
        base_price = products.get_base_price(product_id)
        if base_price is None:
            raise HTTPException(status_code=404, detail=f"Product '{product_id}' not found")
    return PriceCalculationRequest(
        product_id=product_id,
        customer_id=customer_id,
        quantity=quantity,
        base_price=base_price,
    )


async def _price_or_fallback(engine: PricingEngine, request: PriceCalculationRequest, trace: bool = False) -> dict:
    """Resolve a price; on a rule store failure serve the base price instead."""
    try:
        result = await engine.calculate_price(request)
    except InvalidQuantity as e:
        raise HTTPException(status_code=422, detail=str(e))
    except RuleLookupFailed as e:
        logger.warning("Serving base price for %s: %s", request.product_id, e)
        return {
            "product_id": request.product_id,
            "price": request.base_price,
            "original_price": request.base_price,
            "discount_amount": 0.0,
            "discount_percentage": 0.0,
            "applied_rule": None,
            "rule_kind": None,
            "selected_tier": None,
            "fallback": True,
        }

    payload = {"product_id": request.product_id, **result.to_dict(), "fallback": False}
    if trace:
        payload["trace"] = [
            {"step": t.step, "description": t.description, "value": t.value}
            for t in result.trace
        ]
    return payload


@app.get("/")
async def root():
    return {"status": "online", "message": "Tiered Pricing API Active"}


@app.post("/calculate")
async def calculate_price(
    req: CalcRequest,
    trace: bool = False,
    engine: PricingEngine = Depends(get_engine),
    products: ProductLookup = Depends(get_product_lookup),
):
    request = _build_request(req.product_id, req.customer_id, req.quantity, req.base_price, products)
    return await _price_or_fallback(engine, request, trace=trace)


@app.post("/calculate/bulk")
async def calculate_bulk(
    req: BulkCalcRequest,
    engine: PricingEngine = Depends(get_engine),
    products: ProductLookup = Depends(get_product_lookup),
):
    requests = [
        _build_request(item.product_id, req.customer_id, item.quantity, item.base_price, products)
        for item in req.items
    ]
    results = await asyncio.gather(*(_price_or_fallback(engine, r) for r in requests))
    return {"customer_id": req.customer_id, "lines": list(results)}


@app.get("/groups/{group_id}")
async def get_pricing_group(group_id: str, engine: PricingEngine = Depends(get_engine)):
    try:
        group = await engine.store.get_pricing_group(group_id)
    except RuleLookupFailed as e:
        raise HTTPException(status_code=503, detail=str(e))
    if group is None:
        raise HTTPException(status_code=404, detail=f"Pricing group '{group_id}' not found")
    return {
        "id": group.id,
        "name": group.name,
        "description": group.description,
        "discount_type": group.discount_type.value,
        "policy": asdict(group.policy),
        "min_order_amount": group.min_order_amount,
        "is_active": group.is_active,
        "customer_count": len(group.customer_ids),
    }


@app.post("/cache/clear")
async def clear_cache(
    customer_id: Optional[str] = None,
    product_id: Optional[str] = None,
    engine: PricingEngine = Depends(get_engine),
):
    if customer_id:
        removed = engine.clear_customer_cache(customer_id)
    elif product_id:
        removed = engine.clear_product_cache(product_id)
    else:
        removed = engine.cache_stats().get("size", 0)
        engine.clear_cache()
    return {"success": True, "removed": removed}


@app.post("/rules/reload")
async def reload_rules(
    engine: PricingEngine = Depends(get_engine),
    products: ProductLookup = Depends(get_product_lookup),
):
    """Re-read rule and catalog files, then drop every cached result."""
    store = engine.store
    try:
        if hasattr(store, "reload"):
            await asyncio.to_thread(store.reload)
        if hasattr(products, "reload_data"):
            await asyncio.to_thread(products.reload_data)
    except RuleLookupFailed as e:
        raise HTTPException(status_code=503, detail=str(e))
    engine.clear_cache()
    return {"success": True, "errors": getattr(store, "errors", [])}


@app.get("/system/status")
async def get_status(engine: PricingEngine = Depends(get_engine)):
    store = engine.store
    return {
        "engine_active": True,
        "rules_loaded": getattr(store, "loaded", True),
        "rule_errors": len(getattr(store, "errors", [])),
        "cache": engine.cache_stats(),
        "cache_ttl_seconds": engine.cache_ttl,
    }
