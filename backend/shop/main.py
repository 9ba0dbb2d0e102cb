"""
Online Shop Backend with Prometheus metrics and OpenTelemetry tracing
"""

import os
import time
from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from shop import crud, schemas
from shop.currency import CurrencyConverter, get_base_currency
from shop.database import create_db_engine, create_session_factory, init_db
from shop.errors import InsufficientStockError, NotFoundError, StoreError
from shop.log_config import configure_logging

logger = structlog.get_logger(__name__)

UNMATCHED_ENDPOINT = "unmatched"


class ShopMetrics:
    """Prometheus metrics, registered on a registry owned by one app."""

    def __init__(self, registry: CollectorRegistry, base_currency: str):
        self.registry = registry
        self.http_requests_total = Counter(
            'http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'status'], registry=registry
        )
        self.http_request_duration_seconds = Histogram(
            'http_request_duration_seconds', 'HTTP request duration', ['method', 'endpoint'], registry=registry
        )
        self.orders_total = Counter('orders_total', 'Total orders', ['status'], registry=registry)
        self.revenue_total = Counter('revenue_total', f'Total revenue in {base_currency}', registry=registry)


def get_db(request: Request):
    db = request.app.state.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_metrics(request: Request) -> ShopMetrics:
    return request.app.state.metrics


def get_currency(request: Request) -> CurrencyConverter:
    return request.app.state.currency


def create_app(database_url: Optional[str] = None, engine: Optional[Engine] = None) -> FastAPI:
    """
    Build the application.

    The engine is created here (or passed in by tests), tables are created,
    and the engine is disposed when the app shuts down.
    """
    configure_logging()

    owns_engine = engine is None
    db_engine = engine if engine is not None else create_db_engine(database_url)
    init_db(db_engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("shop_backend_started", database=db_engine.url.render_as_string(hide_password=True))
        yield
        if owns_engine:
            db_engine.dispose()
        logger.info("shop_backend_stopped")

    app = FastAPI(
        title="Online Shop API",
        description="Products, orders and stock for an online shop",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.engine = db_engine
    app.state.SessionLocal = create_session_factory(db_engine)
    app.state.currency = CurrencyConverter(get_base_currency())
    app.state.metrics = ShopMetrics(CollectorRegistry(), app.state.currency.base_currency)

    _register_middleware(app)
    _register_error_handlers(app)
    _register_routes(app)

    FastAPIInstrumentor.instrument_app(app)
    return app


# ============================================================================
# METRICS MIDDLEWARE
# ============================================================================

def _register_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def record_request(request: Request, call_next):
        start_time = time.time()
        status = "500"
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            route = request.scope.get("route")
            # one label for every path no route matched
            endpoint = getattr(route, "path", None) or UNMATCHED_ENDPOINT
            if endpoint != "/metrics":
                metrics = request.app.state.metrics
                metrics.http_requests_total.labels(method=request.method, endpoint=endpoint, status=status).inc()
                duration = time.time() - start_time
                metrics.http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(duration)


# ============================================================================
# ERROR MAPPING
# ============================================================================

def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InsufficientStockError)
    async def insufficient_stock(request: Request, exc: InsufficientStockError):
        return JSONResponse(
            status_code=400,
            content={
                "detail": str(exc),
                "product_id": exc.product_id,
                "requested": exc.requested,
                "available": exc.available,
            },
        )

    @app.exception_handler(StoreError)
    async def store_error(request: Request, exc: StoreError):
        return JSONResponse(status_code=500, content={"detail": str(exc)})


# ============================================================================
# ROUTES
# ============================================================================

def _register_routes(app: FastAPI) -> None:

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "service": "shop-backend"}

    @app.get("/metrics")
    def metrics(request: Request):
        return Response(generate_latest(request.app.state.metrics.registry), media_type=CONTENT_TYPE_LATEST)

    # Products
    @app.get("/product", response_model=List[schemas.Product])
    def list_products(
        currency: Optional[str] = None,
        db: Session = Depends(get_db),
        converter: CurrencyConverter = Depends(get_currency),
    ):
        return [converter.present_product(p, currency) for p in crud.get_products(db)]

    @app.get("/product/{product_id}", response_model=schemas.Product)
    def get_product(
        product_id: str,
        currency: Optional[str] = None,
        db: Session = Depends(get_db),
        converter: CurrencyConverter = Depends(get_currency),
    ):
        return converter.present_product(crud.get_product(db, product_id), currency)

    @app.post("/product", response_model=schemas.Created, status_code=201)
    def create_product(product: schemas.ProductCreate, db: Session = Depends(get_db)):
        return schemas.Created(id=crud.create_product(db, product))

    @app.put("/product/{product_id}")
    def update_product(product_id: str, product: schemas.ProductUpdate, db: Session = Depends(get_db)):
        crud.update_product(db, product_id, product)
        return {"detail": f"Product {product_id} updated"}

    @app.delete("/delete/product/{product_id}")
    def delete_product(product_id: str, db: Session = Depends(get_db)):
        crud.delete_product(db, product_id)
        return {"detail": f"Product {product_id} deleted"}

    # Orders
    @app.get("/order", response_model=List[schemas.Order])
    def list_orders(
        currency: Optional[str] = None,
        db: Session = Depends(get_db),
        converter: CurrencyConverter = Depends(get_currency),
    ):
        return [converter.present_order(o, currency) for o in crud.get_orders(db)]

    @app.get("/order/{order_id}", response_model=schemas.Order)
    def get_order(
        order_id: str,
        currency: Optional[str] = None,
        db: Session = Depends(get_db),
        converter: CurrencyConverter = Depends(get_currency),
    ):
        return converter.present_order(crud.get_order(db, order_id), currency)

    @app.post("/order", response_model=schemas.Created, status_code=201)
    def create_order(
        order: schemas.OrderCreate,
        db: Session = Depends(get_db),
        metrics: ShopMetrics = Depends(get_metrics),
    ):
        try:
            order_id, total = crud.place_order(db, order)
        except (NotFoundError, InsufficientStockError):
            metrics.orders_total.labels(status='rejected').inc()
            raise
        except StoreError:
            metrics.orders_total.labels(status='error').inc()
            raise

        metrics.orders_total.labels(status='success').inc()
        metrics.revenue_total.inc(float(total))
        return schemas.Created(id=order_id)

    @app.put("/order/{order_id}")
    def update_order(order_id: str, order: schemas.OrderUpdate, db: Session = Depends(get_db)):
        crud.update_order_record(db, order_id, order)
        return {"detail": f"Order {order_id} updated"}

    @app.delete("/delete/order/{order_id}")
    def delete_order(order_id: str, db: Session = Depends(get_db)):
        crud.delete_order(db, order_id)
        return {"detail": f"Order {order_id} deleted"}


def run() -> None:
    """Serve the app with uvicorn (PORT defaults to 8080)."""
    import uvicorn

    uvicorn.run(
        "shop.main:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
    )


if __name__ == "__main__":
    run()
