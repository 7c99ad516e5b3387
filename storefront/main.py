# storefront/main.py
from fastapi import FastAPI
import uvicorn

from storefront.api import register_error_handlers
from storefront.api.routers import admin_orders, carts, checkout, health, orders, vnpay
from storefront.data.database import Base, engine
from storefront.services.payment_gateway import GatewayConfig
from storefront.utils.logging import get_logger

# register every model on Base.metadata before create_all
import storefront.data.models  # noqa: F401

logger = get_logger(__name__)


def init_db():
    logger.info(f"Initializing database, tables: {list(Base.metadata.tables.keys())}")
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.error(f"Failed to create tables: {e}")
        raise
    logger.info("Database tables ready")


def create_app(gateway_config: GatewayConfig | None = None) -> FastAPI:
    app = FastAPI(
        title="Storefront Checkout Service",
        version="1.0.0",
    )

    # gateway secrets are read once here and injected into the payment components
    app.state.gateway_config = gateway_config or GatewayConfig.from_settings()

    register_error_handlers(app)

    app.include_router(health.router)
    app.include_router(carts.router)
    app.include_router(checkout.router)
    app.include_router(vnpay.router)
    app.include_router(orders.router)
    app.include_router(admin_orders.router)

    return app


init_db()
app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
