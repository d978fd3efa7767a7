import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from order_api import config
from order_api.clients.inventory import HttpInventoryGateway
from order_api.errors import CollaboratorFailure, OrderServiceError
from order_api.messaging.publisher import RabbitMQPublisher
from order_api.repository import PostgresOrderRepository
from order_api.routers.orders import router as orders_router
from order_api.saga.orchestrator import OrderFulfillmentOrchestrator

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Order Fulfillment API")

app.include_router(orders_router)


@app.exception_handler(OrderServiceError)
async def order_service_error(request: Request, exc: OrderServiceError):
    if isinstance(exc, CollaboratorFailure):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message} (mutated={exc.mutated})")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


def build_orchestrator() -> OrderFulfillmentOrchestrator:
    repository = PostgresOrderRepository()
    repository.init_schema()

    inventory = HttpInventoryGateway(
        config.INVENTORY_SERVICE_URL,
        timeout=config.INVENTORY_TIMEOUT,
        conditional_updates=config.INVENTORY_CONDITIONAL_UPDATES,
    )
    publisher = RabbitMQPublisher(config.RABBIT_URL, exchange=config.SHIPPING_EXCHANGE)

    return OrderFulfillmentOrchestrator(
        inventory=inventory,
        repository=repository,
        publisher=publisher,
        shipping_topic=config.SHIPPING_EXCHANGE,
        compensate_on_failure=config.COMPENSATE_ON_FAILURE,
        fetch_workers=config.INVENTORY_FETCH_WORKERS,
    )


@app.on_event("startup")
def startup():
    app.state.orchestrator = build_orchestrator()
    logger.info(
        f"Order service started (compensate_on_failure={config.COMPENSATE_ON_FAILURE}, "
        f"conditional_updates={config.INVENTORY_CONDITIONAL_UPDATES})"
    )


@app.on_event("shutdown")
def shutdown():
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is not None:
        orchestrator.publisher.close()
        orchestrator.inventory.close()


@app.get("/health")
def health():
    return {"ok": True}
