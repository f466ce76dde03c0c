"""
HTTP and WebSocket API.

Endpoints:
- POST /api/orders/execute: submit a swap order (202)
- GET  /api/orders: recent orders, newest first
- GET  /api/orders/{order_id}: one order with its latest status
- GET  /api/orders/{order_id}/history: full status history
- WS   /api/orders/{order_id}/status: history, then live updates
- GET  /health: store and Redis checks
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Path, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketDisconnect

from .config import Config, load_config
from .engine import OrderEngine
from .errors import DuplicateOrderError, OrderNotFoundError, PersistenceError, ValidationError
from .monitoring.health import HealthStatus
from .monitoring.logging import BoundLogger

logger = logging.getLogger(__name__)


def _error(status_code: int, error: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message, **extra})


def create_app(
    config: Optional[Config] = None,
    engine: Optional[OrderEngine] = None,
    run_worker: Optional[bool] = None,
) -> FastAPI:
    """
    Create the order API FastAPI application.

    Args:
        config: Engine configuration (loaded from env when omitted)
        engine: Prebuilt engine, e.g. sharing a store with other engines
        run_worker: Run the job processor in this process; defaults to
            ``config.server.embedded_worker``

    Returns:
        FastAPI application; the engine starts and stops with its lifespan
    """
    engine = engine or OrderEngine(config or load_config())
    if run_worker is None:
        run_worker = engine.config.server.embedded_worker
    service = engine.service

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await engine.start(run_worker=run_worker)
        try:
            yield
        finally:
            await engine.stop()

    app = FastAPI(
        title="DEX Order Execution Engine",
        description="Market swap orders routed across simulated Raydium and Meteora pools",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"]
    )

    # ========================================================================
    # Error mapping
    # ========================================================================

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return _error(400, "validation_error", str(exc), details=exc.errors)

    @app.exception_handler(OrderNotFoundError)
    async def not_found(request: Request, exc: OrderNotFoundError):
        return _error(404, "not_found", str(exc))

    @app.exception_handler(DuplicateOrderError)
    async def duplicate(request: Request, exc: DuplicateOrderError):
        return _error(409, "duplicate_order", str(exc))

    @app.exception_handler(PersistenceError)
    async def persistence_error(request: Request, exc: PersistenceError):
        logger.error(f"Store failure on {request.method} {request.url.path}: {exc}")
        return _error(503, "store_unavailable", "Order store unavailable")

    # ========================================================================
    # Health Check Endpoints
    # ========================================================================

    @app.get("/health", tags=["System"])
    async def health_check():
        """Store and Redis health."""
        report = await asyncio.to_thread(engine.check_health)
        status_code = 503 if report.status is HealthStatus.UNHEALTHY else 200
        return JSONResponse(status_code=status_code, content=report.to_dict())

    # ========================================================================
    # Order Endpoints
    # ========================================================================

    @app.post("/api/orders/execute", status_code=202, tags=["Orders"])
    async def execute_order(request: Request):
        """Accept a market swap order for asynchronous execution."""
        try:
            payload = await request.json()
        except ValueError:
            raise ValidationError("Request body must be JSON", [{"field": "", "message": "invalid JSON"}])

        order = await service.submit_order(payload)
        return {
            "orderId": order.order_id,
            "statusEndpoint": f"/api/orders/{order.order_id}/status",
            "createdAt": order.created_at.isoformat(),
        }

    @app.get("/api/orders", tags=["Orders"])
    async def list_orders(limit: Optional[int] = Query(None, ge=1, le=1000, description="Max orders")):
        orders = await service.list_orders(limit)
        return {"orders": [order.to_dict() for order in orders]}

    @app.get("/api/orders/{order_id}", tags=["Orders"])
    async def get_order(order_id: str = Path(..., description="Order id")):
        order = await service.get_order(order_id)
        history = await service.get_history(order_id)
        return {
            **order.to_dict(),
            "status": history[-1].status.value if history else None,
            "updatedAt": history[-1].timestamp.isoformat() if history else None,
        }

    @app.get("/api/orders/{order_id}/history", tags=["Orders"])
    async def get_history(order_id: str = Path(..., description="Order id")):
        history = await service.get_history(order_id)
        return {"orderId": order_id, "history": [event.to_dict() for event in history]}

    @app.websocket("/api/orders/{order_id}/status")
    async def order_status(websocket: WebSocket, order_id: str):
        """Send the order's history, then every new status event."""
        await websocket.accept()
        stream = service.watch(order_id)

        async def forward() -> None:
            async for message in stream:
                await websocket.send_json(message)

        async def until_disconnect() -> None:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    return

        with BoundLogger(order_id=order_id):
            logger.debug("Status stream opened")
            forward_task = asyncio.create_task(forward())
            receive_task = asyncio.create_task(until_disconnect())
            tasks = (forward_task, receive_task)
            try:
                await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                await stream.aclose()

            if forward_task.done() and not forward_task.cancelled():
                error = forward_task.exception()
                if error is not None and not isinstance(error, WebSocketDisconnect):
                    logger.warning(f"Status stream aborted: {error}")
                    try:
                        await websocket.close(code=1011)
                    except (RuntimeError, WebSocketDisconnect) as e:
                        logger.debug(f"Close after abort failed: {e}")
            logger.debug("Status stream closed")

    return app


# ============================================================================
# Entry point for running the API server
# ============================================================================

def run_server(
    config: Optional[Config] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    run_worker: Optional[bool] = None,
):
    """
    Run the API server.

    Args:
        config: Engine configuration
        host: Host to bind to (defaults to config.server.host)
        port: Port to listen on (defaults to config.server.port)
        run_worker: Process jobs in the server process
    """
    import uvicorn

    config = config or load_config()
    app = create_app(config, run_worker=run_worker)
    uvicorn.run(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        log_config=None,
    )
