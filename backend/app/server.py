"""FastAPI Server - Thin Controller Layer
Only handles API routes, request validation, and responses.
All business logic is delegated to bot_service and the TickEngine.
"""
from fastapi import FastAPI, APIRouter, WebSocket, WebSocketDisconnect, HTTPException
from starlette.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import asyncio
import logging
from logging.handlers import TimedRotatingFileHandler
from datetime import datetime, timezone
from typing import List

import uvicorn

# Local imports
from config import ROOT_DIR, ConfigError, build_settings, config
from models import BotStatus, ConfigUpdate, DailySummary, PositionsResponse
import bot_service
from tick_engine import tick_engine


# Configure logging: daily rotating file, secrets masked
# The SecretMaskingFilter redacts the quote feed API key if it ever appears in a log line.
class _SecretMaskingFilter(logging.Filter):
    """Redact known secrets from log messages before they hit any handler."""
    _MASK = "***REDACTED***"
    _SECRET_KEYS = ("quote_api_key",)

    def filter(self, record: logging.LogRecord) -> bool:
        secrets = {
            str(v)
            for k, v in config.items()
            if k in self._SECRET_KEYS and v and len(str(v)) > 4
        }
        if not secrets:
            return True
        msg = record.getMessage()
        if any(secret in msg for secret in secrets):
            for secret in secrets:
                msg = msg.replace(secret, self._MASK)
            record.msg = msg
            record.args = None
        return True


_mask_filter = _SecretMaskingFilter()


def setup_logging() -> None:
    (ROOT_DIR / 'logs').mkdir(exist_ok=True)
    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    file_handler = TimedRotatingFileHandler(
        filename=str(ROOT_DIR / 'logs' / 'bot.log'),
        when='midnight',
        interval=1,
        backupCount=7,
        encoding='utf-8',
    )
    file_handler.setFormatter(formatter)
    file_handler.addFilter(_mask_filter)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.addFilter(_mask_filter)
    logging.basicConfig(level=logging.INFO, handlers=[console_handler, file_handler])

    # Reduce noisy per-request logs from http clients (used for quote polling).
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


# WebSocket Connection Manager
class ConnectionManager:
    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"[WS] Client connected: {getattr(websocket, 'client', None)} | Total={len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
            logger.info(f"[WS] Client disconnected: {getattr(websocket, 'client', None)} | Total={len(self.active_connections)}")

    async def broadcast(self, message: dict):
        if not self.active_connections:
            return

        # Send in a bounded way; drop broken/slow sockets.
        stale: List[WebSocket] = []
        for connection in list(self.active_connections):
            try:
                await asyncio.wait_for(connection.send_json(message), timeout=5)
            except asyncio.TimeoutError:
                stale.append(connection)
                logger.warning(f"[WS] Broadcast timeout; dropping client: {getattr(connection, 'client', None)}")
            except Exception:
                stale.append(connection)
                logger.exception(f"[WS] Broadcast failed; dropping client: {getattr(connection, 'client', None)}")

        for ws in stale:
            self.disconnect(ws)


manager = ConnectionManager()


# Lifespan context manager
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Invalid configuration is rejected at startup
    try:
        settings = build_settings(config)
    except ConfigError as e:
        logger.error(f"[STARTUP] Invalid configuration: {e}")
        raise
    logger.info(f"[STARTUP] Config OK. Symbol={settings.symbol} Window={settings.trading_window}")

    tick_engine.broadcast = manager.broadcast

    # Optional: auto-start the scheduler on server boot
    if bool(config.get('auto_start_bot', False)):
        result = await bot_service.start_bot()
        logger.info(f"[STARTUP] Auto-start: {result}")

    try:
        yield
    finally:
        await tick_engine.stop()
        tick_engine.broadcast = None
        logger.info("[SHUTDOWN] Server shut down")


app = FastAPI(lifespan=lifespan)
api_router = APIRouter(prefix="/api")


@api_router.get("/")
async def root():
    """Health check endpoint"""
    return {"message": "Daily Scheduler Bot API", "status": "running"}


@api_router.get("/status", response_model=BotStatus)
async def get_status():
    """Get bot status"""
    return bot_service.get_bot_status()


@api_router.get("/market")
async def get_market_data():
    """Latest bid/ask and filter value"""
    return bot_service.get_market_data()


@api_router.get("/position", response_model=PositionsResponse)
async def get_position():
    """Get open positions"""
    return bot_service.get_position()


@api_router.get("/summary", response_model=DailySummary)
async def get_summary():
    """Schedule counters and equity guard state for the current day"""
    return bot_service.get_daily_summary()


@api_router.get("/config")
async def get_config():
    """Get current configuration"""
    return bot_service.get_config()


@api_router.post("/config/update")
async def update_config(update: ConfigUpdate):
    """Update configuration"""
    result = await bot_service.update_config_values(update.model_dump(exclude_none=True))
    if result.get('status') == 'error':
        raise HTTPException(status_code=400, detail=result['message'])
    return result


@api_router.post("/bot/start")
async def start_bot():
    """Start the scheduler"""
    result = await bot_service.start_bot()
    if result.get('status') == 'error' and 'Invalid configuration' in result.get('message', ''):
        raise HTTPException(status_code=400, detail=result['message'])
    return result


@api_router.post("/bot/stop")
async def stop_bot():
    """Stop the scheduler"""
    return await bot_service.stop_bot()


@api_router.post("/bot/squareoff")
async def squareoff():
    """Force square off all positions"""
    return await bot_service.squareoff_position()


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await manager.connect(websocket)
    client = getattr(websocket, 'client', None)
    try:
        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=30)
                if data == "ping":
                    await websocket.send_text("pong")
                else:
                    logger.debug(f"[WS] Ignoring message from {client}")
            except asyncio.TimeoutError:
                # No message for 30s: send heartbeat to keep connection alive
                hb = {"type": "heartbeat", "timestamp": datetime.now(timezone.utc).isoformat()}
                await websocket.send_json(hb)
    except WebSocketDisconnect:
        logger.info(f"[WS] Client disconnected: {client}")
    except Exception as e:
        logger.exception(f"[WS] Unexpected error for {client}: {e}")
    finally:
        manager.disconnect(websocket)


# Include router and middleware
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def main() -> None:
    setup_logging()
    build_settings(config)  # ConfigError before binding the port
    uvicorn.run(app, host=config.get('host', '0.0.0.0'), port=int(config.get('port', 8001)))


if __name__ == "__main__":
    main()
