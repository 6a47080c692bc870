from contextlib import asynccontextmanager
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from routers.rooms import rooms_router
from backend import room_backend
from handler import build_connection_handler
from constants import CORS_ORIGIN, LOG_FILE, LOG_LEVEL
import uuid
import json
from typing import Any, Optional
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)

connection_handler = build_connection_handler(room_backend)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let in-flight assistant replies land before the loop goes away
    await connection_handler.augmentor.wait_idle()
    logger.info("Room relay shut down")


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[CORS_ORIGIN],
    allow_credentials=CORS_ORIGIN != "*",
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(rooms_router)

logger.info(f"FastAPI application initialized (allowed origin: {CORS_ORIGIN})")


class WebSocketConnection:
    """A client socket as seen by the room components."""

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None):
        self.websocket = websocket
        self.connection_id = connection_id or str(uuid.uuid4())

    async def send(self, event: str, data: Any = None):
        await self.websocket.send_text(json.dumps({"event": event, "data": data}))


@app.get("/health", response_class=PlainTextResponse)
async def health():
    return "OK"


@app.get("/", response_class=PlainTextResponse)
async def index():
    return "Room relay server running"


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Event socket: frames are JSON `{"event": ..., "data": ...}` envelopes."""
    await websocket.accept()
    connection = WebSocketConnection(websocket)
    logger.info(f"WebSocket connection accepted: {connection.connection_id}")

    message_count = 0
    try:
        while True:
            data = await websocket.receive_text()
            message_count += 1
            logger.debug(f"Received frame #{message_count} from connection {connection.connection_id}")
            await connection_handler.handle_frame(connection, data)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {connection.connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection.connection_id}: {e}", exc_info=True)
    finally:
        await connection_handler.disconnecting(connection)
