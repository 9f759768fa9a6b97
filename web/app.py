import asyncio
import logging

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)

app = FastAPI(title="Claudemon")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# WebSocket connection manager
class ConnectionManager:
    def __init__(self):
        self.active_connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        async with self._lock:
            self.active_connections.append(websocket)
        logger.info(f"New WebSocket connection. Total connections: {len(self.active_connections)}")

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            if websocket in self.active_connections:
                self.active_connections.remove(websocket)
        logger.info(f"WebSocket disconnected. Remaining connections: {len(self.active_connections)}")

    async def broadcast(self, message: str):
        disconnected = []
        for connection in list(self.active_connections):
            try:
                await connection.send_text(message)
            except WebSocketDisconnect:
                disconnected.append(connection)
            except Exception as e:
                logger.error(f"Error sending message: {e}")
                disconnected.append(connection)

        for conn in disconnected:
            await self.disconnect(conn)


manager = ConnectionManager()


class SettingsUpdate(BaseModel):
    model: str | None = None
    thinking_enabled: bool | None = None
    search_enabled: bool | None = None
    api_key: str | None = None


def get_controller(request: Request):
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Controller not initialized")
    return controller


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        while True:
            # Clients only listen; drain anything they send
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(websocket)


@app.post("/start")
async def start_agent(controller=Depends(get_controller)):
    if not controller.start():
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"status": "error", "message": controller.last_error},
        )
    return {"status": "success", "message": "Agent started", "state": controller.state.value}


@app.post("/pause")
async def pause_agent(controller=Depends(get_controller)):
    state = controller.state.value
    if state == "running":
        controller.pause()
    elif state == "paused":
        controller.resume()
    else:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"status": "error", "message": f"Agent is {state}"},
        )
    return {"status": "success", "message": "Agent pause state toggled", "state": controller.state.value}


@app.post("/stop")
async def stop_agent(controller=Depends(get_controller)):
    controller.stop()
    return {"status": "success", "message": "Agent stopped", "state": controller.state.value}


@app.get("/status")
async def get_agent_status(controller=Depends(get_controller)):
    return controller.status()


@app.get("/notes")
async def get_notes(controller=Depends(get_controller)):
    notes = controller.session.notes
    return {"notes": [n.to_dict() for n in notes], "next_note_id": notes.next_id}


@app.post("/settings")
async def update_settings(update: SettingsUpdate, controller=Depends(get_controller)):
    if update.model is not None:
        try:
            controller.set_model(update.model)
        except ValueError as e:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"status": "error", "message": str(e)},
            )
    if update.thinking_enabled is not None:
        controller.set_thinking(update.thinking_enabled)
    if update.search_enabled is not None:
        controller.set_search(update.search_enabled)
    if update.api_key is not None:
        controller.set_api_key(update.api_key)
    logger.info(f"Settings updated: {update.model_dump(exclude={'api_key'}, exclude_none=True)}")
    return {"status": "success", "settings": controller.status()}
