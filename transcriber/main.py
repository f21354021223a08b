from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect

from common.config import EngineSettings, ServiceSettings
from common.schemas import StatsSnapshot, TranscriptionResult
from transcriber.bridge import RecognitionBridge
from transcriber.errors import (
    AudioStorageError,
    EngineEnvironmentError,
    EngineInvocationError,
    EngineOutputError,
    ServiceShuttingDown,
    TranscriptionCancelled,
)
from transcriber.events import Subscription
from transcriber.job_queue import TranscriptionQueue

logger = logging.getLogger(__name__)

settings = ServiceSettings()


def build_service(service_settings: ServiceSettings | None = None) -> TranscriptionQueue:
    return TranscriptionQueue(
        RecognitionBridge(EngineSettings()),
        settings=service_settings or settings,
    )


def create_app(service: TranscriptionQueue) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Environment errors abort startup.
        await service.initialize()
        yield
        await service.shutdown()

    app = FastAPI(title="Interview Transcriber", lifespan=lifespan)
    app.state.service = service

    @app.get("/health")
    async def health():
        return {"status": "ok", "initialized": service.is_initialized}

    @app.post("/transcribe", response_model=TranscriptionResult)
    async def transcribe(request: Request, context: Optional[str] = None):
        audio = await request.body()
        if not audio:
            raise HTTPException(status_code=400, detail="Empty audio payload")

        try:
            return await service.transcribe(audio, context_hint=context)
        except (ServiceShuttingDown, TranscriptionCancelled, EngineEnvironmentError) as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        except (EngineInvocationError, EngineOutputError) as exc:
            logger.error("Transcription failed: %s", exc)
            raise HTTPException(status_code=502, detail=str(exc))
        except AudioStorageError as exc:
            logger.error("Audio storage failed: %s", exc)
            raise HTTPException(status_code=500, detail="Failed to store audio")

    @app.get("/stats", response_model=StatsSnapshot)
    async def stats():
        return service.get_stats()

    @app.post("/context/clear")
    async def clear_context():
        service.clear_context()
        return {"status": "cleared"}

    @app.websocket("/events")
    async def events_endpoint(ws: WebSocket):
        # Subscribe before accepting so no event published after connect is missed.
        subscription = service.events.subscribe()
        await ws.accept()
        logger.info("Event subscriber connected (%d active)", service.events.subscriber_count)
        watcher = asyncio.create_task(_watch_disconnect(ws, subscription))
        try:
            async for event in subscription:
                await ws.send_text(event.model_dump_json())
        except WebSocketDisconnect:
            pass
        finally:
            subscription.unsubscribe()
            watcher.cancel()
            try:
                await watcher
            except asyncio.CancelledError:
                pass
            logger.info("Event subscriber disconnected")

    return app


async def _watch_disconnect(ws: WebSocket, subscription: Subscription) -> None:
    """End the subscription when the client goes away."""
    try:
        while True:
            message = await ws.receive()
            if message.get("type") == "websocket.disconnect":
                break
    finally:
        subscription.unsubscribe()


app = create_app(build_service())


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
