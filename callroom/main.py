from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from callroom.config import Settings, get_settings
from callroom.deps import get_app_settings, get_relay
from callroom.routers import rooms, signaling
from callroom.schemas import HealthStatus, RTCConfig
from callroom.services.relay import RoomRelay


def create_app(settings: Settings | None = None, relay: RoomRelay | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(title="callroom signaling relay")
    app.state.settings = settings
    app.state.relay = relay or RoomRelay(capacity=settings.room_capacity)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(signaling.router)
    app.include_router(rooms.router)

    @app.get("/config", response_model=RTCConfig, response_model_exclude_none=True)
    async def rtc_config(settings: Settings = Depends(get_app_settings)):
        """Expose ICE server config to clients.

        Environment variables (optional):
        - STUN_SERVER: e.g. stun:stun.example.com:3478
        - TURN_URL: e.g. turn:turn.example.com:3478
        - TURN_USERNAME
        - TURN_PASSWORD
        """
        return {"iceServers": settings.ice_servers()}

    @app.get("/health", response_model=HealthStatus)
    async def health_check(relay: RoomRelay = Depends(get_relay)):
        return {"status": "healthy", "message": "Signaling relay is running", "rooms": relay.room_count}

    return app


app = create_app()


def run() -> None:
    import uvicorn
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
