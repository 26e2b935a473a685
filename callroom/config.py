import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List
from dotenv import load_dotenv


# Load .env once at import time (support running from any cwd)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


@dataclass(frozen=True)
class Settings:
    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    # Rooms (0 disables the cap)
    ROOM_CAPACITY: int = int(os.getenv("ROOM_CAPACITY", "2"))

    # STUN/TURN
    STUN_SERVER: str | None = os.getenv("STUN_SERVER")
    TURN_URL: str | None = os.getenv("TURN_URL")
    TURN_USERNAME: str | None = os.getenv("TURN_USERNAME")
    TURN_PASSWORD: str | None = os.getenv("TURN_PASSWORD")

    # Agent side
    SIGNALING_URL: str = os.getenv("SIGNALING_URL", "ws://localhost:8000/ws")

    @property
    def room_capacity(self) -> int | None:
        return self.ROOM_CAPACITY if self.ROOM_CAPACITY > 0 else None

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def has_turn_server(self) -> bool:
        return all([self.TURN_URL, self.TURN_USERNAME, self.TURN_PASSWORD])

    def ice_servers(self) -> List[Dict[str, Any]]:
        """ICE servers in the shape RTCPeerConnection configurations expect."""
        ice_servers: List[Dict[str, Any]] = []
        if self.STUN_SERVER:
            ice_servers.append({"urls": self.STUN_SERVER})
        # Always include Google public STUN as fallback
        ice_servers.extend([
            {"urls": "stun:stun.l.google.com:19302"},
            {"urls": "stun:stun1.l.google.com:19302"},
        ])
        if self.has_turn_server:
            ice_servers.append({
                "urls": self.TURN_URL,
                "username": self.TURN_USERNAME,
                "credential": self.TURN_PASSWORD,
            })
        return ice_servers


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

# Convenient module-level alias
settings = get_settings()
