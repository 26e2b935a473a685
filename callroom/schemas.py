from pydantic import BaseModel, Field
from typing import List, Optional


class RoomStatus(BaseModel):
    room: str
    members: int = Field(ge=0, description="Connections currently in the room")
    capacity: Optional[int] = Field(default=None, description="Seat limit, null when unlimited")


class IceServer(BaseModel):
    urls: str
    username: Optional[str] = None
    credential: Optional[str] = None


class RTCConfig(BaseModel):
    iceServers: List[IceServer]


class HealthStatus(BaseModel):
    status: str
    message: str
    rooms: int
