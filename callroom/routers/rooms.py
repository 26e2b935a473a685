from fastapi import APIRouter, Depends, HTTPException

from callroom.deps import get_relay
from callroom.schemas import RoomStatus
from callroom.services.relay import RoomRelay

router = APIRouter(prefix="/rooms", tags=["rooms"])


@router.get("/{room_id}", response_model=RoomStatus)
def read_room(room_id: str, relay: RoomRelay = Depends(get_relay)):
    if not relay.has_room(room_id):
        raise HTTPException(status_code=404, detail="Room not found")
    return RoomStatus(room=room_id, members=len(relay.members(room_id)), capacity=relay.capacity)
