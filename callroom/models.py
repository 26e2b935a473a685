from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from typing import Annotated, Any, Dict, Literal, Optional, Union


class Envelope(BaseModel):
    """One websocket text frame: an event name and its payload."""
    event: str = Field(min_length=1)
    payload: Any = None


class SignalRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId", min_length=1)
    # Opaque to the relay; forwarded as-is
    data: Dict[str, Any]


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId", min_length=1)
    message: str
    sender: str


class ChatMessage(BaseModel):
    message: str
    sender: str


class SessionDescription(BaseModel):
    type: Literal["offer", "answer"]
    sdp: str


class IceCandidate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    candidate: str
    sdp_mid: Optional[str] = Field(default=None, alias="sdpMid")
    sdp_mline_index: Optional[int] = Field(default=None, alias="sdpMLineIndex")


class OfferSignal(BaseModel):
    type: Literal["offer"] = "offer"
    offer: SessionDescription


class AnswerSignal(BaseModel):
    type: Literal["answer"] = "answer"
    answer: SessionDescription


class CandidateSignal(BaseModel):
    type: Literal["candidate"] = "candidate"
    candidate: IceCandidate


SignalData = Annotated[
    Union[OfferSignal, AnswerSignal, CandidateSignal],
    Field(discriminator="type"),
]
signal_adapter: TypeAdapter[SignalData] = TypeAdapter(SignalData)


def dump_signal(signal: BaseModel) -> Dict[str, Any]:
    """Wire form of a signal, using the camelCase names browsers emit."""
    return signal.model_dump(by_alias=True, mode="json")
