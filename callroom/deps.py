from fastapi.requests import HTTPConnection

from callroom.config import Settings
from callroom.services.relay import RoomRelay


def get_relay(conn: HTTPConnection) -> RoomRelay:
    return conn.app.state.relay


def get_app_settings(conn: HTTPConnection) -> Settings:
    return conn.app.state.settings
