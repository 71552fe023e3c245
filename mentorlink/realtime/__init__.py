from mentorlink.realtime.connection import Connection
from mentorlink.realtime.gateway import ConnectionGateway
from mentorlink.realtime.rooms import RoomRouter

__all__ = ["Connection", "ConnectionGateway", "RoomRouter"]
