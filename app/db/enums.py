"""Domain enums."""

from enum import StrEnum


class UserRole(StrEnum):
    ADMIN = "admin"
    USER = "user"


class ConnectionStatus(StrEnum):
    OFFLINE = "offline"
    RELAYED = "relayed"
    DIRECT_LAN = "direct_lan"
    DIRECT_WAN = "direct_wan"


ONLINE_CONNECTION_STATUSES = frozenset(
    {
        ConnectionStatus.RELAYED,
        ConnectionStatus.DIRECT_LAN,
        ConnectionStatus.DIRECT_WAN,
    }
)
