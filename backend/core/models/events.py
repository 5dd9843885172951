"""Event types pushed to subscribers."""

from enum import Enum


class EventType(str, Enum):
    NEW_SIGNAL = "new_signal"
    POSITION_CLOSED = "position_closed"
    TAKE_PROFIT_HIT = "take_profit_hit"
    STOP_LOSS_HIT = "stop_loss_hit"
    HEARTBEAT = "heartbeat"
    WELCOME = "welcome"
    PONG = "pong"
    ERROR = "error"
