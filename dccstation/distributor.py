"""Broadcast of state changes to every connected client."""

from __future__ import annotations

import enum
import logging
from typing import Protocol

log = logging.getLogger(__name__)

MAX_CLIENTS = 8


class TextStream(Protocol):
    def write(self, text: str) -> object: ...


class ClientType(enum.Enum):
    NONE = 0
    COMMAND = 1
    WITHROTTLE = 2


class CommandDistributor:
    """Sends state broadcasts to serial streams and to network clients.

    Serial streams receive every broadcast. Network clients receive them
    only when ``network`` is true, and throttle-protocol clients receive
    only the broadcasts meant for them.
    """

    def __init__(self, network: bool = False) -> None:
        self.network = network
        self._serials: list[TextStream] = []
        self._clients: dict[int, tuple[ClientType, TextStream]] = {}

    def add_serial(self, stream: TextStream) -> None:
        """Register a serial stream that receives every broadcast."""
        self._serials.append(stream)

    def _check_id(self, client_id: int) -> None:
        if not 0 <= client_id < MAX_CLIENTS:
            raise ValueError(f"client id out of range: {client_id}")

    def attach(self, client_id: int, kind: ClientType, stream: TextStream) -> None:
        """Record the protocol a network client speaks and where it is reached."""
        self._check_id(client_id)
        if kind is ClientType.NONE:
            self._clients.pop(client_id, None)
        else:
            self._clients[client_id] = (kind, stream)

    def client_type(self, client_id: int) -> ClientType:
        self._check_id(client_id)
        entry = self._clients.get(client_id)
        return entry[0] if entry else ClientType.NONE

    def forget(self, client_id: int) -> None:
        """Stop sending broadcasts to a network client."""
        self._check_id(client_id)
        self._clients.pop(client_id, None)

    def _broadcast(self, message: str, include_withrottle: bool) -> None:
        for stream in self._serials:
            stream.write(message)
        if not self.network:
            return
        for client_id in sorted(self._clients):
            kind, stream = self._clients[client_id]
            if kind is ClientType.WITHROTTLE and not include_withrottle:
                continue
            stream.write(message)

    def broadcast_loco(self, slot: int, loco: int, speed_code: int, functions: int) -> None:
        self._broadcast(f"<l {loco} {slot} {speed_code} {functions}>\n", False)

    def broadcast_sensor(self, sensor_id: int, on: bool) -> None:
        self._broadcast(f"<{'Q' if on else 'q'} {sensor_id}>\n", False)

    def broadcast_turnout(self, turnout_id: int, is_closed: bool) -> None:
        # State reported is 1 for thrown and 0 for closed.
        message = f"<H {turnout_id} {int(not is_closed)}>\n"
        if self.network:
            message += f"PTA{'2' if is_closed else '4'}{turnout_id}\n"
        self._broadcast(message, True)

    def broadcast_power(self, main_on: bool, prog_on: bool, joined: bool) -> None:
        state = "1"
        reason = ""
        if main_on and prog_on and joined:
            reason = " JOIN"
        elif main_on and prog_on:
            pass
        elif main_on:
            reason = " MAIN"
        elif prog_on:
            reason = " PROG"
        else:
            state = "0"
        log.info("Power %s%s", "On" if state == "1" else "Off", reason)
        self._broadcast(f"<p{state}{reason}>\nPPA{'1' if main_on else '0'}\n", True)

    def broadcast_text(self, message: str) -> None:
        self._broadcast(message, False)