"""Turnouts, outputs and sensors, and the commands that define and operate them."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from .keywords import (
    KEYWORD_C,
    KEYWORD_DCC,
    KEYWORD_SERVO,
    KEYWORD_T,
    KEYWORD_VPIN,
    MAX_COMMAND_PARAMS,
)

log = logging.getLogger(__name__)

MAX_ACCESSORY_ADDRESS = 511
MAX_LINEAR_ADDRESS = 512 * 4
MAX_OUTPUT_FLAGS = 7


class TextStream(Protocol):
    def write(self, text: str) -> object: ...


class TurnoutKind(enum.Enum):
    DCC = "DCC"
    SERVO = "SERVO"
    VPIN = "VPIN"


@dataclass
class Turnout:
    """A turnout definition and its current state."""

    id: int
    kind: TurnoutKind
    settings: tuple[int, ...]
    closed: bool = True
    hidden: bool = False

    @property
    def thrown(self) -> bool:
        return not self.closed


@dataclass
class Output:
    id: int
    pin: int
    flags: int
    active: bool = False


@dataclass
class Sensor:
    id: int
    pin: int
    pull_up: int
    active: bool = False


def _padded(params: Sequence[int]) -> list[int]:
    values = list(params[:MAX_COMMAND_PARAMS])
    values.extend([0] * (MAX_COMMAND_PARAMS - len(values)))
    return values


class LayoutObjects:
    """Registry of the turnouts, outputs and sensors defined on the layout.

    Turnout and sensor state changes are broadcast through ``distributor``
    when one is given.
    """

    def __init__(self, distributor=None) -> None:
        self.distributor = distributor
        self.turnouts: dict[int, Turnout] = {}
        self.outputs: dict[int, Output] = {}
        self.sensors: dict[int, Sensor] = {}

    # ---- turnouts -------------------------------------------------------

    def _add_turnout(self, turnout: Turnout) -> bool:
        self.turnouts[turnout.id] = turnout
        return True

    def create_dcc_turnout(self, turnout_id: int, address: int, subaddress: int) -> bool:
        return self._add_turnout(Turnout(turnout_id, TurnoutKind.DCC, (address, subaddress)))

    def create_servo_turnout(self, turnout_id: int, vpin: int, thrown_position: int,
                             closed_position: int, profile: int) -> bool:
        return self._add_turnout(Turnout(
            turnout_id, TurnoutKind.SERVO,
            (vpin, thrown_position, closed_position, profile)))

    def create_vpin_turnout(self, turnout_id: int, vpin: int) -> bool:
        return self._add_turnout(Turnout(turnout_id, TurnoutKind.VPIN, (vpin,)))

    def remove_turnout(self, turnout_id: int) -> bool:
        return self.turnouts.pop(turnout_id, None) is not None

    def set_closed(self, turnout_id: int, closed: bool) -> bool:
        """Close or throw a turnout; False if it is not defined."""
        turnout = self.turnouts.get(turnout_id)
        if turnout is None:
            return False
        turnout.closed = closed
        if self.distributor is not None:
            self.distributor.broadcast_turnout(turnout_id, closed)
        return True

    def print_turnouts(self, stream: TextStream) -> None:
        for turnout in self.turnouts.values():
            stream.write(f"<H {turnout.id} {int(turnout.thrown)}>\n")

    # ---- outputs --------------------------------------------------------

    def create_output(self, output_id: int, pin: int, flags: int) -> bool:
        self.outputs[output_id] = Output(output_id, pin, flags)
        return True

    def activate_output(self, output_id: int, state: int) -> bool:
        output = self.outputs.get(output_id)
        if output is None:
            return False
        output.active = bool(state)
        return True

    def remove_output(self, output_id: int) -> bool:
        return self.outputs.pop(output_id, None) is not None

    def list_outputs(self, stream: TextStream) -> bool:
        """Write every output definition; False when there are none."""
        for output in self.outputs.values():
            stream.write(f"<Y {output.id} {output.pin} {output.flags} {int(output.active)}>\n")
        return bool(self.outputs)

    def print_output_states(self, stream: TextStream) -> None:
        for output in self.outputs.values():
            stream.write(f"<Y {output.id} {int(output.active)}>\n")

    # ---- sensors --------------------------------------------------------

    def create_sensor(self, sensor_id: int, pin: int, pull_up: int) -> bool:
        self.sensors[sensor_id] = Sensor(sensor_id, pin, pull_up)
        return True

    def remove_sensor(self, sensor_id: int) -> bool:
        return self.sensors.pop(sensor_id, None) is not None

    def set_sensor(self, sensor_id: int, active: bool) -> bool:
        """Record a sensor's state, broadcasting a change; False if undefined."""
        sensor = self.sensors.get(sensor_id)
        if sensor is None:
            return False
        changed = sensor.active != active
        sensor.active = active
        if changed and self.distributor is not None:
            self.distributor.broadcast_sensor(sensor_id, active)
        return True

    def list_sensors(self, stream: TextStream) -> bool:
        """Write every sensor definition; False when there are none."""
        for sensor in self.sensors.values():
            stream.write(f"<Q {sensor.id} {sensor.pin} {sensor.pull_up}>\n")
        return bool(self.sensors)

    def print_sensor_states(self, stream: TextStream) -> None:
        for sensor in self.sensors.values():
            stream.write(f"<{'Q' if sensor.active else 'q'} {sensor.id}>\n")


def parse_turnout(stream: TextStream, params: Sequence[int], layout: LayoutObjects) -> bool:
    """Carry out a ``<T ...>`` command; False means the caller replies ``<X>``."""
    count = len(params)
    p = _padded(params)

    if count == 0:
        if not layout.turnouts:
            return False
        layout.print_turnouts(stream)
        return True

    if count == 1:
        if not layout.remove_turnout(p[0]):
            return False
        stream.write("<O>\n")
        return True

    if count == 2:
        # 1 or T throws, 0 or C closes.
        if p[1] in (0, KEYWORD_C):
            closed = True
        elif p[1] in (1, KEYWORD_T):
            closed = False
        else:
            return False
        return layout.set_closed(p[0], closed)

    if count == 6 and p[1] == KEYWORD_SERVO:
        created = layout.create_servo_turnout(
            p[0], p[2] & 0xFFFF, p[3] & 0xFFFF, p[4] & 0xFFFF, p[5] & 0xFF)
    elif count == 3 and p[1] == KEYWORD_VPIN:
        created = layout.create_vpin_turnout(p[0], p[2])
    elif p[1] == KEYWORD_DCC:
        if count == 4 and 0 <= p[2] <= MAX_ACCESSORY_ADDRESS and 0 <= p[3] < 4:
            created = layout.create_dcc_turnout(p[0], p[2], p[3])
        elif count == 3 and 0 < p[2] <= MAX_LINEAR_ADDRESS:
            # Linear address 1 is decoder address 1, sub-address 0.
            created = layout.create_dcc_turnout(p[0], (p[2] - 1) // 4 + 1, (p[2] - 1) % 4)
        else:
            return False
    elif count == 3:
        if not (0 <= p[1] <= MAX_ACCESSORY_ADDRESS and 0 <= p[2] < 4):
            return False
        created = layout.create_dcc_turnout(p[0], p[1], p[2])
    elif count == 4:
        created = layout.create_servo_turnout(
            p[0], p[1] & 0xFFFF, p[2] & 0xFFFF, p[3] & 0xFFFF, 1)
    else:
        return False

    if not created:
        return False
    stream.write("<O>\n")
    return True


def parse_output(stream: TextStream, params: Sequence[int], layout: LayoutObjects) -> bool:
    """Carry out a ``<Z ...>`` command; False means the caller replies ``<X>``."""
    count = len(params)
    p = _padded(params)
    if count == 2:
        if not layout.activate_output(p[0], p[1]):
            return False
        stream.write(f"<Y {p[0]} {p[1]}>\n")
        return True
    if count == 3:
        if p[0] < 0 or not 0 <= p[2] <= MAX_OUTPUT_FLAGS:
            return False
        if not layout.create_output(p[0], p[1], p[2]):
            return False
        stream.write("<O>\n")
        return True
    if count == 1:
        if not layout.remove_output(p[0]):
            return False
        stream.write("<O>\n")
        return True
    if count == 0:
        return layout.list_outputs(stream)
    return False


def parse_sensor(stream: TextStream, params: Sequence[int], layout: LayoutObjects) -> bool:
    """Carry out an ``<S ...>`` command; False means the caller replies ``<X>``."""
    count = len(params)
    p = _padded(params)
    if count == 3:
        if not layout.create_sensor(p[0], p[1], p[2]):
            return False
        stream.write("<O>\n")
        return True
    if count == 1:
        if not layout.remove_sensor(p[0]):
            return False
        stream.write("<O>\n")
        return True
    if count == 0:
        return layout.list_sensors(stream)
    return False


def _funcmap(dcc, cab: int, value: int, first: int, last: int) -> None:
    for function_number in range(first, last + 1):
        dcc.set_fn(cab, function_number, bool(value & 1))
        value >>= 1


def parse_function(dcc, params: Sequence[int]) -> bool:
    """Carry out an ``<f CAB BYTE1 [BYTE2]>`` command given in DCC function-group form."""
    count = len(params)
    p = _padded(params)
    if count == 2:
        instruction = p[1] & 0xE0
        if instruction == 0x80:
            # Reorder bits F0 F4 F3 F2 F1 into F4 F3 F2 F1 F0.
            normalized = ((p[1] << 1) & 0x1E) | ((p[1] >> 4) & 0x01)
            _funcmap(dcc, p[0], normalized, 0, 4)
        elif instruction == 0xA0:
            if p[1] & 0x10:
                _funcmap(dcc, p[0], p[1] & 0xFF, 5, 8)
            else:
                _funcmap(dcc, p[0], p[1] & 0xFF, 9, 12)
    if count == 3:
        if p[1] == 222:
            _funcmap(dcc, p[0], p[2] & 0xFF, 13, 20)
        elif p[1] == 223:
            _funcmap(dcc, p[0], p[2] & 0xFF, 21, 28)
    return True