"""Locomotive state, speed and function reminders, and main-track commands."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from .distributor import CommandDistributor
from .packets import (
    accessory_packet,
    binary_state_packet,
    cv_bit_main_packet,
    cv_byte_main_packet,
    function_packet,
    speed_packet,
)
from .waveform import PowerMode, Tracks

log = logging.getLogger(__name__)

MAX_LOCOS = 50
HIGHEST_FUNCTION = 28

FN_GROUP_1 = 0x01  # F0-F4
FN_GROUP_2 = 0x02  # F5-F8
FN_GROUP_3 = 0x04  # F9-F12
FN_GROUP_4 = 0x08  # F13-F20
FN_GROUP_5 = 0x10  # F21-F28

_REMINDER_STEPS = 6
_ESTOP = 1
_FORWARD = 0x80


class TextStream(Protocol):
    def write(self, text: str) -> object: ...


def update_group_flags(flags: int, function_number: int) -> int:
    """Return ``flags`` with the bit set for the group holding the function.

    Only groups whose flag is set are included in reminders.
    """
    if function_number <= 4:
        mask = FN_GROUP_1
    elif function_number <= 8:
        mask = FN_GROUP_2
    elif function_number <= 12:
        mask = FN_GROUP_3
    elif function_number <= 20:
        mask = FN_GROUP_4
    else:
        mask = FN_GROUP_5
    return flags | mask


@dataclass
class LocoState:
    """One slot of the speed table; a ``loco`` of zero marks a free slot."""

    loco: int = 0
    speed_code: int = _FORWARD
    group_flags: int = 0
    functions: int = 0


class DCC:
    """Turns API calls into packets on the main track and keeps loco reminders."""

    def __init__(self, tracks: Tracks, distributor: CommandDistributor,
                 max_locos: int = MAX_LOCOS) -> None:
        self.tracks = tracks
        self.distributor = distributor
        self.speed_table = [LocoState() for _ in range(max_locos)]
        self.global_speedsteps = 128
        self._next_loco = 0
        self._loop_status = 0

    # ---- speed table ----------------------------------------------------

    def lookup_speed_table(self, loco_id: int, auto_create: bool = True) -> Optional[int]:
        """Return the slot for ``loco_id``, creating it if asked; None if absent or full."""
        first_empty: Optional[int] = None
        for reg, state in enumerate(self.speed_table):
            if state.loco == loco_id:
                return reg
            if state.loco == 0 and first_empty is None:
                first_empty = reg
        if not auto_create:
            return None
        if first_empty is None:
            log.warning("Too many locos")
            return None
        self.speed_table[first_empty] = LocoState(loco=loco_id)
        return first_empty

    def _broadcast_loco(self, slot: int) -> None:
        state = self.speed_table[slot]
        self.distributor.broadcast_loco(slot, state.loco, state.speed_code, state.functions)

    def _schedule_main(self, packet: bytes, repeats: int = 0) -> None:
        self.tracks.main.schedule_packet(packet, repeats)

    # ---- speed ----------------------------------------------------------

    def set_throttle(self, cab: int, speed: int, forward: bool) -> None:
        """Set a loco's 128-step speed (0 stop, 1 emergency stop) and direction.

        Cab 0 broadcasts the speed to every loco without changing directions.
        """
        speed_code = (speed & 0x7F) + (_FORWARD if forward else 0)
        self._set_throttle2(cab, speed_code)
        self._update_loco_reminder(cab, speed_code)

    def _set_throttle2(self, cab: int, speed_code: int) -> None:
        self._schedule_main(speed_packet(cab, speed_code, self.global_speedsteps))

    def _update_loco_reminder(self, loco: int, speed_code: int) -> None:
        if loco == 0:
            for reg, state in enumerate(self.speed_table):
                if state.loco == 0:
                    continue
                new_speed = (state.speed_code & _FORWARD) | (speed_code & 0x7F)
                if state.speed_code != new_speed:
                    state.speed_code = new_speed
                    self._broadcast_loco(reg)
            return
        reg = self.lookup_speed_table(loco)
        if reg is not None and self.speed_table[reg].speed_code != speed_code:
            self.speed_table[reg].speed_code = speed_code
            self._broadcast_loco(reg)

    def get_throttle_speed(self, cab: int) -> Optional[int]:
        """The loco's 128-step speed, or None when the speed table is full."""
        reg = self.lookup_speed_table(cab)
        if reg is None:
            return None
        return self.speed_table[reg].speed_code & 0x7F

    def get_throttle_direction(self, cab: int) -> bool:
        """True for forward; unknown locos count as forward."""
        reg = self.lookup_speed_table(cab)
        if reg is None:
            return True
        return bool(self.speed_table[reg].speed_code & _FORWARD)

    def set_global_speedsteps(self, steps: int) -> None:
        self.global_speedsteps = steps

    # ---- functions ------------------------------------------------------

    def set_fn(self, cab: int, function_number: int, on: bool) -> None:
        """Switch a function on or off.

        Functions above F28 are sent once as binary state packets and not reminded.
        """
        if cab <= 0 or function_number < 0:
            return
        if function_number > HIGHEST_FUNCTION:
            self._schedule_main(binary_state_packet(cab, function_number, on), 4)
            return
        reg = self.lookup_speed_table(cab)
        if reg is None:
            return
        state = self.speed_table[reg]
        previous = state.functions
        mask = 1 << function_number
        if on:
            state.functions |= mask
        else:
            state.functions &= ~mask
        if state.functions != previous:
            state.group_flags = update_group_flags(state.group_flags, function_number)
            self._broadcast_loco(reg)

    def change_fn(self, cab: int, function_number: int) -> None:
        """Toggle a function F0-F28."""
        if cab <= 0 or not 0 <= function_number <= HIGHEST_FUNCTION:
            return
        reg = self.lookup_speed_table(cab)
        if reg is None:
            return
        state = self.speed_table[reg]
        state.functions ^= 1 << function_number
        state.group_flags = update_group_flags(state.group_flags, function_number)
        self._broadcast_loco(reg)

    def get_fn(self, cab: int, function_number: int) -> Optional[bool]:
        """State of function F0-F28, or None when unknown."""
        if cab <= 0 or not 0 <= function_number <= HIGHEST_FUNCTION:
            return None
        reg = self.lookup_speed_table(cab)
        if reg is None:
            return None
        return bool(self.speed_table[reg].functions & (1 << function_number))

    def get_function_map(self, cab: int) -> int:
        """Bit map of functions F0-F28; zero when unknown."""
        if cab <= 0:
            return 0
        reg = self.lookup_speed_table(cab)
        return 0 if reg is None else self.speed_table[reg].functions

    # ---- other main-track commands --------------------------------------

    def set_accessory(self, address: int, number: int, activate: bool) -> None:
        """Send a basic accessory command, repeated four times.

        Raises ValueError for an address beyond nine bits or a sub-address beyond two.
        """
        self._schedule_main(accessory_packet(address, number, activate), 4)

    def write_cv_byte_main(self, cab: int, cv: int, value: int) -> None:
        self._schedule_main(cv_byte_main_packet(cab, cv, value), 4)

    def write_cv_bit_main(self, cab: int, cv: int, bit_number: int, value: bool) -> None:
        self._schedule_main(cv_bit_main_packet(cab, cv, bit_number, value), 4)

    def forget_loco(self, cab: int) -> None:
        """Emergency-stop a loco and drop it from the reminders."""
        self._set_throttle2(cab, _ESTOP)
        reg = self.lookup_speed_table(cab)
        if reg is not None:
            self.speed_table[reg].loco = 0
        self._set_throttle2(cab, _ESTOP)

    def forget_all_locos(self) -> None:
        """Emergency-stop every loco and clear all reminders."""
        self._set_throttle2(0, _ESTOP)
        for state in self.speed_table:
            state.loco = 0

    # ---- reminders ------------------------------------------------------

    def issue_reminders(self) -> None:
        """Send the next reminder packet, cycling through the known locos."""
        if self.tracks.main.packet_pending:
            return
        size = len(self.speed_table)
        for offset in range(size):
            slot = (self._next_loco + offset) % size
            if self.speed_table[slot].loco > 0:
                if self._issue_reminder(slot):
                    self._next_loco = slot + 1
                return

    def _set_function_internal(self, cab: int, byte1: int, byte2: int) -> None:
        self._schedule_main(function_packet(cab, byte1, byte2))

    def _issue_reminder(self, reg: int) -> bool:
        state = self.speed_table[reg]
        functions = state.functions
        loco = state.loco
        flags = state.group_flags
        status = self._loop_status

        if status == 0:
            self._set_throttle2(loco, state.speed_code)
        elif status == 1 and flags & FN_GROUP_1:
            self._set_function_internal(
                loco, 0, 128 | ((functions >> 1) & 0x0F) | ((functions & 0x01) << 4))
        elif status == 2 and flags & FN_GROUP_2:
            self._set_function_internal(loco, 0, 176 | ((functions >> 5) & 0x0F))
        elif status == 3 and flags & FN_GROUP_3:
            self._set_function_internal(loco, 0, 160 | ((functions >> 9) & 0x0F))
        elif status == 4 and flags & FN_GROUP_4:
            self._set_function_internal(loco, 222, (functions >> 13) & 0xFF)
        elif status == 5 and flags & FN_GROUP_5:
            self._set_function_internal(loco, 223, (functions >> 21) & 0xFF)

        self._loop_status = (status + 1) % _REMINDER_STEPS
        return self._loop_status == 0

    # ---- track control and reporting ------------------------------------

    def set_prog_track_sync_main(self, on: bool) -> None:
        """Drive the programming track with the main track's signal when on."""
        self.tracks.sync_main = on

    def set_prog_track_boost(self, on: bool) -> None:
        """Lift the programming track's current limit when on."""
        self.tracks.boosted = on

    def broadcast_power(self) -> None:
        self.distributor.broadcast_power(
            self.tracks.main.power_mode is PowerMode.ON,
            self.tracks.prog.power_mode is PowerMode.ON,
            self.tracks.sync_main,
        )

    def display_cab_list(self, stream: TextStream) -> None:
        used = 0
        for state in self.speed_table:
            if state.loco > 0:
                used += 1
                direction = "F" if state.speed_code & _FORWARD else "R"
                stream.write(f"cab={state.loco}, speed={state.speed_code & 0x7F}, "
                             f"dir={direction} \n")
        stream.write(f"Used={used}, max={len(self.speed_table)}\n")