"""DCC bit-stream generation, power supervision and ACK detection for the tracks."""

from __future__ import annotations

import enum
import functools
import logging
import operator
import time
from abc import ABC, abstractmethod
from typing import Iterable, Optional

log = logging.getLogger(__name__)

# Wait times for power management, in milliseconds.
POWER_SAMPLE_ON_WAIT = 100
POWER_SAMPLE_OFF_WAIT = 1000
POWER_SAMPLE_OVERLOAD_WAIT = 20
POWER_SAMPLE_OVERLOAD_CAP = 10000

PREAMBLE_BITS_MAIN = 16
PREAMBLE_BITS_PROG = 22
MAX_PACKET_SIZE = 5  # payload bytes, without checksum
TRIP_CURRENT_PROG = 250  # mA, NMRA programming track limit
MAX_RESET_COUNT = 250

IDLE_PACKET = bytes((0xFF, 0x00, 0xFF))
RESET_PACKET = bytes((0x00, 0x00, 0x00))

# Each byte goes out as a zero start bit followed by eight data bits.
_BIT_MASKS = (0x00, 0x80, 0x40, 0x20, 0x10, 0x08, 0x04, 0x02, 0x01)


class PowerMode(enum.Enum):
    OFF = 0
    ON = 1
    OVERLOAD = 2


class WaveState(enum.IntEnum):
    START = 0
    MID_1 = 1
    HIGH_0 = 2
    MID_0 = 3
    LOW_0 = 4
    PENDING = 5


_NEXT_STATE = {
    WaveState.START: WaveState.PENDING,
    WaveState.MID_1: WaveState.START,
    WaveState.HIGH_0: WaveState.MID_0,
    WaveState.MID_0: WaveState.LOW_0,
    WaveState.LOW_0: WaveState.START,
    WaveState.PENDING: WaveState.PENDING,
}

_SIGNAL = {
    WaveState.START: True,
    WaveState.MID_1: False,
    WaveState.HIGH_0: True,
    WaveState.MID_0: False,
    WaveState.LOW_0: False,
    WaveState.PENDING: False,
}


class SystemClock:
    """Monotonic millisecond and microsecond counters."""

    def millis(self) -> int:
        return time.monotonic_ns() // 1_000_000

    def micros(self) -> int:
        return time.monotonic_ns() // 1_000


class TrackDriver(ABC):
    """The motor driver that feeds one track."""

    fault_pin: Optional[int] = None

    @abstractmethod
    def set_power(self, on: bool) -> None:
        """Switch track power on or off."""

    @abstractmethod
    def set_signal(self, high: bool) -> None:
        """Drive the DCC signal high or low."""

    @abstractmethod
    def current_raw(self) -> int:
        """Raw current reading; negative when the fault pin is active."""

    @abstractmethod
    def raw_trip_value(self) -> int:
        """Raw current reading at which the track trips."""

    @abstractmethod
    def raw_to_ma(self, raw: int) -> int:
        """Convert a raw reading to milliamps."""

    @abstractmethod
    def ma_to_raw(self, ma: int) -> int:
        """Convert milliamps to a raw reading."""

    @abstractmethod
    def can_measure_current(self) -> bool:
        """Whether this driver has current sensing."""


class SimulatedDriver(TrackDriver):
    """An in-memory driver whose current and fault state are set directly."""

    def __init__(self, trip_raw: int, ma_per_raw: float = 1.0,
                 fault_pin: Optional[int] = None) -> None:
        self.trip_raw = trip_raw
        self.ma_per_raw = ma_per_raw
        self.fault_pin = fault_pin
        self.power = False
        self.signal = False
        self.current = 0
        self.fault = False
        self.measures_current = True

    def set_power(self, on: bool) -> None:
        self.power = on

    def set_signal(self, high: bool) -> None:
        self.signal = high

    def current_raw(self) -> int:
        return -self.current if self.fault else self.current

    def raw_trip_value(self) -> int:
        return self.trip_raw

    def raw_to_ma(self, raw: int) -> int:
        return int(raw * self.ma_per_raw)

    def ma_to_raw(self, ma: int) -> int:
        return int(ma / self.ma_per_raw)

    def can_measure_current(self) -> bool:
        return self.measures_current


class DCCWaveform:
    """Packet transmission and current supervision for one track."""

    def __init__(self, preamble_bits: int, is_main: bool, driver: TrackDriver,
                 clock=None) -> None:
        self.is_main = is_main
        self.driver = driver
        self.clock = clock or SystemClock()

        self.packet_pending = False
        self.transmit_packet = IDLE_PACKET
        self.transmit_repeats = 0
        self.pending_packet = b""
        self.pending_repeats = 0
        self.state = WaveState.START
        # One extra preamble bit doubles as the previous packet's stop bit.
        self.required_preambles = preamble_bits + 1
        self.remaining_preambles = 0
        self.bytes_sent = 0
        self.bits_sent = 0
        self.sent_resets_since_packet = 0
        self.auto_power_off = False

        self.power_mode = PowerMode.OFF
        self.last_current = 0
        self.last_sample_taken = self.clock.millis()
        self.sample_delay = 0
        self.power_sample_overload_wait = POWER_SAMPLE_OVERLOAD_WAIT
        self.power_good_counter = 0

        self.ack_pending = False
        self.ack_detected = False
        self.ack_threshold = 0
        self.ack_limit_ma = 50
        self.ack_max_current = 0
        self.ack_check_start = 0
        self.ack_check_duration = 0
        self.ack_pulse_duration = 0
        self.ack_pulse_start = 0
        self.min_ack_pulse_duration = 2000  # micros
        self.max_ack_pulse_duration = 20000  # micros
        self.num_ack_gaps = 0
        self.num_ack_samples = 0
        self._trailing_edge_counter = 0

    @property
    def name(self) -> str:
        return "MAIN" if self.is_main else "PROG"

    # ---- power ----------------------------------------------------------

    def set_power_mode(self, mode: PowerMode) -> None:
        self.power_mode = mode
        self.driver.set_power(mode is PowerMode.ON)
        self.sent_resets_since_packet = 0

    def check_power_overload(self, ack_manager_active: bool, prog_trip_value: int,
                             sync_main: bool, boosted: bool,
                             common_fault_pin: bool) -> None:
        """Sample the current and switch power off or back on as needed."""
        now = self.clock.millis()
        if now - self.last_sample_taken < self.sample_delay:
            return
        self.last_sample_taken = now
        trip_value = self.driver.raw_trip_value()
        if not self.is_main and not ack_manager_active and not sync_main and not boosted:
            trip_value = prog_trip_value

        if self.power_mode is PowerMode.OFF:
            self.sample_delay = POWER_SAMPLE_OFF_WAIT
        elif self.power_mode is PowerMode.ON:
            self._check_current(trip_value, common_fault_pin)
        else:
            self.set_power_mode(PowerMode.ON)
            self.sample_delay = POWER_SAMPLE_ON_WAIT
            log.info("%s TRACK POWER RESET delay=%d", self.name, self.sample_delay)

    def _check_current(self, trip_value: int, common_fault_pin: bool) -> None:
        self.last_current = self.driver.current_raw()
        if self.last_current < 0:
            self.last_current = -self.last_current
            self.set_power_mode(PowerMode.OVERLOAD)
            if common_fault_pin:
                if self.last_current <= trip_value:
                    self.set_power_mode(PowerMode.ON)
                log.warning("COMMON FAULT PIN ACTIVE - TOGGLED POWER on %s", self.name)
            else:
                log.warning("%s FAULT PIN ACTIVE - OVERLOAD", self.name)
                if self.last_current < trip_value:
                    self.last_current = trip_value

        if self.last_current < trip_value:
            self.sample_delay = POWER_SAMPLE_ON_WAIT
            if self.power_good_counter < 100:
                self.power_good_counter += 1
            elif self.power_sample_overload_wait > POWER_SAMPLE_OVERLOAD_WAIT:
                self.power_sample_overload_wait = POWER_SAMPLE_OVERLOAD_WAIT
            return

        self.set_power_mode(PowerMode.OVERLOAD)
        self.power_good_counter = 0
        self.sample_delay = self.power_sample_overload_wait
        log.warning("%s TRACK POWER OVERLOAD current=%d max=%d offtime=%d",
                    self.name, self.driver.raw_to_ma(self.last_current),
                    self.driver.raw_to_ma(trip_value), self.sample_delay)
        if self.power_sample_overload_wait >= POWER_SAMPLE_OVERLOAD_CAP:
            self.power_sample_overload_wait = POWER_SAMPLE_OVERLOAD_CAP
        else:
            self.power_sample_overload_wait *= 2

    def current_ma(self) -> int:
        if self.power_mode is PowerMode.ON:
            return self.driver.raw_to_ma(self.last_current)
        return 0

    def max_ma(self) -> int:
        return self.driver.raw_to_ma(self.driver.raw_trip_value())

    def trip_ma(self) -> int:
        return self.driver.raw_to_ma(self.driver.raw_trip_value())

    def current_1024(self) -> int:
        """Current as a fraction of the trip value, scaled to 0..1024."""
        if self.power_mode is PowerMode.ON:
            return int(self.last_current * 1024 / self.driver.raw_trip_value())
        return 0

    def do_auto_power_off(self) -> None:
        if self.auto_power_off:
            self.set_power_mode(PowerMode.OFF)
            self.auto_power_off = False

    def can_measure_current(self) -> bool:
        return self.driver.can_measure_current()

    # ---- transmission ---------------------------------------------------

    def schedule_packet(self, data: Iterable[int], repeats: int = 0) -> None:
        """Queue a packet (without checksum) to follow the current one.

        If a packet is already waiting, the generator is run forward until
        that one has been taken for transmission.
        """
        packet = bytes(data)
        if len(packet) > MAX_PACKET_SIZE:
            raise ValueError(f"packet of {len(packet)} bytes exceeds {MAX_PACKET_SIZE}")
        while self.packet_pending:
            self.next_bit()
        checksum = functools.reduce(operator.xor, packet, 0)
        self.pending_packet = packet + bytes((checksum,))
        self.pending_repeats = repeats
        self.packet_pending = True
        self.sent_resets_since_packet = 0

    def next_bit(self) -> bool:
        """Choose the next bit to transmit, update the wave state and return the bit."""
        if self.remaining_preambles > 0:
            self.state = WaveState.MID_1
            self.remaining_preambles -= 1
            return True

        bit = bool(self.transmit_packet[self.bytes_sent] & _BIT_MASKS[self.bits_sent])
        self.state = WaveState.MID_1 if bit else WaveState.HIGH_0
        self.bits_sent += 1
        if self.bits_sent == len(_BIT_MASKS):
            self.bits_sent = 0
            self.bytes_sent += 1
            if self.bytes_sent >= len(self.transmit_packet):
                self._end_of_packet()
        return bit

    def _end_of_packet(self) -> None:
        self.bytes_sent = 0
        self.remaining_preambles = self.required_preambles
        if self.transmit_repeats > 0:
            self.transmit_repeats -= 1
        elif self.packet_pending:
            self.transmit_packet = self.pending_packet
            self.transmit_repeats = self.pending_repeats
            self.packet_pending = False
            self.sent_resets_since_packet = 0
        else:
            self.transmit_packet = IDLE_PACKET if self.is_main else RESET_PACKET
            self.transmit_repeats = 0
            if self.sent_resets_since_packet < MAX_RESET_COUNT:
                self.sent_resets_since_packet += 1

    # ---- ACK detection (programming track only) -------------------------

    def set_ack_baseline(self) -> None:
        if self.is_main:
            return
        baseline = self.driver.current_raw()
        self.ack_threshold = baseline + self.driver.ma_to_raw(self.ack_limit_ma)
        log.debug("ACK baseline=%d/%dmA Threshold=%d/%dmA Duration between %dus and %dus",
                  baseline, self.driver.raw_to_ma(baseline), self.ack_threshold,
                  self.driver.raw_to_ma(self.ack_threshold),
                  self.min_ack_pulse_duration, self.max_ack_pulse_duration)

    def set_ack_pending(self) -> None:
        if self.is_main:
            return
        self.ack_max_current = 0
        self.ack_pulse_start = 0
        self.ack_pulse_duration = 0
        self.ack_detected = False
        self.ack_check_start = self.clock.millis()
        self.num_ack_samples = 0
        self.num_ack_gaps = 0
        self.ack_pending = True

    def get_ack(self) -> Optional[bool]:
        """None while still waiting, otherwise whether an ACK was seen."""
        if self.ack_pending:
            return None
        log.debug("%s after %dmS max=%d/%dmA pulse=%duS samples=%d gaps=%d",
                  "ACK" if self.ack_detected else "NO-ACK", self.ack_check_duration,
                  self.ack_max_current, self.driver.raw_to_ma(self.ack_max_current),
                  self.ack_pulse_duration, self.num_ack_samples, self.num_ack_gaps)
        return self.ack_detected

    def check_ack(self) -> None:
        """Take one current sample while waiting for an ACK pulse."""
        if self.sent_resets_since_packet > 6:
            self.ack_check_duration = self.clock.millis() - self.ack_check_start
            self.ack_pending = False
            return

        current = self.driver.current_raw()
        self.num_ack_samples += 1
        self.ack_max_current = max(self.ack_max_current, current)

        if current > self.ack_threshold:
            if self._trailing_edge_counter > 0:
                self.num_ack_gaps += 1
                self._trailing_edge_counter = 0
            if self.ack_pulse_start == 0:
                self.ack_pulse_start = self.clock.micros()
            return

        if self.ack_pulse_start == 0:
            return

        if self._trailing_edge_counter == 0:
            self.ack_pulse_duration = self.clock.micros() - self.ack_pulse_start

        # The trailing edge is trusted only after three low samples.
        if self._trailing_edge_counter < 2:
            self._trailing_edge_counter += 1
            return
        self._trailing_edge_counter = 0

        if self.min_ack_pulse_duration <= self.ack_pulse_duration <= self.max_ack_pulse_duration:
            self.ack_check_duration = self.clock.millis() - self.ack_check_start
            self.ack_detected = True
            self.ack_pending = False
            self.transmit_repeats = 0
            return
        self.ack_pulse_start = 0


class Tracks:
    """The main and programming tracks driven from one timer tick."""

    def __init__(self, main_driver: TrackDriver, prog_driver: TrackDriver,
                 clock=None) -> None:
        self.clock = clock or SystemClock()
        self.main = DCCWaveform(PREAMBLE_BITS_MAIN, True, main_driver, self.clock)
        self.prog = DCCWaveform(PREAMBLE_BITS_PROG, False, prog_driver, self.clock)
        self.prog_trip_value = prog_driver.ma_to_raw(TRIP_CURRENT_PROG)
        self.sync_main = False
        self.boosted = False
        self.main.set_power_mode(PowerMode.OFF)
        self.prog.set_power_mode(PowerMode.OFF)
        self.common_fault_pin = (main_driver.fault_pin == prog_driver.fault_pin
                                 and main_driver.fault_pin is not None)

    def interrupt(self) -> None:
        """Advance both waveforms by one half-bit tick."""
        main, prog = self.main, self.prog
        sig_main = _SIGNAL[main.state]
        sig_prog = sig_main if self.sync_main else _SIGNAL[prog.state]
        main.driver.set_signal(sig_main)
        prog.driver.set_signal(sig_prog)

        main.state = _NEXT_STATE[main.state]
        prog.state = _NEXT_STATE[prog.state]

        if main.state is WaveState.PENDING:
            main.next_bit()
        if prog.state is WaveState.PENDING:
            prog.next_bit()
        elif prog.ack_pending:
            prog.check_ack()

    def loop(self, ack_manager_active: bool) -> None:
        """Run power overload checks on both tracks."""
        args = (self.prog_trip_value, self.sync_main, self.boosted, self.common_fault_pin)
        self.main.check_power_overload(False, *args)
        self.prog.check_power_overload(ack_manager_active, *args)