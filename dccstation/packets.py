"""Builders for the NMRA DCC packets sent on the main track.

Every builder returns the packet payload without its checksum; the
waveform generator appends the checksum when the packet is scheduled.
"""

from __future__ import annotations

HIGHEST_SHORT_ADDR = 127
LONG_ADDR_MARKER = 0x4000

# NMRA instruction codes.
SET_SPEED = 0x3F
WRITE_BYTE_MAIN = 0xEC
WRITE_BIT_MAIN = 0xE8
WRITE_BYTE = 0x7C
VERIFY_BYTE = 0x74
BIT_MANIPULATE = 0x78
WRITE_BIT = 0xF0
VERIFY_BIT = 0xE0
BIT_ON = 0x08
BIT_OFF = 0x00

BINARY_STATE_SHORT = 0b11011101
BINARY_STATE_LONG = 0b11000000
SPEED_28_INSTRUCTION = 0b01000000
SPEED_28_DIRECTION = 0b00100000
SPEED_28_HALF_STEP = 0b00010000


def _low_byte(value: int) -> int:
    return value & 0xFF


def _high_byte(value: int) -> int:
    return (value >> 8) & 0xFF


def cv1(opcode: int, cv: int) -> int:
    """First instruction byte for a CV access: opcode plus the top two CV bits.

    CV numbers are 1-based; anything above 1024 wraps modulo 1024.
    """
    return (_high_byte(cv - 1) & 0x03) | opcode


def cv2(cv: int) -> int:
    """Second instruction byte for a CV access: the low eight bits of cv-1."""
    return _low_byte(cv - 1)


def address_bytes(cab: int) -> bytes:
    """Encode a locomotive address as one byte (short) or two bytes (long)."""
    if cab > HIGHEST_SHORT_ADDR:
        return bytes((_high_byte(cab) | 0xC0, _low_byte(cab)))
    return bytes((_low_byte(cab),))


def speed_packet(cab: int, speed_code: int, speed_steps: int = 128) -> bytes:
    """Speed and direction packet.

    ``speed_code`` holds the direction in bit 7 (set for forward) and the
    128-step speed in bits 0-6, where 0 is stop and 1 is emergency stop.
    With 28 or fewer speed steps the speed is converted to the 28-step form.
    """
    if speed_steps <= 28:
        speed128 = speed_code & 0x7F
        if speed128 in (0, 1):
            code28 = speed128
        else:
            speed28 = (speed128 * 10 + 36) // 46
            code28 = (speed28 + 3) // 2 | (0 if speed28 & 1 else SPEED_28_HALF_STEP)
        direction = SPEED_28_DIRECTION if speed_code & 0x80 else 0
        return address_bytes(cab) + bytes((SPEED_28_INSTRUCTION | code28 | direction,))
    return address_bytes(cab) + bytes((SET_SPEED, speed_code & 0xFF))


def function_packet(cab: int, byte1: int, byte2: int) -> bytes:
    """Function group packet; ``byte1`` is omitted when zero."""
    body = bytes((byte1 & 0xFF, byte2 & 0xFF)) if byte1 else bytes((byte2 & 0xFF,))
    return address_bytes(cab) + body


def binary_state_packet(cab: int, function_number: int, on: bool) -> bytes:
    """Binary state control packet for functions above F28."""
    state = 0x80 if on else 0
    if function_number <= 127:
        body = bytes((BINARY_STATE_SHORT, (function_number | state) & 0xFF))
    else:
        body = bytes((BINARY_STATE_LONG,
                      (function_number & 0x7F) | state,
                      (function_number >> 7) & 0xFF))
    return address_bytes(cab) + body


def accessory_packet(address: int, number: int, activate: bool) -> bytes:
    """Basic accessory decoder packet.

    Raises ValueError if the address does not fit nine bits or the
    sub-address does not fit two bits.
    """
    if address != address & 511:
        raise ValueError(f"accessory address out of range: {address}")
    if number != number & 3:
        raise ValueError(f"accessory sub-address out of range: {number}")
    first = address % 64 + 128
    second = ((((address // 64) % 8) << 4) + ((number % 4) << 1) + int(activate) % 2) ^ 0xF8
    return bytes((first, second))


def cv_byte_main_packet(cab: int, cv: int, value: int) -> bytes:
    """Programming-on-main packet that writes a whole CV byte."""
    return address_bytes(cab) + bytes((cv1(WRITE_BYTE_MAIN, cv), cv2(cv), value & 0xFF))


def cv_bit_main_packet(cab: int, cv: int, bit_number: int, value: bool) -> bytes:
    """Programming-on-main packet that writes one bit of a CV."""
    bit = int(value) % 2
    instruction = WRITE_BIT | (BIT_ON if bit else BIT_OFF) | (bit_number % 8)
    return address_bytes(cab) + bytes((cv1(WRITE_BIT_MAIN, cv), cv2(cv), instruction))