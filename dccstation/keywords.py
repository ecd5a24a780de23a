"""Splitting of command parameters and hashing of keyword parameters."""

from __future__ import annotations

from typing import Optional, Union

MAX_COMMAND_PARAMS = 10

# Keyword values as produced by keyword_hash.
KEYWORD_PROG = -29718
KEYWORD_MAIN = 11339
KEYWORD_JOIN = -30750
KEYWORD_CABS = -11981
KEYWORD_RAM = 25982
KEYWORD_CMD = 9962
KEYWORD_ACK = 3113
KEYWORD_ON = 2657
KEYWORD_DCC = 6436
KEYWORD_SLOW = -17209
KEYWORD_PROGBOOST = -6353
KEYWORD_EEPROM = -7168
KEYWORD_LIMIT = 27413
KEYWORD_MAX = 16244
KEYWORD_MIN = 15978
KEYWORD_RESET = 26133
KEYWORD_RETRY = 25704
KEYWORD_SPEED28 = -17064
KEYWORD_SPEED128 = 25816
KEYWORD_SERVO = 27709
KEYWORD_VPIN = -415
KEYWORD_A = ord("A")
KEYWORD_C = ord("C")
KEYWORD_R = ord("R")
KEYWORD_T = ord("T")
KEYWORD_LCN = 15137
KEYWORD_HAL = 10853
KEYWORD_SHOW = -21309
KEYWORD_ANIN = -10424
KEYWORD_ANOUT = -26399
KEYWORD_WIFI = -5583
KEYWORD_ETHERNET = -30767
KEYWORD_WIT = 31594


def _to_int16(value: int) -> int:
    value &= 0xFFFF
    return value - 0x10000 if value & 0x8000 else value


def _accumulate(value: int, ch: str, use_hex: bool) -> Optional[int]:
    """Fold one character into a parameter value; None if it ends the parameter."""
    if "0" <= ch <= "9":
        return _to_int16((16 if use_hex else 10) * value + ord(ch) - ord("0"))
    if "a" <= ch <= "z":
        ch = ch.upper()
    if use_hex and "A" <= ch <= "F":
        return _to_int16(16 * value + ord(ch) - ord("A") + 10)
    if ch == "_" or "A" <= ch <= "Z":
        return _to_int16(((value << 5) + value) ^ ord(ch))
    return None


def keyword_hash(word: str) -> int:
    """The 16-bit value a keyword takes when given as a command parameter.

    Raises ValueError for an empty word or one holding a character that
    would end a parameter.
    """
    if not word:
        raise ValueError("empty keyword")
    value = 0
    for ch in word:
        updated = _accumulate(value, ch, False)
        if updated is None:
            raise ValueError(f"character {ch!r} cannot appear in a keyword")
        value = updated
    return value


def split_values(command: Union[str, bytes], use_hex: bool = False) -> list[int]:
    """Parse the parameters after the opcode character of ``command``.

    Parameters are separated by spaces and end at the string's end, a NUL
    or ``>``; at most MAX_COMMAND_PARAMS are returned. Numbers are decimal,
    or hexadecimal with ``use_hex``; words become their keyword hash.
    Values wrap to signed 16 bits. A character that can start no parameter
    yields a zero parameter without being consumed.
    """
    if isinstance(command, (bytes, bytearray)):
        command = bytes(command).decode("latin-1")
    text = command[1:]

    def char_at(position: int) -> str:
        return text[position] if position < len(text) else "\0"

    values: list[int] = []
    pos = 0
    while len(values) < MAX_COMMAND_PARAMS:
        ch = char_at(pos)
        if ch == " ":
            pos += 1
            continue
        if ch in ("\0", ">"):
            break
        negative = ch == "-"
        if negative:
            pos += 1
        value = 0
        while (updated := _accumulate(value, char_at(pos), use_hex)) is not None:
            value = updated
            pos += 1
        values.append(_to_int16(-value if negative else value))
    return values