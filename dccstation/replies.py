"""Deferred replies to programming-track commands.

A command that starts a programming-track operation stashes its stream
and parameters here. The matching callback formats the reply once the
operation has completed and frees the stash for the next command.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from .keywords import MAX_COMMAND_PARAMS
from .packets import HIGHEST_SHORT_ADDR, LONG_ADDR_MARKER


class TextStream(Protocol):
    def write(self, text: str) -> object: ...


class AsyncReplies:
    """Holds one pending programming command and writes its reply."""

    def __init__(self) -> None:
        self._stream: Optional[TextStream] = None
        self._params: list[int] = [0] * MAX_COMMAND_PARAMS
        self._busy = False

    @property
    def busy(self) -> bool:
        """Whether a command is waiting for its reply."""
        return self._busy

    def stash(self, stream: TextStream, params: Sequence[int]) -> bool:
        """Keep the stream and parameters for a later reply.

        Returns False, keeping nothing, when another command is still waiting.
        """
        if self._busy:
            return False
        padded = list(params[:MAX_COMMAND_PARAMS])
        padded.extend([0] * (MAX_COMMAND_PARAMS - len(padded)))
        self._busy = True
        self._stream = stream
        self._params = padded
        return True

    def _reply(self, text: str) -> None:
        if self._stream is None:
            raise RuntimeError("no command is waiting for a reply")
        self._stream.write(text)
        self._busy = False

    def callback_w(self, result: int) -> None:
        p = self._params
        self._reply(f"<r {p[0]} {p[1] if result == 1 else -1}>\n")

    def callback_w4(self, result: int) -> None:
        p = self._params
        self._reply(f"<r{p[2]}|{p[3]}|{p[0]} {p[1] if result == 1 else -1}>\n")

    def callback_b(self, result: int) -> None:
        p = self._params
        self._reply(f"<r{p[3]}|{p[4]}|{p[0]} {p[1]} {p[2] if result == 1 else -1}>\n")

    def callback_vbit(self, result: int) -> None:
        p = self._params
        self._reply(f"<v {p[0]} {p[1]} {result}>\n")

    def callback_vbyte(self, result: int) -> None:
        p = self._params
        self._reply(f"<v {p[0]} {result}>\n")

    def callback_r(self, result: int) -> None:
        p = self._params
        self._reply(f"<r{p[1]}|{p[2]}|{p[0]} {result}>\n")

    def callback_rloco(self, result: int) -> None:
        if result > 0:
            long_addr = bool(result & LONG_ADDR_MARKER)
            if long_addr:
                result ^= LONG_ADDR_MARKER
            if long_addr and result <= HIGHEST_SHORT_ADDR:
                self._reply(f"<r LONG {result} UNSUPPORTED>\n")
                return
        self._reply(f"<r {result}>\n")

    def callback_wloco(self, result: int) -> None:
        if result == 1:
            result = self._params[0]
        self._reply(f"<w {result}>\n")