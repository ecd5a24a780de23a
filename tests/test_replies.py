import io

import pytest

from dccstation.packets import LONG_ADDR_MARKER
from dccstation.replies import AsyncReplies


def stashed(params):
    replies = AsyncReplies()
    stream = io.StringIO()
    assert replies.stash(stream, params)
    return replies, stream


def test_write_success_reports_value():
    replies, stream = stashed([1, 5])
    replies.callback_w(1)
    assert stream.getvalue() == "<r 1 5>\n"


def test_write_failure_reports_minus_one():
    replies, stream = stashed([1, 5])
    replies.callback_w(-1)
    assert stream.getvalue() == "<r 1 -1>\n"


def test_write_with_callback_numbers():
    replies, stream = stashed([1, 5, 7, 9])
    replies.callback_w4(1)
    assert stream.getvalue() == "<r7|9|1 5>\n"


def test_bit_write_reply():
    replies, stream = stashed([2, 3, 1, 7, 9])
    replies.callback_b(-1)
    assert stream.getvalue() == "<r7|9|2 3 -1>\n"


def test_verify_replies():
    replies, stream = stashed([8, 2])
    replies.callback_vbit(0)
    assert stream.getvalue() == "<v 8 2 0>\n"
    replies2, stream2 = stashed([8])
    replies2.callback_vbyte(13)
    assert stream2.getvalue() == "<v 8 13>\n"


def test_read_reply():
    replies, stream = stashed([8, 7, 9])
    replies.callback_r(13)
    assert stream.getvalue() == "<r7|9|8 13>\n"


@pytest.mark.parametrize(
    "result, expected",
    [
        (-1, "<r -1>\n"),
        (3, "<r 3>\n"),
        (LONG_ADDR_MARKER | 3, "<r LONG 3 UNSUPPORTED>\n"),
        (LONG_ADDR_MARKER | 1000, "<r 1000>\n"),
    ],
)
def test_read_loco_reply(result, expected):
    replies, stream = stashed([])
    replies.callback_rloco(result)
    assert stream.getvalue() == expected


def test_write_loco_reports_requested_id_on_success():
    replies, stream = stashed([3])
    replies.callback_wloco(1)
    assert stream.getvalue() == "<w 3>\n"


def test_write_loco_reports_failure():
    replies, stream = stashed([3])
    replies.callback_wloco(-1)
    assert stream.getvalue() == "<w -1>\n"


def test_stash_is_exclusive_until_reply():
    replies, stream = stashed([1, 5])
    assert replies.busy is True
    assert replies.stash(io.StringIO(), [2, 6]) is False
    replies.callback_w(1)
    assert replies.busy is False
    assert replies.stash(io.StringIO(), [2, 6]) is True


def test_rejected_stash_keeps_first_command():
    replies, stream = stashed([1, 5])
    other = io.StringIO()
    replies.stash(other, [2, 6])
    replies.callback_w(1)
    assert stream.getvalue() == "<r 1 5>\n"
    assert other.getvalue() == ""


def test_callback_without_stash_raises():
    with pytest.raises(RuntimeError):
        AsyncReplies().callback_vbyte(1)