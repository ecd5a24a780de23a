import pytest

from dccstation.dcc import (
    DCC,
    FN_GROUP_1,
    FN_GROUP_2,
    FN_GROUP_3,
    FN_GROUP_4,
    FN_GROUP_5,
    update_group_flags,
)
from dccstation.distributor import CommandDistributor
from dccstation.packets import (
    accessory_packet,
    binary_state_packet,
    cv_bit_main_packet,
    cv_byte_main_packet,
    function_packet,
    speed_packet,
)
from dccstation.waveform import PowerMode, SimulatedDriver, Tracks


class Recorder:
    def __init__(self):
        self.lines = []

    def write(self, text):
        self.lines.append(text)

    @property
    def text(self):
        return "".join(self.lines)


class FakeClock:
    def millis(self):
        return 0

    def micros(self):
        return 0


@pytest.fixture
def station():
    tracks = Tracks(SimulatedDriver(1000), SimulatedDriver(1000), FakeClock())
    distributor = CommandDistributor()
    recorder = Recorder()
    distributor.add_serial(recorder)
    return DCC(tracks, distributor, 4), tracks, recorder


def sent(tracks):
    return tracks.main.pending_packet[:-1]


def drain(track):
    while track.packet_pending:
        track.next_bit()


@pytest.mark.parametrize("fn,mask", [
    (0, FN_GROUP_1), (4, FN_GROUP_1), (5, FN_GROUP_2), (8, FN_GROUP_2),
    (9, FN_GROUP_3), (12, FN_GROUP_3), (13, FN_GROUP_4), (20, FN_GROUP_4),
    (21, FN_GROUP_5), (28, FN_GROUP_5),
])
def test_update_group_flags_sets_group(fn, mask):
    assert update_group_flags(0, fn) == mask


def test_update_group_flags_keeps_existing():
    assert update_group_flags(FN_GROUP_1, 13) == FN_GROUP_1 | FN_GROUP_4


def test_set_throttle_sends_packet_and_broadcasts(station):
    dcc, tracks, rec = station
    dcc.set_throttle(3, 10, True)
    assert sent(tracks) == speed_packet(3, 0x80 | 10)
    assert rec.lines == [f"<l 3 0 {0x80 | 10} 0>\n"]
    assert dcc.get_throttle_speed(3) == 10
    assert dcc.get_throttle_direction(3) is True


def test_same_speed_broadcasts_once(station):
    dcc, _, rec = station
    dcc.set_throttle(3, 10, False)
    dcc.set_throttle(3, 10, False)
    assert len(rec.lines) == 1
    assert dcc.get_throttle_direction(3) is False


def test_speedsteps_28(station):
    dcc, tracks, _ = station
    dcc.set_global_speedsteps(28)
    dcc.set_throttle(3, 10, True)
    assert sent(tracks) == speed_packet(3, 0x80 | 10, 28)


def test_unknown_loco_defaults(station):
    dcc, _, _ = station
    assert dcc.get_throttle_speed(9) == 0
    assert dcc.get_throttle_direction(9) is True


def test_lookup_without_create(station):
    dcc, _, _ = station
    assert dcc.lookup_speed_table(5, False) is None
    slot = dcc.lookup_speed_table(5)
    assert dcc.lookup_speed_table(5, False) == slot


def test_table_full(station):
    dcc, tracks, rec = station
    for cab in (1, 2, 3, 4):
        dcc.set_throttle(cab, 5, True)
    rec.lines.clear()
    dcc.set_throttle(5, 5, True)
    assert dcc.lookup_speed_table(5) is None
    assert rec.lines == []
    assert sent(tracks) == speed_packet(5, 0x80 | 5)
    assert dcc.get_fn(5, 0) is None


def test_set_fn_and_get_fn(station):
    dcc, _, rec = station
    dcc.set_fn(3, 0, True)
    assert dcc.get_fn(3, 0) is True
    assert dcc.get_function_map(3) == 1
    assert len(rec.lines) == 1
    dcc.set_fn(3, 0, True)
    assert len(rec.lines) == 1
    dcc.set_fn(3, 0, False)
    assert dcc.get_fn(3, 0) is False
    assert len(rec.lines) == 2


def test_set_fn_high_sends_binary_state(station):
    dcc, tracks, _ = station
    dcc.set_fn(3, 100, True)
    assert sent(tracks) == binary_state_packet(3, 100, True)
    assert tracks.main.pending_repeats == 4
    assert dcc.lookup_speed_table(3, False) is None


def test_set_fn_ignores_cab_zero(station):
    dcc, tracks, rec = station
    dcc.set_fn(0, 1, True)
    assert rec.lines == []
    assert tracks.main.packet_pending is False


def test_change_fn_toggles(station):
    dcc, _, _ = station
    dcc.change_fn(3, 5)
    assert dcc.get_fn(3, 5) is True
    dcc.change_fn(3, 5)
    assert dcc.get_fn(3, 5) is False
    assert dcc.speed_table[dcc.lookup_speed_table(3)].group_flags == FN_GROUP_2


def test_get_fn_unknown(station):
    dcc, _, _ = station
    assert dcc.get_fn(0, 1) is None
    assert dcc.get_fn(3, 29) is None
    assert dcc.get_function_map(0) == 0


def test_accessory(station):
    dcc, tracks, _ = station
    dcc.set_accessory(1, 2, True)
    assert sent(tracks) == accessory_packet(1, 2, True)
    assert tracks.main.pending_repeats == 4
    with pytest.raises(ValueError):
        dcc.set_accessory(512, 0, True)


def test_cv_main(station):
    dcc, tracks, _ = station
    dcc.write_cv_byte_main(3, 1, 5)
    assert sent(tracks) == cv_byte_main_packet(3, 1, 5)
    dcc.write_cv_bit_main(3, 29, 5, True)
    assert sent(tracks) == cv_bit_main_packet(3, 29, 5, True)
    assert tracks.main.pending_repeats == 4


def test_emergency_stop_all_keeps_direction(station):
    dcc, tracks, _ = station
    dcc.set_throttle(3, 50, True)
    dcc.set_throttle(4, 20, False)
    dcc.set_throttle(0, 1, True)
    assert sent(tracks) == speed_packet(0, 0x80 | 1)
    assert dcc.get_throttle_speed(3) == 1
    assert dcc.get_throttle_direction(3) is True
    assert dcc.get_throttle_speed(4) == 1
    assert dcc.get_throttle_direction(4) is False


def test_forget_loco(station):
    dcc, tracks, _ = station
    dcc.set_throttle(3, 50, True)
    dcc.forget_loco(3)
    assert dcc.lookup_speed_table(3, False) is None
    assert sent(tracks) == speed_packet(3, 1)


def test_forget_all_locos(station):
    dcc, tracks, _ = station
    dcc.set_throttle(3, 50, True)
    dcc.set_throttle(4, 50, True)
    dcc.forget_all_locos()
    assert all(state.loco == 0 for state in dcc.speed_table)
    assert sent(tracks) == speed_packet(0, 1)


def test_reminders_skip_while_pending(station):
    dcc, tracks, _ = station
    dcc.set_throttle(3, 10, True)
    before = tracks.main.pending_packet
    dcc.issue_reminders()
    assert tracks.main.pending_packet == before
    assert dcc._loop_status == 0


def test_reminder_cycle(station):
    dcc, tracks, _ = station
    dcc.set_fn(3, 0, True)
    dcc.issue_reminders()
    assert sent(tracks) == speed_packet(3, 0x80)
    drain(tracks.main)
    dcc.issue_reminders()
    assert sent(tracks) == function_packet(3, 0, 0b1001_0000)
    drain(tracks.main)
    for _ in range(4):
        dcc.issue_reminders()
        assert tracks.main.packet_pending is False
    dcc.issue_reminders()
    assert sent(tracks) == speed_packet(3, 0x80)


def test_reminder_group_four(station):
    dcc, tracks, _ = station
    dcc.set_fn(3, 13, True)
    for _ in range(4):
        dcc.issue_reminders()
        drain(tracks.main)
    dcc.issue_reminders()
    assert sent(tracks) == function_packet(3, 222, 1)


def test_reminders_round_robin(station):
    dcc, tracks, _ = station
    dcc.set_throttle(3, 10, True)
    dcc.set_throttle(4, 20, False)
    drain(tracks.main)
    dcc.issue_reminders()
    assert sent(tracks) == speed_packet(3, 0x80 | 10)
    drain(tracks.main)
    for _ in range(5):
        dcc.issue_reminders()
        drain(tracks.main)
    dcc.issue_reminders()
    assert sent(tracks) == speed_packet(4, 20)


def test_display_cab_list(station):
    dcc, _, _ = station
    dcc.set_throttle(3, 10, True)
    out = Recorder()
    dcc.display_cab_list(out)
    assert out.text == "cab=3, speed=10, dir=F \nUsed=1, max=4\n"


def test_broadcast_power_main(station):
    dcc, tracks, rec = station
    tracks.main.set_power_mode(PowerMode.ON)
    dcc.broadcast_power()
    assert rec.text == "<p1 MAIN>\nPPA1\n"


def test_broadcast_power_join(station):
    dcc, tracks, rec = station
    tracks.main.set_power_mode(PowerMode.ON)
    tracks.prog.set_power_mode(PowerMode.ON)
    dcc.set_prog_track_sync_main(True)
    assert tracks.sync_main is True
    dcc.broadcast_power()
    assert rec.text == "<p1 JOIN>\nPPA1\n"


def test_prog_track_boost(station):
    dcc, tracks, _ = station
    dcc.set_prog_track_boost(True)
    assert tracks.boosted is True
    dcc.set_prog_track_boost(False)
    assert tracks.boosted is False