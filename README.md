# dccstation

Building blocks for a software model of a DCC (Digital Command Control) model
railway command station. The package builds NMRA packets for locomotives and
accessories and generates the bit-level track waveform. It watches track
current for overloads and detects decoder acknowledgements. It also keeps
locomotive speed and function reminders, broadcasts state changes to
clients, and parses the parameters of the `<...>` text command protocol.

No hardware is needed. Track drivers can be simulated with
`SimulatedDriver`, and the clock is any object with `millis()` and
`micros()` methods.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

- `dccstation.packets`: pure functions that return packet payloads without
  the checksum. They are `speed_packet`, `function_packet`,
  `binary_state_packet`, `accessory_packet`, `cv_byte_main_packet`,
  `cv_bit_main_packet`, `address_bytes`, and the CV helpers `cv1` and `cv2`.
  `accessory_packet` raises `ValueError` for an address beyond nine bits or a
  sub-address beyond two.
- `dccstation.waveform`:
  - `DCCWaveform` is the packet transmitter and power/overload monitor for
    one track. It provides `schedule_packet`, `next_bit`,
    `check_power_overload` and ACK detection with `set_ack_baseline`,
    `set_ack_pending`, `check_ack` and `get_ack`.
  - `Tracks` holds the main and programming tracks. `interrupt()` advances
    both waveforms by one half-bit tick, and `loop()` runs the overload
    checks.
  - `PowerMode` and `WaveState` are enums of the power modes and wave states.
  - `TrackDriver` is the abstract driver interface. `SimulatedDriver` and
    `SystemClock` let the station run without hardware.
- `dccstation.dcc`:
  - `DCC` holds the locomotive speed table. It provides throttle and
    function control (`set_throttle`, `set_fn`, `change_fn`, `get_fn`,
    `get_function_map`), accessories, programming-on-main writes,
    `forget_loco` and `forget_all_locos`.
  - `issue_reminders()` sends one reminder packet each time it is called.
  - `display_cab_list(stream)` writes the table of known cabs.
- `dccstation.distributor`: `CommandDistributor` sends loco, sensor,
  turnout, power and text broadcasts to serial streams. When its `network`
  flag is set, it also sends them to attached network clients (`ClientType`).
- `dccstation.keywords`:
  - `split_values(command, use_hex)` parses command parameters into signed
    16-bit values.
  - `keyword_hash(word)` gives the value a keyword such as `MAIN` takes as a
    parameter.
- `dccstation.accessories`:
  - `LayoutObjects` is a registry of turnouts, outputs and sensors.
  - `parse_turnout`, `parse_output` and `parse_sensor` carry out `<T>`, `<Z>`
    and `<S>` commands.
  - `parse_function` carries out `<f>` commands given in DCC function-group
    form.
- `dccstation.replies`: `AsyncReplies` stashes a pending programming command
  and formats its reply (`<r ...>`, `<v ...>`, `<w ...>`) when a result
  arrives.
- `dccstation.bitset`: `MiniBitSet`, a fixed-size packed bit set.

## Example

```python
import io

from dccstation.dcc import DCC
from dccstation.distributor import CommandDistributor
from dccstation.keywords import keyword_hash, split_values
from dccstation.packets import speed_packet
from dccstation.waveform import SimulatedDriver, Tracks

tracks = Tracks(SimulatedDriver(1000), SimulatedDriver(1000))
distributor = CommandDistributor()
serial = io.StringIO()
distributor.add_serial(serial)
dcc = DCC(tracks, distributor)

dcc.set_throttle(3, 50, True)   # loco 3, forward, 128-step speed 50
print(serial.getvalue())        # <l 3 0 178 0>

print(speed_packet(3, 0x80 | 50).hex())   # 033fb2
print(split_values("t 3 50 1"))           # [3, 50, 1]
print(keyword_hash("MAIN"))               # 11339
```

## What this package does not do

This package contains components, not a finished command station. It has
none of the following:

- A command-line program.
- A parser that dispatches complete `<...>` commands to these components.
- Reading or writing CVs and loco addresses on the programming track. The
  waveform can detect acknowledgements, but nothing runs programming
  sequences with them.
- Handling of diagnostic commands.