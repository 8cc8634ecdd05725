# c139link

A model of the Namco C139 serial interface controller. This is the chip that
links several arcade cabinets together for multi-player races. The frames the
chip would put on its serial line are carried over TCP between emulator
instances. The instances are arranged in a ring.

## Modules

### `c139link.fifo`

`RingBuffer(capacity=0x80000)` is a thread-safe circular byte buffer. It
always keeps one slot empty, so it holds at most `capacity - 1` bytes.

| Member | What it does |
| --- | --- |
| `len(buf)` | Number of bytes stored |
| `free()` | Space left |
| `write(data)` | Appends all of `data`, or raises `FifoOverflowError` |
| `read(size, peek=False)` | Returns exactly `size` bytes, or raises `FifoUnderflowError` |
| `consume(size)` | Drops up to `size` bytes |
| `clear()` | Empties the buffer |

### `c139link.link`

The TCP transport.

- `LinkConfig` is a frozen dataclass. Its fields are `localhost`, `localport`,
  `remotehost`, `remoteport` and `forward`. By default every address is
  `127.0.0.1:15112` and `forward` is off. `LinkConfig.link_id()` returns the
  identification byte for the configuration.
- `link_id(remotehost, remoteport)` returns that identification byte: the XOR
  of the characters of `"host:port"`.
- `station_config(index)` returns the loopback settings for a ring of three
  stations:

  | Station | Listens on | Connects to |
  | --- | --- | --- |
  | 0 | 15112 | 15113 |
  | 1 | 15113 | 15114 |
  | 2 | 15114 | 15112 |

  Station 2 also has `forward` set. Any other index listens on 15112 and
  connects to 15112.
- `NetworkLink(fifo_size=0x80000)` listens on the local address for incoming
  data and connects to the remote address for outgoing data. It does this in
  background threads and reconnects when a connection drops.
  - Call `start()` first. Then `reset(config)` drops any connections and begins
    listening and connecting again. `stop()` closes everything. The link can
    also be used as a context manager, which starts and stops it.
  - `connected()` is true when both directions are up. The `rx_state` and
    `tx_state` properties report each direction as a `LinkState`:
    `DISCONNECTED`, `CONNECTING` or `CONNECTED`.
  - `receive(size)` returns exactly `size` received bytes, or `b""` if that many
    have not arrived yet.
  - `send(data)` queues bytes for sending.
  - Both `receive` and `send` raise `LinkError` when their direction is not
    connected. `send` also raises it when the send buffer is full.
  - With `forward` set, every received chunk is also queued for sending.

### `c139link.c139`

`C139(link, config=None, irq_callback=None)` is the register model of the
controller. It has 0x2000 words of 9-bit RAM and eight registers, which are
mirrored over 16 offsets and named by the `Register` enum. The host drives it by
calling `tick()` once per 12 MHz clock cycle (`CLOCK_HZ`).

- Frames are 0x200 bytes long. Words are stored big-endian from byte 0, byte
  0x1fe holds the sender's identification byte, and byte 0x1ff holds the word
  count.
- The interrupt line is reported through `irq_callback(state)`. Its current
  state is available as `irq_asserted`.
- Bus access: `read_ram`, `write_ram`, `read_reg` and `write_reg`.
  - `read_reg(0)` adds bit 2 to the status when TX size is 0, and bit 3 when RX
    size is 0.
  - `read_reg(6)` always has bit 12 set.
  - Writing the status register acknowledges the interrupt.
  - Offsets outside RAM or the register file raise `IndexError`.
- `select_station(index)` switches to `station_config(index)` and recomputes
  `link_id`. Forwarding, once it has been enabled, stays enabled. The change
  takes effect on the next `reset()`.

### `c139link.legacy`

`LegacyC139(link, config=None, irq_callback=None)` is the earlier model. It has
the same interface as `C139`, but the host ticks it at 800 Hz (`TICK_HZ`).

- It uses fixed rules for modes 0x08, 0x09, 0x0c and 0x0d.
- It waits 0x200 ticks after a reset, and 0x100 ticks after a link error,
  before it exchanges data.
- Frame layout:
  - byte 0 is the sender's identification byte;
  - bytes 1–2 hold a little-endian word count;
  - the words follow from byte 3, low byte first;
  - byte 0x1ff is a relay counter.
- It relays frames from other stations around the ring itself. For that reason
  its `select_station` always turns the link's `forward` off.

## Usage

```python
from c139link.link import NetworkLink, station_config
from c139link.c139 import C139, Register

link = NetworkLink()
chip = C139(link, station_config(0), irq_callback=lambda state: print("irq", state))
chip.start()
chip.reset()

chip.write_ram(0x0000, 0x0042)
chip.write_reg(Register.TXOFFSET, 0x0000)
chip.write_reg(Register.TXSIZE, 1)
for _ in range(1000):
    chip.tick()

print(hex(chip.read_reg(Register.STATUS)))
chip.stop()
```

Run one instance per station, with station indexes 0, 1 and 2.

## What this package does not do

This is a library only. It has no command-line program. It does not emulate the
host CPU or the game boards, and it has no clock of its own: the embedding
program must call `tick()` at the right rate and map the RAM and register
accessors onto its bus. It does not save or restore the controller's state.

## Tests

```
pip install .[test]
pytest
```