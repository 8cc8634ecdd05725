"""Register-level model of the C139 serial interface controller.

The controller owns 0x2000 words of 9-bit shared RAM and a small register
file.  Frames of 0x200 bytes are exchanged with the other boards through a
network link: each transmitted word is stored big-endian, byte 0x1fe holds
the sender's identification byte and byte 0x1ff the number of words.

The host is expected to call :meth:`C139.tick` at the 12 MHz clock rate.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from typing import Callable, Optional, Protocol

from .link import LinkConfig, LinkError, station_config

log = logging.getLogger(__name__)

RAM_WORDS = 0x2000
REGISTER_COUNT = 0x10
FRAME_SIZE = 0x200
RX_AREA = 0x1000
CLOCK_HZ = 12_000_000

_RAM_MASK = 0x01FF
_TX_MASK = 0x1FFF
_SYNC_BIT = 0x0100
_STATUS_SYNC = 0x02
_MODE_IDLE = 0x0F
_IRQ_HOLD = 4
_TICKS_PER_WORD = 12
_ID_POS = 0x1FE
_SIZE_POS = 0x1FF


class Register(enum.IntEnum):
    """Register numbers of the controller."""

    STATUS = 0
    MODE = 1
    CONTROL = 2
    START = 3
    RXSIZE = 4
    TXSIZE = 5
    RXOFFSET = 6
    TXOFFSET = 7


_WRITE_MASKS = {
    Register.STATUS: 0x000F,
    Register.MODE: 0x000F,
    Register.CONTROL: 0x0003,
    Register.START: 0x0003,
    Register.RXSIZE: 0x00FF,
    Register.TXSIZE: 0x00FF,
    Register.RXOFFSET: 0x1FFF,
    Register.TXOFFSET: 0x1FFF,
}


class _Link(Protocol):
    def start(self) -> None: ...

    def reset(self, config: LinkConfig) -> None: ...

    def stop(self) -> None: ...

    def receive(self, size: int) -> bytes: ...

    def send(self, data: bytes) -> int: ...


class C139:
    """The serial controller, driven by a network link."""

    def __init__(
        self,
        link: _Link,
        config: Optional[LinkConfig] = None,
        irq_callback: Optional[Callable[[bool], None]] = None,
    ) -> None:
        self._link = link
        self._config = config if config is not None else LinkConfig()
        self._irq_callback = irq_callback
        self._link_id = self._config.link_id()
        self._ram = [0] * RAM_WORDS
        self._reg = [0] * REGISTER_COUNT
        self._buffer = bytearray(FRAME_SIZE)
        self._irq_state = False
        self._irq_count = 0
        self._txblock = 0
        self._txdelay = 0
        self._rxdelay = 0
        self._running = False
        log.debug("ID byte = %02d", self._link_id)

    @property
    def config(self) -> LinkConfig:
        """The link configuration applied on the next :meth:`reset`."""
        return self._config

    @property
    def link_id(self) -> int:
        """Identification byte placed in every transmitted frame."""
        return self._link_id

    @property
    def irq_asserted(self) -> bool:
        """Current state of the interrupt line."""
        return self._irq_state

    def _set_irq(self, state: bool) -> None:
        self._irq_state = state
        if self._irq_callback is not None:
            self._irq_callback(state)

    def start(self) -> None:
        """Bring up the network link."""
        self._link.start()
        self._running = True

    def reset(self) -> None:
        """Clear RAM and registers and reconnect the link."""
        if not self._running:
            raise RuntimeError("controller has not been started")
        self._ram = [0] * RAM_WORDS
        self._reg = [0] * REGISTER_COUNT
        self._link.reset(self._config)
        self._reg[Register.MODE] = 0x000F
        self._reg[Register.RXOFFSET] = 0x1000
        self._irq_state = False
        self._irq_count = 0
        self._txblock = 0
        self._txdelay = 0
        self._rxdelay = 0

    def stop(self) -> None:
        """Shut the link down and release the interrupt line."""
        if self._running:
            self._link.stop()
            self._running = False
        self._irq_state = False
        self._txblock = 0
        self._txdelay = 0
        self._rxdelay = 0

    # bus access

    @staticmethod
    def _check(offset: int, size: int) -> None:
        if not 0 <= offset < size:
            raise IndexError(f"offset {offset:#x} out of range")

    def read_ram(self, offset: int) -> int:
        """Read one word of shared RAM."""
        self._check(offset, RAM_WORDS)
        return self._ram[offset]

    def write_ram(self, offset: int, data: int, mem_mask: int = 0xFFFF) -> None:
        """Write the bits of ``data`` selected by ``mem_mask``; RAM is 9 bits wide."""
        self._check(offset, RAM_WORDS)
        word = (self._ram[offset] & ~mem_mask) | (data & mem_mask)
        self._ram[offset] = word & _RAM_MASK

    def read_reg(self, offset: int) -> int:
        """Read a register, with the status and offset bits the chip adds."""
        self._check(offset, REGISTER_COUNT)
        result = self._reg[offset]
        if offset == Register.STATUS:
            if self._reg[Register.TXSIZE] == 0:
                result |= 0x4
            if self._reg[Register.RXSIZE] == 0:
                result |= 0x8
        elif offset == Register.RXOFFSET:
            # the receive offset never points below the receive area
            result = self._reg[offset] | 0x1000
        log.debug("reg_r[%02x] = %04x", offset, result)
        return result

    def write_reg(self, offset: int, data: int, mem_mask: int = 0xFFFF) -> None:
        """Write a register; registers are mirrored every eight and bit-limited.

        ``mem_mask`` is accepted for bus compatibility; whole registers are
        always written.
        """
        self._check(offset, REGISTER_COUNT)
        log.debug("reg_w[%02x] = %04x", offset, data)
        reg = Register(offset & 0x07)
        data &= _WRITE_MASKS[reg]
        self._reg[reg] = data
        if reg == Register.STATUS:
            # status reset doubles as interrupt acknowledge
            self._reg[Register.STATUS] = 0
            self._irq_count = 0
            self._set_irq(False)
        elif reg == Register.TXSIZE:
            self._txblock = data * _TICKS_PER_WORD

    def select_station(self, index: int) -> None:
        """Switch to the loopback addresses of station ``index``.

        Relaying, once enabled by station 2, stays enabled.
        """
        new = station_config(index)
        if self._config.forward and not new.forward:
            new = dataclasses.replace(new, forward=True)
        self._config = new
        self._link_id = new.link_id()
        log.debug("ID byte = %02d", self._link_id)

    # clocked behaviour

    def _mode_fires(self) -> bool:
        mode = self._reg[Register.MODE]
        rx_empty = self._reg[Register.RXSIZE] == 0
        tx_empty = self._reg[Register.TXSIZE] == 0
        sync = bool(self._reg[Register.STATUS] & _STATUS_SYNC)
        if mode <= 0x03:
            return rx_empty or tx_empty
        if mode <= 0x05:
            return rx_empty or sync
        if mode <= 0x07:
            return rx_empty
        if mode <= 0x0B:
            return tx_empty
        if mode <= 0x0D:
            return sync
        return False

    def tick(self) -> None:
        """Advance the controller by one 12 MHz clock cycle."""
        new_state = self._irq_state
        if self._irq_count > 0:
            self._irq_count -= 1
            if self._irq_count == 0:
                new_state = False

        if self._mode_fires():
            new_state = True
            self._reg[Register.MODE] = _MODE_IDLE

        if new_state != self._irq_state:
            self._irq_count = _IRQ_HOLD
            self._set_irq(new_state)

        if self._txblock > 0:
            self._txblock -= 1

        # keep sending from completing too fast
        if self._txdelay > 0:
            self._txdelay -= 1
            if self._txdelay == 0:
                self._reg[Register.TXSIZE] = 0

        # keep receiving from running too fast
        if self._rxdelay > 0:
            self._rxdelay -= 1

        if self._txblock == 0 and self._txdelay == 0:
            self._send_data()
        if self._rxdelay == 0:
            self._read_data()

    def _read_data(self) -> None:
        try:
            frame = self._link.receive(FRAME_SIZE)
        except LinkError:
            return
        if not frame:
            return
        self._buffer[: len(frame)] = frame

        rx_size = self._buffer[_SIZE_POS]
        rx_offset = self._reg[Register.RXOFFSET]
        log.debug("rx_offset = %04x, rx_size == %02x", rx_offset, rx_size)
        for index in range(rx_size):
            word = int.from_bytes(self._buffer[2 * index : 2 * index + 2], "big")
            self._ram[RX_AREA + ((rx_offset + index) & 0x0FFF)] = word
            if word & _SYNC_BIT:
                self._reg[Register.STATUS] |= _STATUS_SYNC

        self._reg[Register.RXSIZE] = (self._reg[Register.RXSIZE] - rx_size) & 0x00FF
        self._reg[Register.RXOFFSET] = (self._reg[Register.RXOFFSET] + rx_size) & 0x0FFF
        self._rxdelay = rx_size * _TICKS_PER_WORD

    def _send_data(self) -> None:
        if self._reg[Register.START] & 0x01:
            return
        tx_size = self._reg[Register.TXSIZE]
        if tx_size == 0:
            return

        tx_offset = self._reg[Register.TXOFFSET]
        log.debug(
            "tx_mode = %02x, tx_offset = %04x, tx_size == %02x",
            self._reg[Register.MODE],
            tx_offset,
            tx_size,
        )
        self._buffer[_ID_POS] = self._link_id
        self._buffer[_SIZE_POS] = tx_size

        use_sync_bit = bool(self._reg[Register.MODE] & 0x01)
        for index in range(tx_size):
            word = self._ram[(tx_offset + index) & _TX_MASK]
            if not use_sync_bit:
                word &= 0x00FF
            self._buffer[2 * index : 2 * index + 2] = word.to_bytes(2, "big")

        if not use_sync_bit:
            # mark the last word with bit 8
            self._buffer[2 * tx_size - 2] |= 0x01

        self._txdelay = tx_size * _TICKS_PER_WORD
        try:
            self._link.send(bytes(self._buffer))
        except LinkError:
            pass