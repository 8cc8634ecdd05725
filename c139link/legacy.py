"""Earlier model of the C139 serial controller.

This model predates the register-accurate one in :mod:`c139link.c139`.
It works with fixed per-mode rules, and it relays frames from other
stations around the ring itself.  Each frame is 0x200 bytes:

* byte 0 is the sender's identification byte;
* bytes 1-2 hold the little-endian word count;
* words follow from byte 3, low byte first;
* byte 0x1ff is a relay counter.

The host is expected to call :meth:`LegacyC139.tick` at 800 Hz.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Callable, Optional, Protocol

from .c139 import FRAME_SIZE, RAM_WORDS, REGISTER_COUNT, RX_AREA, Register
from .link import LinkConfig, LinkError, station_config

log = logging.getLogger(__name__)

TICK_HZ = 800

_LINK_DELAY = 0x0200
_RETRY_DELAY = 0x0100
_STATUS_RECEIVED = 0x06
_STATUS_RESET = 0x04
_HEADER = 3
_RELAY_POS = 0x1FF
# Words that fit between the header and the relay counter.
_MAX_WORDS = (FRAME_SIZE - _HEADER - 1) // 2


class _Link(Protocol):
    def start(self) -> None: ...

    def reset(self, config: LinkConfig) -> None: ...

    def stop(self) -> None: ...

    def connected(self) -> bool: ...

    def receive(self, size: int) -> bytes: ...

    def send(self, data: bytes) -> int: ...


class LegacyC139:
    """The earlier serial controller model, driven by a network link."""

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
        self._linktimer = 0
        self._txsize = 0
        self._txblock = 0
        self._reg_f3 = 0
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

    def _assert_irq(self) -> None:
        if self._irq_callback is not None:
            self._irq_callback(True)

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
        self._linktimer = _LINK_DELAY
        self._txsize = 0
        self._txblock = 0
        self._reg_f3 = 0

    def stop(self) -> None:
        """Shut the link down."""
        if self._running:
            self._link.stop()
            self._running = False

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
        """Write the bits of ``data`` selected by ``mem_mask``.

        The offset of the last write is remembered as the pending send size.
        """
        self._check(offset, RAM_WORDS)
        word = (self._ram[offset] & ~mem_mask) | (data & mem_mask)
        self._ram[offset] = word & 0xFFFF
        self._txsize = offset & 0xFF

    def read_reg(self, offset: int) -> int:
        """Read a register."""
        self._check(offset, REGISTER_COUNT)
        result = self._reg[offset]
        log.debug("reg_r[%02x] = %04x", offset, result)
        return result

    def write_reg(self, offset: int, data: int, mem_mask: int = 0xFFFF) -> None:
        """Write a register and apply the per-mode send triggers.

        ``mem_mask`` is accepted for bus compatibility; whole registers are
        always written.
        """
        self._check(offset, REGISTER_COUNT)
        data &= 0xFFFF
        log.debug("reg_w[%02x] = %04x", offset, data)
        self._reg[offset] = data

        # status reset / interrupt acknowledge
        if offset == Register.STATUS and data == 0:
            self._reg[offset] = _STATUS_RESET

        if offset == Register.MODE and data >= 0x000F:
            self._reg[Register.MODE] &= 0x000F

        # configuration mode: START selects byte or word addressing
        if self._reg[Register.MODE] == 0x0F and offset == Register.START:
            self._reg_f3 = data & 0xFF
            log.debug("reg_f3 = %02x", self._reg_f3)

        if offset == Register.MODE and data == 0x09 and self._txsize > 0:
            self._txblock = 0
        if offset == Register.CONTROL and data == 0x03:
            self._txblock = 0
        if offset == Register.TXSIZE and data > 0:
            self._txblock = 0

        if self._reg[Register.MODE] == 0x08 and offset == Register.CONTROL:
            if data == 1:
                self._txsize = 0
            if data == 3:
                self._reg[Register.TXSIZE] = (self._txsize + 2) & 0xFFFF

    def select_station(self, index: int) -> None:
        """Switch to the loopback addresses of station ``index``.

        This model relays frames itself, so the link never forwards.
        """
        self._config = dataclasses.replace(station_config(index), forward=False)
        self._link_id = self._config.link_id()
        log.debug("ID byte = %02d", self._link_id)

    # clocked behaviour

    def tick(self) -> None:
        """Advance the controller by one 800 Hz step."""
        if self._linktimer > 0:
            self._linktimer -= 1
        if self._linktimer != 0 or not self._link.connected():
            return

        mode = self._reg[Register.MODE]
        if mode == 0x08:
            # send when CONTROL is 3; TXSIZE is kept after sending
            self._read_data()
            if self._reg[Register.CONTROL] == 0x03 and self._reg[Register.TXSIZE] > 0:
                self._send_data()
        elif mode == 0x09:
            # send automatically up to the sync bit
            self._read_data()
            self._send_data()
        elif mode == 0x0C:
            # send by register; TXSIZE is cleared after sending
            self._read_data()
            if self._reg[Register.CONTROL] == 0x03 and self._reg[Register.START] == 0:
                self._send_data()
        elif mode == 0x0D:
            self._read_data()
            if self._reg[Register.START] == 0 and self._reg[Register.TXSIZE] > 0:
                self._send_data()

    def _read_data(self) -> None:
        if self._reg[Register.STATUS] == _STATUS_RECEIVED:
            self._assert_irq()
            return
        if not self._read_frame():
            return

        buf = self._buffer
        mode = self._reg[Register.MODE]
        counting = mode == 0x09 and (self._reg_f3 & 0x02) == 0x02
        own = buf[0] == self._link_id
        if own and counting:
            buf[0x07] = buf[_RELAY_POS]

        rx_size = buf[2] << 8 | buf[1]
        rx_offset = self._reg[Register.RXOFFSET]
        log.debug("rx_offset = %04x, rx_size == %02x", rx_offset, rx_size)
        for index in range(min(rx_size, _MAX_WORDS)):
            pos = _HEADER + 2 * index
            word = buf[pos + 1] << 8 | buf[pos]
            self._ram[RX_AREA + ((rx_offset + index) & 0x0FFF)] = word

        if not own:
            if counting:
                buf[_RELAY_POS] = (buf[_RELAY_POS] + 1) & 0xFF
            self._send_frame()
        elif mode == 0x09:
            self._reg[Register.TXSIZE] = 0

        self._reg[Register.STATUS] = _STATUS_RECEIVED
        if mode != 0x0D:
            self._reg[Register.RXSIZE] += rx_size
        else:
            self._reg[Register.RXSIZE] -= rx_size
        self._reg[Register.RXOFFSET] += rx_size
        self._reg[Register.RXSIZE] &= 0x0FFF
        self._reg[Register.RXOFFSET] &= 0x0FFF

        self._assert_irq()

    def _read_frame(self) -> bool:
        try:
            frame = self._link.receive(FRAME_SIZE)
        except LinkError:
            self._linktimer = _RETRY_DELAY
            self._txblock = 0
            return False
        if not frame:
            return False
        self._buffer[: len(frame)] = frame[:FRAME_SIZE]
        return True

    def _send_data(self) -> None:
        if self._txblock == 0x01:
            return
        if self._reg[Register.STATUS] == _STATUS_RECEIVED:
            return

        mode = self._reg[Register.MODE]
        tx_offset = self._reg[Register.TXOFFSET]
        if (self._reg_f3 & 0x02) == 0x02:
            tx_offset >>= 1  # offset counts bytes
        # mode 0x0d may point the transmit offset into the receive area
        tx_mask = 0x1FFF if mode == 0x0D else 0x0FFF

        tx_size = self._reg[Register.TXSIZE]
        if mode == 0x09:
            tx_size = self._find_sync_bit(tx_offset, tx_mask)
            if tx_size == 0x01:
                self._reg[Register.TXOFFSET] = (self._reg[Register.TXOFFSET] + 0x100) & 0xFFFF
                tx_size = 0

        log.debug("tx_offset = %04x, tx_size == %02x", tx_offset, tx_size)
        if tx_size == 0:
            return

        buf = self._buffer
        buf[0] = self._link_id
        buf[1] = tx_size & 0xFF
        buf[2] = (tx_size >> 8) & 0xFF
        buf[_RELAY_POS] = 1

        words = min(tx_size, _MAX_WORDS)
        for index in range(words):
            pos = _HEADER + 2 * index
            buf[pos] = self._ram[(tx_offset + index) & tx_mask] & 0xFF
            buf[pos + 1] = 0
        # mark the last word with bit 8
        buf[_HEADER + 2 * words - 1] |= 0x01

        if mode in (0x08, 0x09):
            self._txblock = 0x01
        elif mode in (0x0C, 0x0D):
            self._reg[Register.TXSIZE] = 0
            self._txblock = 0x01

        self._txsize = 0
        self._send_frame()

    def _send_frame(self) -> None:
        try:
            self._link.send(bytes(self._buffer))
        except LinkError:
            self._linktimer = _RETRY_DELAY
            self._txblock = 0

    def _find_sync_bit(self, tx_offset: int, tx_mask: int) -> int:
        if (self._ram[tx_offset & tx_mask] & 0x01FF) == 0x01FF:
            return 0
        # search the data area in eight windows for a word with bit 8 set
        for window in range(8):
            sub_offset = window * 0x80
            for index in range(0x100):
                if self._ram[(tx_offset + sub_offset + index) & tx_mask] & 0x0100:
                    if window > 0:
                        self._reg[Register.TXOFFSET] = (
                            self._reg[Register.TXOFFSET] + sub_offset * 2
                        ) & 0xFFFF
                    return index + 1
        return 0