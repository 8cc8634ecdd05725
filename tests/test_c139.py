import pytest

from c139link.c139 import C139, FRAME_SIZE, Register
from c139link.link import LinkConfig, LinkError, link_id


class FakeLink:
    def __init__(self, connected=True):
        self.connected = connected
        self.incoming = []
        self.sent = []
        self.configs = []
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    def reset(self, config):
        self.configs.append(config)

    def stop(self):
        self.stopped = True

    def receive(self, size):
        if not self.connected:
            raise LinkError("not connected")
        if self.incoming and len(self.incoming[0]) >= size:
            return self.incoming.pop(0)[:size]
        return b""

    def send(self, data):
        if not self.connected:
            raise LinkError("not connected")
        self.sent.append(bytes(data))
        return len(data)


@pytest.fixture
def setup():
    link = FakeLink()
    irqs = []
    device = C139(link, LinkConfig(), irqs.append)
    device.start()
    device.reset()
    return device, link, irqs


def make_frame(words):
    frame = bytearray(FRAME_SIZE)
    for index, word in enumerate(words):
        frame[2 * index : 2 * index + 2] = word.to_bytes(2, "big")
    frame[0x1FF] = len(words)
    return bytes(frame)


def test_reset_values(setup):
    device, link, _ = setup
    assert link.started
    assert link.configs == [LinkConfig()]
    assert device.read_reg(Register.MODE) == 0x000F
    assert device.read_reg(Register.RXOFFSET) == 0x1000
    assert device.read_reg(Register.STATUS) == 0x4 | 0x8


def test_reset_requires_start():
    device = C139(FakeLink())
    with pytest.raises(RuntimeError):
        device.reset()


def test_ram_is_nine_bits(setup):
    device, _, _ = setup
    device.write_ram(0x10, 0xFFFF)
    assert device.read_ram(0x10) == 0x01FF


def test_ram_mem_mask_keeps_other_bits(setup):
    device, _, _ = setup
    device.write_ram(3, 0x0100)
    device.write_ram(3, 0x00AB, 0x00FF)
    assert device.read_ram(3) & 0x0100
    assert device.read_ram(3) & 0x00FF == 0x00AB


def test_ram_out_of_range(setup):
    device, _, _ = setup
    with pytest.raises(IndexError):
        device.read_ram(0x2000)
    with pytest.raises(IndexError):
        device.write_ram(-1, 0)


def test_register_masks_and_mirror(setup):
    device, _, _ = setup
    device.write_reg(Register.TXOFFSET, 0xFFFF)
    assert device.read_reg(Register.TXOFFSET) == 0x1FFF
    device.write_reg(Register.CONTROL, 0xFF)
    assert device.read_reg(Register.CONTROL) == 0x0003
    device.write_reg(8 + Register.START, 0x02)
    assert device.read_reg(Register.START) == 0x02
    with pytest.raises(IndexError):
        device.read_reg(0x10)


def test_status_write_acknowledges_irq(setup):
    device, _, irqs = setup
    device.write_reg(Register.MODE, 0x00)
    device.tick()
    assert device.irq_asserted
    device.write_reg(Register.STATUS, 0x0F)
    assert not device.irq_asserted
    assert irqs[-1] is False
    assert device.read_reg(Register.STATUS) & 0x03 == 0


def test_idle_mode_fires_nothing(setup):
    device, _, irqs = setup
    for _ in range(10):
        device.tick()
    assert irqs == []


def test_irq_is_held_then_released(setup):
    device, _, irqs = setup
    device.write_reg(Register.MODE, 0x06)
    device.tick()
    assert irqs == [True]
    assert device.read_reg(Register.MODE) == 0x0F
    for _ in range(4):
        device.tick()
    assert irqs == [True, False]


def test_send_with_sync_bit(setup):
    device, link, _ = setup
    device.write_ram(0, 0x1AA)
    device.write_ram(1, 0x055)
    device.write_reg(Register.MODE, 0x09)
    device.write_reg(Register.TXSIZE, 2)
    for _ in range(23):
        device.tick()
    assert link.sent == []
    device.tick()
    assert len(link.sent) == 1
    frame = link.sent[0]
    assert len(frame) == FRAME_SIZE
    assert frame[0:4] == bytes([0x01, 0xAA, 0x00, 0x55])
    assert frame[0x1FE] == link_id("127.0.0.1", "15112")
    assert frame[0x1FF] == 2


def test_send_without_sync_bit_marks_last_word(setup):
    device, link, _ = setup
    device.write_ram(0, 0x1AA)
    device.write_ram(1, 0x055)
    device.write_reg(Register.MODE, 0x08)
    device.write_reg(Register.TXSIZE, 2)
    for _ in range(24):
        device.tick()
    assert link.sent[0][0:4] == bytes([0x00, 0xAA, 0x01, 0x55])


def test_txsize_cleared_after_send_delay(setup):
    device, link, _ = setup
    device.write_reg(Register.MODE, 0x0E)
    device.write_reg(Register.TXSIZE, 2)
    for _ in range(24):
        device.tick()
    assert len(link.sent) == 1
    assert device.read_reg(Register.TXSIZE) == 2
    for _ in range(24):
        device.tick()
    assert device.read_reg(Register.TXSIZE) == 0
    assert len(link.sent) == 1


def test_start_bit_halts_transmission(setup):
    device, link, _ = setup
    device.write_reg(Register.MODE, 0x0E)
    device.write_reg(Register.START, 0x01)
    device.write_reg(Register.TXSIZE, 1)
    for _ in range(40):
        device.tick()
    assert link.sent == []


def test_receive_fills_rx_area(setup):
    device, link, _ = setup
    device.write_reg(Register.MODE, 0x0E)
    device.write_reg(Register.RXSIZE, 4)
    link.incoming.append(make_frame([0x0042, 0x0123]))
    device.tick()
    assert device.read_ram(0x1000) == 0x0042
    assert device.read_ram(0x1001) == 0x0123
    assert device.read_reg(Register.RXSIZE) == 2
    assert device.read_reg(Register.RXOFFSET) == 0x1002
    assert device.read_reg(Register.STATUS) & 0x02


def test_receive_without_sync_bit_leaves_status(setup):
    device, link, _ = setup
    device.write_reg(Register.MODE, 0x0E)
    device.write_reg(Register.RXSIZE, 1)
    link.incoming.append(make_frame([0x0077]))
    device.tick()
    assert device.read_ram(0x1000) == 0x0077
    assert device.read_reg(Register.STATUS) & 0x02 == 0


def test_disconnected_link_is_ignored(setup):
    device, link, _ = setup
    link.connected = False
    device.write_reg(Register.MODE, 0x0E)
    device.write_reg(Register.RXSIZE, 3)
    device.write_reg(Register.TXSIZE, 1)
    for _ in range(30):
        device.tick()
    assert device.read_reg(Register.RXSIZE) == 3
    assert link.sent == []


def test_select_station_changes_id(setup):
    device, _, _ = setup
    device.select_station(1)
    assert device.config.localport == "15113"
    assert device.config.remoteport == "15114"
    assert device.link_id == link_id("127.0.0.1", "15114")


def test_forward_stays_enabled(setup):
    device, _, _ = setup
    device.select_station(2)
    assert device.config.forward
    device.select_station(0)
    assert device.config.forward
    assert device.config.remoteport == "15113"


def test_reset_uses_selected_station(setup):
    device, link, _ = setup
    device.select_station(0)
    device.reset()
    assert link.configs[-1].localport == "15112"
    assert link.configs[-1].remoteport == "15113"


def test_stop_releases_link(setup):
    device, link, _ = setup
    device.write_reg(Register.MODE, 0x00)
    device.tick()
    device.stop()
    assert link.stopped
    assert not device.irq_asserted