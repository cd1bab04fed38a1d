from collections import namedtuple

import numpy as np

func_bus = 0b00
func_backplane = 0b01
func_wlan = 0b10
func_dma2 = 0b11

func_names = {
    func_bus: "bus",
    func_backplane: "backplane",
    func_wlan: "wlan",
    func_dma2: "dma2",
}


class Command(namedtuple("Command", ["write", "autoinc", "fn", "addr", "size"])):
    """A CYW43439 gSPI command word."""

    __slots__ = ()

    @property
    def fn_name(self):
        return func_names.get(self.fn, "unknown")

    def __str__(self):
        return "addr={:#7x}  fn={:>9}  sz={:4d} write={!s:>5} autoinc={!s:>5}".format(
            self.addr, self.fn_name, self.size, self.write, self.autoinc)


def command_from_bytes(b):
    """Split the data-out bytes of a transaction into command and payload."""
    if len(b) < 4:
        raise ValueError("need at least 4 bytes for a command, got {}".format(len(b)))

    word = int(np.frombuffer(bytes(b[:4]), dtype="<u4")[0])
    cmd = Command(
        write=bool(word & (1 << 31)),
        autoinc=bool(word & (1 << 30)),
        fn=(word >> 28) & 0b11,
        addr=(word >> 11) & 0x1ffff,
        size=word & ((1 << 11) - 1),
    )

    data = bytes(b[4:])
    # backplane reads are preceded by 4 bytes of padding
    if cmd.fn == func_backplane and not cmd.write and len(data) > 4:
        data = data[4:]

    return cmd, data


def group_repeats(txns):
    """Collapse consecutive identical commands, yielding (count, command, data)."""
    last = None
    count = 0
    for txn in txns:
        current = command_from_bytes(txn.data_out_bytes)
        if current == last:
            count += 1
            continue

        if last is not None:
            yield (count,) + last
        last = current
        count = 1

    if last is not None:
        yield (count,) + last


def to_lines(groups):
    """Format grouped commands, one per line."""
    for count, cmd, data in groups:
        yield "cmd×{:2d} {} data={}\n".format(count, cmd, "0x" + data.hex() if data else "-")
