import math

import numpy as np

nbits = 8


class InputError(ValueError):
    """A line is missing, malformed, or was not captured long enough."""


class Transaction(object):
    """Bytes exchanged during one chip-select assertion.

    data_out_bytes and data_in_bytes have one entry per completed byte, and
    byte_intervals holds the (first rising edge, last rising edge) times of
    each of those bytes.
    """

    def __init__(self, data_out_bytes=b"", data_in_bytes=b"", byte_intervals=()):
        self.data_out_bytes = bytes(data_out_bytes)
        self.data_in_bytes = bytes(data_in_bytes)
        self.byte_intervals = list(byte_intervals)

    @property
    def start_time(self):
        if not self.byte_intervals:
            return math.nan
        return self.byte_intervals[0][0]

    @property
    def end_time(self):
        if not self.byte_intervals:
            return math.nan
        return self.byte_intervals[-1][1]

    def __len__(self):
        return len(self.data_out_bytes)

    def __eq__(self, other):
        if not isinstance(other, Transaction):
            return NotImplemented
        return (self.data_out_bytes == other.data_out_bytes
                and self.data_in_bytes == other.data_in_bytes
                and self.byte_intervals == other.byte_intervals)

    def __repr__(self):
        return "Transaction(data_out_bytes={!r}, data_in_bytes={!r}, start_time={}, end_time={})".format(
            self.data_out_bytes, self.data_in_bytes, self.start_time, self.end_time)


def check_line(name, line):
    """Get the transition array of a line, raising InputError if it's unusable."""
    if line is None:
        raise InputError("{}: line is missing".format(name))
    if not hasattr(line, "initial_level") or not hasattr(line, "transitions"):
        raise InputError("{}: expected initial_level and transitions".format(name))

    try:
        transitions = np.asarray(line.transitions, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InputError("{}: bad transitions: {}".format(name, e)) from e
    if transitions.ndim != 1:
        raise InputError("{}: transitions must be one-dimensional".format(name))
    if not np.all(np.isfinite(transitions)):
        raise InputError("{}: transitions must be finite".format(name))
    if np.any(np.diff(transitions) <= 0):
        raise InputError("{}: transitions must be strictly increasing".format(name))

    return transitions


class Cursor(object):
    """Tracks the level of one line while scanning forward in time."""

    def __init__(self, name, line):
        self.name = name
        self.transitions = check_line(name, line)
        self.level = bool(line.initial_level)
        self.index = 0
        self.end = getattr(line, "end", None)

    def check_time(self, t):
        if self.end is not None and t > self.end:
            raise InputError("{}: transitions exhausted at t={!r} (capture ends at {!r})".format(
                self.name, t, self.end))

    def advance(self, t):
        """Consume transitions up to and including t, yielding each new level."""
        self.check_time(t)
        while self.index < len(self.transitions) and self.transitions[self.index] <= t:
            self.index += 1
            self.level = not self.level
            yield self.level

    def level_at(self, t):
        for _ in self.advance(t):
            pass
        return self.level


def rising_edges(clock):
    """Times of the low to high transitions of the clock."""
    transitions = check_line("clock", clock)
    # transitions alternate direction, so rising edges are every other one
    first = 1 if clock.initial_level else 0
    return transitions[first::2]


def pack_bit(byte, bit, bit_index):
    """Set bit number bit_index (0 is the MSB) of byte."""
    return byte | ((1 if bit else 0) << (nbits - 1 - bit_index))


def decode(clock, enable, data_out, data_in):
    """Decode SPI transactions (rising edge sampling, MSB first, CS active low).

    Each argument has an initial_level and a strictly increasing sequence of
    transition times. Returns a list of Transaction in time order.

    A transaction starts when chip-select is asserted. Every release of
    chip-select clears the partially assembled byte, even when no complete
    byte was captured and nothing is emitted, so bits never carry over into
    the next transaction. Bits of a byte left incomplete at a release or at
    the end of the capture are dropped.
    """
    edges = rising_edges(clock)
    enable = Cursor("enable", enable)
    data_out = Cursor("data_out", data_out)
    data_in = Cursor("data_in", data_in)

    txns = []
    out_bytes, in_bytes, intervals = bytearray(), bytearray(), []
    out_byte = in_byte = bit_index = 0
    byte_start = None

    for t in edges.tolist():
        for deasserted in enable.advance(t):
            if not deasserted:
                continue
            if intervals:
                txns.append(Transaction(out_bytes, in_bytes, intervals))
            out_bytes, in_bytes, intervals = bytearray(), bytearray(), []
            out_byte = in_byte = bit_index = 0

        if enable.level:
            continue

        out_bit = data_out.level_at(t)
        in_bit = data_in.level_at(t)

        if bit_index == 0:
            byte_start = t

        out_byte = pack_bit(out_byte, out_bit, bit_index)
        in_byte = pack_bit(in_byte, in_bit, bit_index)
        bit_index += 1

        if bit_index == nbits:
            out_bytes.append(out_byte)
            in_bytes.append(in_byte)
            intervals.append((byte_start, t))
            out_byte = in_byte = bit_index = 0

    if intervals:
        txns.append(Transaction(out_bytes, in_bytes, intervals))

    return txns
