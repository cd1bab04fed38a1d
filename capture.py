"""Read and write Saleae Logic 2 binary captures.

Digital channels are stored as the level before the capture starts plus the
time (in seconds) of every transition. Analog channels are stored as a
block of voltage readings. A .sal file is a zip holding one binary file per
channel and a meta.json listing them.
"""
import datetime
import json
import math
import sys
import zipfile

import numpy as np

magic = b"<SALEAE>"
version = 0

type_digital = 0
type_analog = 1

file_header = [
    ("id", "S8"),
    ("version", "<i4"),
    ("type", "<i4"),
]

digital_header = np.dtype(file_header + [
    ("initial_state", "<u4"),
    ("begin", "<f8"),
    ("end", "<f8"),
    ("num_transitions", "<u8"),
])

analog_header = np.dtype(file_header + [
    ("begin", "<f8"),
    ("sample_rate", "<u8"),
    ("downsample", "<u8"),
    ("num_samples", "<u8"),
])

sample_dtype = np.dtype("<f8")


class CaptureError(ValueError):
    """A capture file could not be parsed."""


class DigitalChannel(object):
    """Transitions of one digital line."""

    def __init__(self, initial_level, transitions, begin=None, end=None):
        self.initial_level = bool(initial_level)
        self.transitions = np.asarray(transitions, dtype=np.float64)
        self.begin = begin
        self.end = end

    def level_at(self, t):
        n = np.searchsorted(self.transitions, t, side="right")
        return self.initial_level ^ bool(n % 2)

    def __len__(self):
        return len(self.transitions)

    def __repr__(self):
        return "DigitalChannel(initial_level={}, {} transitions, begin={}, end={})".format(
            self.initial_level, len(self.transitions), self.begin, self.end)


class AnalogChannel(object):
    """Voltage readings of one analog line."""

    def __init__(self, samples, sample_rate, begin=0.0, downsample=1):
        self.samples = np.asarray(samples, dtype=np.float64)
        self.sample_rate = int(sample_rate)
        self.begin = begin
        self.downsample = int(downsample)

    @property
    def effective_rate(self):
        """Rate of the stored samples, in Hz."""
        return self.sample_rate / self.downsample

    def __len__(self):
        return len(self.samples)


class Capture(object):

    def __init__(self, start, digital, analog):
        self.start = start
        self.digital = digital
        self.analog = analog


def read_exact(fp, n, what):
    data = fp.read(n)
    if len(data) != n:
        raise CaptureError("truncated {}: expected {} bytes, got {}".format(what, n, len(data)))
    return data


def read_header(fp, dtype, expect_type):
    header = np.frombuffer(read_exact(fp, dtype.itemsize, "header"), dtype=dtype)[0]

    if header["id"] != magic:
        raise CaptureError("invalid file header {!r}".format(bytes(header["id"])))
    if header["version"] != version:
        raise CaptureError("expected file header version {}, got {}".format(version, header["version"]))
    if header["type"] != expect_type:
        raise CaptureError("file type mismatch, expected {}, got {}".format(expect_type, header["type"]))

    return header


def read_samples(fp, n, what):
    if n > sys.maxsize // sample_dtype.itemsize:
        raise CaptureError("{} count {} too large".format(what, n))
    data = read_exact(fp, n * sample_dtype.itemsize, what)
    return np.frombuffer(data, dtype=sample_dtype).astype(np.float64)


def bound(t):
    t = float(t)
    return None if math.isnan(t) else t


def read_digital(fp):
    """Read a digital binary file from a file-like object."""
    header = read_header(fp, digital_header, type_digital)
    transitions = read_samples(fp, int(header["num_transitions"]), "transitions")

    return DigitalChannel(header["initial_state"] != 0,
                          transitions,
                          begin=bound(header["begin"]),
                          end=bound(header["end"]))


def read_analog(fp):
    """Read an analog binary file from a file-like object."""
    header = read_header(fp, analog_header, type_analog)
    if header["downsample"] == 0:
        raise CaptureError("analog downsample factor is zero")
    samples = read_samples(fp, int(header["num_samples"]), "samples")

    return AnalogChannel(samples,
                         int(header["sample_rate"]),
                         begin=float(header["begin"]),
                         downsample=int(header["downsample"]))


def write_digital(channel, fp):
    """Write a digital binary file; unknown begin/end are stored as NaN."""
    transitions = np.asarray(channel.transitions, dtype=sample_dtype)
    begin = math.nan if channel.begin is None else channel.begin
    end = math.nan if channel.end is None else channel.end

    header = np.zeros(1, dtype=digital_header)
    header["id"] = magic
    header["version"] = version
    header["type"] = type_digital
    header["initial_state"] = 1 if channel.initial_level else 0
    header["begin"] = begin
    header["end"] = end
    header["num_transitions"] = len(transitions)

    fp.write(header.tobytes())
    fp.write(transitions.tobytes())


def write_analog(channel, fp):
    samples = np.asarray(channel.samples, dtype=sample_dtype)

    header = np.zeros(1, dtype=analog_header)
    header["id"] = magic
    header["version"] = version
    header["type"] = type_analog
    header["begin"] = channel.begin
    header["sample_rate"] = channel.sample_rate
    header["downsample"] = channel.downsample
    header["num_samples"] = len(samples)

    fp.write(header.tobytes())
    fp.write(samples.tobytes())


def read_digital_file(path):
    with open(path, "rb") as f:
        return read_digital(f)


def read_analog_file(path):
    with open(path, "rb") as f:
        return read_analog(f)


def capture_start(meta):
    """Get the capture start time from meta.json as a UTC datetime."""
    try:
        start = meta.get("data", {}).get("captureStartTime", {})
        ms = start.get("unixTimeMilliseconds", 0) + start.get("fractionalMilliseconds", 0.0)
        return datetime.datetime.fromtimestamp(ms / 1000.0, tz=datetime.timezone.utc)
    except (AttributeError, TypeError, ValueError, OverflowError, OSError) as e:
        raise CaptureError("invalid captureStartTime in meta.json: {}".format(e)) from e


def read_capture(fp):
    """Read a .sal capture from a seekable file-like object or path."""
    try:
        zf = zipfile.ZipFile(fp)
    except zipfile.BadZipFile as e:
        raise CaptureError("not a .sal capture: {}".format(e)) from e

    with zf:
        try:
            meta = json.loads(zf.read("meta.json"))
        except KeyError:
            raise CaptureError("meta.json not found") from None
        except ValueError as e:
            raise CaptureError("invalid meta.json: {}".format(e)) from e

        if not isinstance(meta, dict):
            raise CaptureError("invalid meta.json: expected an object")
        if not meta.get("version"):
            raise CaptureError("meta.json has no version")

        digital = {}
        analog = {}
        for bindata in meta.get("binData", []):
            if not isinstance(bindata, dict) or "file" not in bindata or "index" not in bindata:
                raise CaptureError("invalid binData entry {!r}".format(bindata))
            kind = bindata.get("type")
            if kind == "Digital":
                read, channels = read_digital, digital
            elif kind == "Analog":
                read, channels = read_analog, analog
            else:
                raise CaptureError("unknown binary data type {!r}".format(kind))

            filename = str(bindata["file"]).lstrip("./")
            try:
                member = zf.open(filename)
            except KeyError:
                raise CaptureError("missing {} binary data {!r}".format(kind, filename)) from None

            with member:
                try:
                    channels[bindata["index"]] = read(member)
                except CaptureError as e:
                    raise CaptureError("reading {} file {!r}: {}".format(kind.lower(), filename, e)) from e

    return Capture(capture_start(meta), digital, analog)


def read_capture_file(path):
    with open(path, "rb") as f:
        return read_capture(f)
