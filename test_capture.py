import datetime
import io
import json
import struct
import zipfile

import numpy as np
import pytest

import capture
from capture import CaptureError, DigitalChannel, AnalogChannel


def digital_bin(initial_state, begin, end, transitions, magic=b"<SALEAE>", version=0, file_type=0):
    header = struct.pack("<8siiIddQ", magic, version, file_type, initial_state, begin, end, len(transitions))
    return header + struct.pack("<{}d".format(len(transitions)), *transitions)


def analog_bin(begin, sample_rate, downsample, samples):
    header = struct.pack("<8siidQQQ", b"<SALEAE>", 0, 1, begin, sample_rate, downsample, len(samples))
    return header + struct.pack("<{}d".format(len(samples)), *samples)


def sal(files, meta):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("meta.json", json.dumps(meta))
        for name, data in files.items():
            zf.writestr(name, data)
    buf.seek(0)
    return buf


def test_header_sizes():
    assert capture.digital_header.itemsize == 44
    assert capture.analog_header.itemsize == 48


def test_read_digital():
    data = digital_bin(1, -0.5, 2.5, [0.0, 0.25, 1.5])

    channel = capture.read_digital(io.BytesIO(data))

    assert channel.initial_level is True
    assert channel.begin == -0.5
    assert channel.end == 2.5
    assert list(channel.transitions) == [0.0, 0.25, 1.5]
    assert channel.level_at(0.1) is False
    assert channel.level_at(0.25) is True
    assert channel.level_at(-1.0) is True


def test_read_digital_no_transitions():
    channel = capture.read_digital(io.BytesIO(digital_bin(0, 0.0, 1.0, [])))

    assert channel.initial_level is False
    assert len(channel) == 0


def test_read_analog():
    data = analog_bin(0.0, 1000000, 10, [0.0, 3.3, 1.65])

    channel = capture.read_analog(io.BytesIO(data))

    assert channel.sample_rate == 1000000
    assert channel.downsample == 10
    assert channel.effective_rate == 100000
    assert list(channel.samples) == [0.0, 3.3, 1.65]


def test_write_digital():
    channel = DigitalChannel(True, [1.0, 2.0], begin=0.0, end=3.0)
    f = io.BytesIO()

    capture.write_digital(channel, f)

    assert f.getvalue() == digital_bin(1, 0.0, 3.0, [1.0, 2.0])


def test_write_analog():
    channel = AnalogChannel([0.5, -0.5], 50000, begin=1.0, downsample=2)
    f = io.BytesIO()

    capture.write_analog(channel, f)

    assert f.getvalue() == analog_bin(1.0, 50000, 2, [0.5, -0.5])


def test_bad_magic():
    with pytest.raises(CaptureError, match="invalid file header"):
        capture.read_digital(io.BytesIO(digital_bin(0, 0.0, 1.0, [], magic=b"<LOGIC!>")))


def test_bad_version():
    with pytest.raises(CaptureError, match="version 0, got 1"):
        capture.read_digital(io.BytesIO(digital_bin(0, 0.0, 1.0, [], version=1)))


def test_type_mismatch():
    with pytest.raises(CaptureError, match="expected 0, got 1"):
        capture.read_digital(io.BytesIO(analog_bin(0.0, 1000, 1, [1.0])))

    with pytest.raises(CaptureError, match="expected 1, got 0"):
        capture.read_analog(io.BytesIO(digital_bin(0, 0.0, 1.0, [0.5])))


def test_truncated():
    data = digital_bin(0, 0.0, 1.0, [0.1, 0.2])

    with pytest.raises(CaptureError, match="truncated header"):
        capture.read_digital(io.BytesIO(data[:20]))

    with pytest.raises(CaptureError, match="truncated transitions"):
        capture.read_digital(io.BytesIO(data[:-4]))


def test_huge_count():
    header = struct.pack("<8siiIddQ", b"<SALEAE>", 0, 0, 0, 0.0, 1.0, 2**63)

    with pytest.raises(CaptureError, match="transitions count 9223372036854775808 too large"):
        capture.read_digital(io.BytesIO(header))

    header = struct.pack("<8siidQQQ", b"<SALEAE>", 0, 1, 0.0, 1000, 1, 2**64 - 1)
    with pytest.raises(CaptureError, match="samples count"):
        capture.read_analog(io.BytesIO(header))


def test_zero_downsample():
    with pytest.raises(CaptureError, match="downsample"):
        capture.read_analog(io.BytesIO(analog_bin(0.0, 1000, 0, [])))


def test_read_capture():
    meta = {
        "version": 15,
        "data": {"captureStartTime": {"unixTimeMilliseconds": 1500, "fractionalMilliseconds": 0.0}},
        "binData": [
            {"type": "Digital", "index": 3, "file": "./digital-3.bin"},
            {"type": "Analog", "index": 0, "file": "analog-0.bin"},
        ],
    }
    f = sal({
        "digital-3.bin": digital_bin(1, 0.0, 1.0, [0.5]),
        "analog-0.bin": analog_bin(0.0, 100, 1, [1.0, 2.0]),
    }, meta)

    cap = capture.read_capture(f)

    assert cap.start == datetime.datetime(1970, 1, 1, 0, 0, 1, 500000, tzinfo=datetime.timezone.utc)
    assert list(cap.digital) == [3]
    assert cap.digital[3].initial_level is True
    assert list(cap.digital[3].transitions) == [0.5]
    assert np.array_equal(cap.analog[0].samples, [1.0, 2.0])


def test_read_capture_file(tmp_path):
    meta = {"version": 15, "binData": [{"type": "Digital", "index": 0, "file": "digital-0.bin"}]}
    path = tmp_path / "capture.sal"
    path.write_bytes(sal({"digital-0.bin": digital_bin(0, 0.0, 1.0, [])}, meta).getvalue())

    cap = capture.read_capture_file(str(path))

    assert list(cap.digital) == [0]
    assert cap.analog == {}


def test_capture_errors():
    with pytest.raises(CaptureError, match="not a .sal capture"):
        capture.read_capture(io.BytesIO(b"not a zip"))

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("digital-0.bin", digital_bin(0, 0.0, 1.0, []))
    buf.seek(0)
    with pytest.raises(CaptureError, match="meta.json not found"):
        capture.read_capture(buf)

    with pytest.raises(CaptureError, match="no version"):
        capture.read_capture(sal({}, {"binData": []}))

    with pytest.raises(CaptureError, match="unknown binary data type 'Protocol'"):
        capture.read_capture(sal({}, {"version": 15, "binData": [{"type": "Protocol", "index": 0, "file": "x"}]}))

    with pytest.raises(CaptureError, match="missing Digital binary data 'digital-0.bin'"):
        capture.read_capture(sal({}, {"version": 15, "binData": [{"type": "Digital", "index": 0, "file": "digital-0.bin"}]}))

    with pytest.raises(CaptureError, match="invalid captureStartTime"):
        capture.read_capture(sal({}, {"version": 15, "data": [], "binData": []}))

    with pytest.raises(CaptureError, match="expected an object"):
        capture.read_capture(sal({}, [1, 2]))

    with pytest.raises(CaptureError, match="invalid binData entry"):
        capture.read_capture(sal({}, {"version": 15, "binData": [{"type": "Digital", "index": 0}]}))

    with pytest.raises(CaptureError, match="invalid binData entry"):
        capture.read_capture(sal({}, {"version": 15, "binData": [{"type": "Digital", "file": "digital-0.bin"}]}))

    with pytest.raises(CaptureError, match="invalid binData entry"):
        capture.read_capture(sal({}, {"version": 15, "binData": ["digital-0.bin"]}))

    meta = {"version": 15, "binData": [{"type": "Digital", "index": 0, "file": "digital-0.bin"}]}
    with pytest.raises(CaptureError, match="reading digital file 'digital-0.bin': file type mismatch"):
        capture.read_capture(sal({"digital-0.bin": analog_bin(0.0, 1, 1, [])}, meta))


def test_unknown_bounds():
    f = io.BytesIO()
    capture.write_digital(DigitalChannel(False, [1.0]), f)
    f.seek(0)

    channel = capture.read_digital(f)

    assert channel.begin is None
    assert channel.end is None
    assert list(channel.transitions) == [1.0]
