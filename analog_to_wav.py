import sys

import numpy as np
import soundfile as sf

import capture


def load_channel(args):
    if args.sal is None:
        return capture.read_analog_file(args.infile)

    cap = capture.read_capture_file(args.sal)
    try:
        return cap.analog[int(args.infile)]
    except (ValueError, KeyError):
        raise capture.CaptureError("no analog channel {!r} in {}".format(args.infile, args.sal)) from None


def to_wav(channel, outfile, scale=None):
    """Write an analog channel to a 32 bit float wav file.

    Voltages are divided by scale, which defaults to the peak magnitude so
    that the output fits in [-1, 1].
    """
    samples = channel.samples
    if scale is None:
        scale = np.max(np.abs(samples)) if len(samples) else 1.0
    if scale == 0:
        scale = 1.0

    rate = int(round(channel.effective_rate))
    with sf.SoundFile(outfile, 'w', rate, 1, subtype="FLOAT") as wav_file:
        wav_file.write((samples / scale).astype(np.float32))

    return rate, scale


def parse_args(argv=None):
    import argparse
    parser = argparse.ArgumentParser(description="Export a Saleae analog channel as a wav file.")
    parser.add_argument("infile", help="analog .bin file, or channel index with --sal")
    parser.add_argument("outfile")
    parser.add_argument("-s", "--sal", help="read the channel from this .sal capture")
    parser.add_argument("--scale", type=float, help="volts at full scale (default: peak)")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    try:
        channel = load_channel(args)
        rate, scale = to_wav(channel, args.outfile, args.scale)
    except (OSError, ValueError, RuntimeError) as e:
        # soundfile reports libsndfile failures as RuntimeError
        print("error: {}".format(e), file=sys.stderr)
        return 1

    print("wrote {} samples at {} Hz, {} V full scale".format(len(channel), rate, scale))
    return 0


if __name__ == "__main__":
    sys.exit(main())
