import sys
import json

import capture
import spi_decode
import analyse_cmds


def load_lines(args):
    """Get the clock, enable, data-out and data-in channels named on the command line."""
    names = [args.clock, args.enable, args.sdo, args.sdi]

    if args.sal is None:
        return [capture.read_digital_file(name) for name in names]

    cap = capture.read_capture_file(args.sal)
    print("capture time: {}".format(cap.start.isoformat()), file=sys.stderr)

    lines = []
    for name in names:
        try:
            lines.append(cap.digital[int(name)])
        except (ValueError, KeyError):
            raise capture.CaptureError("no digital channel {!r} in {}".format(name, args.sal)) from None
    return lines


def to_json(txns):
    return [
        {
            "start": txn.start_time,
            "end": txn.end_time,
            "sdo": txn.data_out_bytes.hex(),
            "sdi": txn.data_in_bytes.hex(),
            "intervals": txn.byte_intervals,
        }
        for txn in txns
    ]


def to_lines(txns):
    for i, txn in enumerate(txns):
        yield "{:4d} {:.9f} {:.9f} sdo={} sdi={}\n".format(
            i, txn.start_time, txn.end_time, txn.data_out_bytes.hex(), txn.data_in_bytes.hex())


def parse_args(argv=None):
    import argparse
    parser = argparse.ArgumentParser(
        description="Decode SPI transactions (mode 0, MSB first, CS active low) from a Saleae capture.")
    parser.add_argument("clock", help="clock channel (digital .bin file, or channel index with --sal)")
    parser.add_argument("enable", help="chip-select channel")
    parser.add_argument("sdo", help="data-out (MOSI) channel")
    parser.add_argument("sdi", help="data-in (MISO) channel")
    parser.add_argument("-s", "--sal", help="read channels from this .sal capture")
    parser.add_argument("--cyw43439", action="store_true",
                        help="interpret transactions as CYW43439 gSPI commands")
    parser.add_argument("--json", action="store_true", help="dump transactions as JSON")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    try:
        lines = load_lines(args)
        txns = spi_decode.decode(*lines)
        print("decoded {} transactions".format(len(txns)), file=sys.stderr)

        if args.json:
            json.dump(to_json(txns), sys.stdout)
        elif args.cyw43439:
            sys.stdout.writelines(analyse_cmds.to_lines(analyse_cmds.group_repeats(txns)))
        else:
            sys.stdout.writelines(to_lines(txns))
    except (OSError, ValueError) as e:
        # covers InputError and CaptureError, and short cyw43439 commands
        print("error: {}".format(e), file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
