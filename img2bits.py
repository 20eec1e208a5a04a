#!/usr/bin/env python3
"""Convert an image into a raw 1-bit-per-pixel bitstream.

    img2bits -o frame.bin frame.png
    img2bits -t 128 -N -o - frame.png > frame.bin
    img2bits --serial /dev/ttyUSB0 frame.png

Pixels brighter than the threshold become 1 bits, MSB first, row-major.
By default every pixel row starts on a fresh byte.
"""
import argparse
import contextlib
import logging
import sys

import cv2
import numpy as np
import serial

from packer import DEFAULT_THRESHOLD, TRACE, pack_grid, packed_size

__version__ = "0.1.0"

DEFAULT_BAUD = 921600

log = logging.getLogger("img2bits")


def threshold_value(text):
    value = int(text)
    if not 0 <= value <= 255:
        raise argparse.ArgumentTypeError(f"threshold must be in 0..255, got {value}")
    return value


def build_parser():
    parser = argparse.ArgumentParser(
        prog="img2bits",
        description="Threshold an image to 1 bit per pixel and pack 8 pixels per byte.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Increase logging output (can be used multiple times)")
    parser.add_argument("-t", "--threshold", type=threshold_value, default=DEFAULT_THRESHOLD,
                        help="Threshold to decide if pixel should be on/off (default: %(default)s)")
    parser.add_argument("-N", "--no-flush-after-pixel-row", action="store_true",
                        help="Don't flush partial bytes after completing a pixel row")

    dest = parser.add_mutually_exclusive_group(required=True)
    dest.add_argument("-o", "--output", help="The path to write the output to (- for stdout)")
    dest.add_argument("--serial", metavar="PORT",
                      help="Send the output to a serial port instead (any pyserial URL)")
    parser.add_argument("--baud", type=int, default=DEFAULT_BAUD,
                        help="Serial baud rate (default: %(default)s)")

    parser.add_argument("input", help="The path to read the image from (- for stdin)")
    return parser


def setup_logging(verbose):
    if verbose == 0:
        level = logging.INFO
    elif verbose == 1:
        level = logging.DEBUG
    else:
        level = TRACE
    # stdout may be carrying the bitstream
    logging.basicConfig(level=level, stream=sys.stderr,
                        format="[%(levelname)s %(name)s] %(message)s")


def read_input(path):
    if path == "-":
        try:
            return sys.stdin.buffer.read()
        except OSError as e:
            raise SystemExit(f"Failed to read from stdin: {e}")
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise SystemExit(f"Failed to open input file: {path!r}: {e}")


def load_image(data: bytes) -> np.ndarray:
    """Decode image bytes to a grayscale uint8 array (height x width)."""
    if not data:
        raise SystemExit("Failed to decode image: no data")
    img = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_GRAYSCALE)
    if img is None:
        raise SystemExit("Failed to decode image")
    return img


@contextlib.contextmanager
def open_output(path, serial_port=None, baud=DEFAULT_BAUD):
    """Yield a writable byte sink; it is closed again on exit (stdout is only flushed)."""
    if serial_port is not None:
        try:
            ser = serial.serial_for_url(serial_port, baudrate=baud)
        except (serial.SerialException, ValueError) as e:
            raise SystemExit(f"Failed to open output file: {serial_port!r}: {e}")
        log.debug("Opened serial port %s at %d baud", serial_port, baud)
        with ser:
            yield ser
        return

    if path == "-":
        yield sys.stdout.buffer
        sys.stdout.buffer.flush()
        return

    try:
        f = open(path, "wb")
    except OSError as e:
        raise SystemExit(f"Failed to open output file: {path!r}: {e}")
    with f:
        yield f


def convert(image, sink, threshold=DEFAULT_THRESHOLD, row_aligned=True):
    try:
        written = pack_grid(image, sink, threshold=threshold, row_aligned=row_aligned)
        sink.flush()
    except OSError as e:
        raise SystemExit(f"Failed to write to output file: {e}")
    return written


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    img = load_image(read_input(args.input))
    height, width = img.shape
    row_aligned = not args.no_flush_after_pixel_row
    log.info("Loaded %dx%d image, threshold %d, %s", width, height, args.threshold,
             "row aligned" if row_aligned else "continuous")

    log.debug("Expecting %d output bytes", packed_size(width, height, row_aligned))

    with open_output(args.output, args.serial, args.baud) as sink:
        written = convert(img, sink, args.threshold, row_aligned)

    log.info("Wrote %d bytes", written)
    return 0


if __name__ == "__main__":
    sys.exit(main())
