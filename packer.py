# packer.py
"""Threshold grayscale pixels to single bits and pack them eight to a byte.

Bits are packed MSB first in row-major pixel order. Nothing but the pixel
bits ends up in the output: no header, no dimensions. Whoever reads the
stream has to know the image size.
"""
import logging

import numpy as np

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

log = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 100


def pixel_bit(sample, threshold: int = DEFAULT_THRESHOLD) -> int:
    # Strictly greater: a sample equal to the threshold is off
    return 1 if sample > threshold else 0


def packed_size(width: int, height: int, row_aligned: bool = True) -> int:
    """Number of bytes pack_grid() writes for a width x height image."""
    if row_aligned:
        return height * ((width + 7) // 8)
    return (width * height + 7) // 8


class BitPacker:
    """Collects bits and writes every completed byte straight to `writer`.

    `writer` is anything with a write(bytes) method: a file, sys.stdout.buffer,
    io.BytesIO, a serial port. Call flush() when done, otherwise a trailing
    partial byte is lost.
    """

    def __init__(self, writer):
        self.writer = writer
        self.bits = bytearray(8)
        self.count = 0
        self.bytes_written = 0

    def _clear(self):
        self.bits[:] = bytes(8)
        self.count = 0

    def _to_byte(self) -> int:
        # Unfilled positions are still zero, which pads on the right
        value = 0
        for bit in self.bits:
            value = (value << 1) | bit
        return value

    def _write(self):
        byte = self._to_byte()
        log.debug("Writing byte 0x%02X", byte)
        self.writer.write(bytes((byte,)))
        self.bytes_written += 1
        self._clear()

    def add(self, bit):
        if bit not in (0, 1):
            raise ValueError(f"bit must be 0 or 1, got {bit!r}")
        self.bits[self.count] = int(bit)
        self.count += 1
        if self.count == len(self.bits):
            self._write()

    def flush(self):
        if self.count == 0:
            return
        log.debug("Padding incomplete byte with %d zero bits", len(self.bits) - self.count)
        self._write()


def pack_grid(grid, writer, threshold: int = DEFAULT_THRESHOLD, row_aligned: bool = True) -> int:
    """Threshold every pixel of `grid` and write the packed bits to `writer`.

    `grid` is a 2-D array of 8-bit luminance samples (height x width), e.g. a
    grayscale image from cv2. With `row_aligned` each row is padded out to a
    whole byte; otherwise bits run on from one row into the next and only the
    very last byte is padded.

    Returns the number of bytes written. Write errors from `writer` propagate
    and stop the conversion; whatever was written before stays written.
    """
    if not 0 <= threshold <= 255:
        raise ValueError(f"threshold must be in 0..255, got {threshold}")
    grid = np.asarray(grid)
    if grid.ndim != 2:
        raise ValueError(f"expected a 2-D luminance grid, got shape {grid.shape}")
    if grid.dtype != np.uint8:
        # Wider integer samples are fine as long as they fit in 8 bits
        if grid.dtype.kind not in "iu":
            raise ValueError(f"expected integer luminance samples, got {grid.dtype}")
        if grid.size and (grid.min() < 0 or grid.max() > 255):
            raise ValueError("luminance samples must be in 0..255")
        grid = grid.astype(np.uint8)

    packer = BitPacker(writer)
    trace = log.isEnabledFor(TRACE)

    for row in grid:
        for px in row:
            if trace:
                log.log(TRACE, "pixel = %d", px)
            packer.add(pixel_bit(px, threshold))

        if row_aligned:
            packer.flush()

    # Flush remaining pixels
    packer.flush()
    return packer.bytes_written
