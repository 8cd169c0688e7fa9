from typing import Iterator, List, Optional
from collections import Counter
import logging

import numpy as np

from . import zlib_stream
from .chunks import Chunk, DEFAULT_IDAT_SIZE, assemble, iter_chunks, split_idat
from .deflate import validate_level
from .filters import filter_scanlines, validate_filter_type
from .headers import (
  ColorMode, FilterType, FormatError, PngHeader,
  UnsupportedConfiguration,
)
from .lib import SIGNATURE
from .quantize import SampleGrid, quantize_image, pixel_bytes

logger = logging.getLogger("depthpng")

def encode(
  samples:SampleGrid,
  width:int,
  height:int,
  color_mode:int = ColorMode.GRAYSCALE,
  bit_depth:int = 8,
  level:int = 6,
  fixed_huffman:bool = False,
  filter_type:Optional[int] = None,
  max_idat_size:int = DEFAULT_IDAT_SIZE,
) -> bytes:
  """
  Encode a row major grid of float samples as a PNG image.

  samples: width * height values, or width * height * 3 interleaved
    values for a color image. Values are clamped to [0.0, 1.0] with
    NaN treated as 0.0 (see depthpng.quantize).
  color_mode: ColorMode.GRAYSCALE or ColorMode.RGB. A single channel
    grid encoded as RGB is replicated into all three channels.
  bit_depth: 8 or 16 bits per channel
  level: 0 (stored, no compression) to 9 (most thorough match search)
  fixed_huffman: only use the fixed Huffman tables, which is faster
    to emit but usually compresses worse.
  filter_type: None selects a filter per scanline adaptively,
    0-4 (None, Sub, Up, Average, Paeth) forces one filter on every row.
  max_idat_size: maximum payload size of each IDAT chunk

  Returns: the complete PNG file as bytes
  """
  head = PngHeader(width, height, bit_depth=bit_depth, color_mode=color_mode)
  filter_type = validate_filter_type(filter_type)
  validate_level(level)
  # fail before doing any work
  split_idat(b'', max_idat_size)

  quantized = quantize_image(
    samples, head.width, head.height,
    color_mode=head.color_mode, bit_depth=head.bit_depth,
  )
  raw = pixel_bytes(quantized)
  scanlines = filter_scanlines(raw, head.bytes_per_pixel, filter_type)

  if logger.isEnabledFor(logging.DEBUG):
    counts = Counter(scanlines[::head.scanline_bytes])
    logger.debug(
      f"encode: {head.width}x{head.height} {head.color_mode.name} {head.bit_depth}-bit, filters: "
      + ", ".join(f"{FilterType(k).name}={counts[k]}" for k in sorted(counts))
    )

  stream = zlib_stream.compress(scanlines, level=level, fixed_huffman=fixed_huffman)
  binary = assemble(head, stream, max_idat_size)

  logger.debug(
    f"encode: {len(scanlines)} filtered bytes -> {len(stream)} byte zlib stream -> {len(binary)} byte png"
  )
  return binary

def encode_array(image:np.ndarray, color_mode:Optional[int] = None, **kwargs) -> bytes:
  """
  Encode a (height, width) or (height, width, 3) array.

  The color mode defaults to RGB for three channel
  images and grayscale otherwise.
  """
  image = np.asarray(image)
  if image.ndim == 3 and image.shape[2] == 1:
    image = image[:,:,0]

  if image.ndim == 2:
    channels = 1
  elif image.ndim == 3 and image.shape[2] == 3:
    channels = 3
  else:
    raise UnsupportedConfiguration(
      f"Images must have shape (height, width) or (height, width, 3). Got: {image.shape}"
    )

  if color_mode is None:
    color_mode = ColorMode.RGB if channels == 3 else ColorMode.GRAYSCALE

  height, width = image.shape[:2]
  return encode(
    image.reshape(-1), width, height,
    color_mode=color_mode, **kwargs
  )

def chunks(binary:bytes) -> Iterator[Chunk]:
  """Iterate over the chunks of a PNG byte stream, verifying crcs."""
  for raw in iter_chunks(binary):
    if not raw.ok():
      raise FormatError(
        f"{raw.type} chunk at byte {raw.offset} failed its crc check. "
        f"Stored: {raw.stored_crc} Computed: {raw.chunk.crc()}"
      )
    yield raw.chunk

def header(binary:bytes) -> PngHeader:
  """Decode the IHDR from a PNG byte stream."""
  first = next(chunks(binary), None)
  if first is None or first.type != PngHeader.CHUNK_TYPE:
    raise FormatError("The first chunk must be IHDR.")
  return PngHeader.frombytes(first.payload)

def idat(binary:bytes) -> bytes:
  """The zlib stream reassembled from all IDAT chunks in order."""
  return b''.join(
    chunk.payload for chunk in chunks(binary) if chunk.type == b'IDAT'
  )

def chunk_types(binary:bytes) -> List[bytes]:
  return [ raw.type for raw in iter_chunks(binary) ]

def nbytes(binary:bytes) -> int:
  """Size of the uncompressed filtered scanline data."""
  return header(binary).nbytes

def check(binary:bytes) -> dict:
  """Test a PNG byte stream for container level corruption."""
  sections = {
    "signature": None,
    "header": None,
    "crc": None,
    "order": None,
    "zlib": None,
  }

  binary = bytes(binary)
  sections["signature"] = (binary[:len(SIGNATURE)] == SIGNATURE)
  if not sections["signature"]:
    return sections

  try:
    found = list(iter_chunks(binary))
  except FormatError:
    sections["order"] = False
    return sections

  sections["crc"] = [ i for i, raw in enumerate(found) if not raw.ok() ]

  try:
    if not found or found[0].type != PngHeader.CHUNK_TYPE:
      raise FormatError("The first chunk must be IHDR.")
    PngHeader.frombytes(found[0].payload)
    sections["header"] = True
  except FormatError:
    sections["header"] = False

  types = [ raw.type for raw in found ]
  idat_positions = [ i for i, t in enumerate(types) if t == b'IDAT' ]
  sections["order"] = (
    len(types) >= 3
    and types.count(b'IHDR') == 1 and types[0] == b'IHDR'
    and types.count(b'IEND') == 1 and types[-1] == b'IEND'
    and len(idat_positions) > 0
    and idat_positions == list(range(idat_positions[0], idat_positions[-1] + 1))
  )

  stream = b''.join(found[i].payload for i in idat_positions)
  sections["zlib"] = zlib_stream.check_header(stream[:2])

  return sections

def ok(binary:bytes) -> bool:
  """
  Runs check for file corruption but only reports
  whether the file is ok as a whole.
  """
  report = check(binary)
  if report["crc"] is None or len(report["crc"]) > 0:
    return False
  return all(
    report[key] == True
    for key in ("signature", "header", "order", "zlib")
  )
