from enum import IntEnum
import numbers

from .lib import (
  SIGNATURE, MAX_DIMENSION,
  bytes_per_pixel, channels_per_pixel,
)

class PngError(Exception):
  pass

class FormatError(PngError):
  pass

class InvalidDimensions(PngError, ValueError):
  pass

class SampleCountMismatch(PngError, ValueError):
  pass

class UnsupportedConfiguration(PngError, ValueError):
  pass

class CompressionInternalError(PngError, RuntimeError):
  pass

class ColorMode(IntEnum):
  GRAYSCALE = 0
  RGB = 2

class FilterType(IntEnum):
  NONE = 0
  SUB = 1
  UP = 2
  AVERAGE = 3
  PAETH = 4

BIT_DEPTHS = (8, 16)

def validate_dimensions(width, height):
  for name, value in (("width", width), ("height", height)):
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
      raise InvalidDimensions(f"{name} must be an integer. Got: {value!r}")
    if value <= 0:
      raise InvalidDimensions(f"{name} must be positive. Got: {value}")
    if value > MAX_DIMENSION:
      raise InvalidDimensions(
        f"{name} must not exceed {MAX_DIMENSION}. Got: {value}"
      )

def validate_format(color_mode, bit_depth) -> ColorMode:
  try:
    color_mode = ColorMode(color_mode)
  except ValueError:
    raise UnsupportedConfiguration(
      f"Unsupported color mode. Got: {color_mode} Expected one of: {[ int(c) for c in ColorMode ]}"
    )
  if bit_depth not in BIT_DEPTHS:
    raise UnsupportedConfiguration(
      f"Unsupported bit depth. Got: {bit_depth} Expected one of: {BIT_DEPTHS}"
    )
  return color_mode


class PngHeader:
  """The IHDR record. Always the first chunk after the signature."""
  MAGIC = SIGNATURE
  CHUNK_TYPE = b'IHDR'
  HEADER_BYTES = 13
  COMPRESSION_METHOD = 0
  FILTER_METHOD = 0
  INTERLACE_METHOD = 0

  def __init__(
    self,
    width:int, height:int,
    bit_depth:int = 8,
    color_mode:int = ColorMode.GRAYSCALE,
    compression_method:int = 0,
    filter_method:int = 0,
    interlace_method:int = 0,
  ):
    validate_dimensions(width, height)
    self.width = int(width)
    self.height = int(height)
    self.color_mode = validate_format(color_mode, bit_depth)
    self.bit_depth = int(bit_depth)
    self.compression_method = int(compression_method)
    self.filter_method = int(filter_method)
    self.interlace_method = int(interlace_method)

  @classmethod
  def frombytes(kls, payload:bytes):
    if len(payload) != PngHeader.HEADER_BYTES:
      raise FormatError(
        f"IHDR payload must be {PngHeader.HEADER_BYTES} bytes. Got: {len(payload)}"
      )

    width = int.from_bytes(payload[0:4], byteorder='big', signed=False)
    height = int.from_bytes(payload[4:8], byteorder='big', signed=False)

    methods = (payload[10], payload[11], payload[12])
    expected = (
      PngHeader.COMPRESSION_METHOD,
      PngHeader.FILTER_METHOD,
      PngHeader.INTERLACE_METHOD,
    )
    if methods != expected:
      raise FormatError(
        f"Unsupported compression, filter or interlace method. Got: {methods} Expected: {expected}"
      )

    try:
      return PngHeader(
        width=width,
        height=height,
        bit_depth=payload[8],
        color_mode=payload[9],
        compression_method=payload[10],
        filter_method=payload[11],
        interlace_method=payload[12],
      )
    except (InvalidDimensions, UnsupportedConfiguration) as err:
      raise FormatError(f"Invalid IHDR. {err}")

  def tobytes(self) -> bytes:
    return b''.join([
      self.width.to_bytes(4, 'big'),
      self.height.to_bytes(4, 'big'),
      self.bit_depth.to_bytes(1, 'big'),
      int(self.color_mode).to_bytes(1, 'big'),
      self.compression_method.to_bytes(1, 'big'),
      self.filter_method.to_bytes(1, 'big'),
      self.interlace_method.to_bytes(1, 'big'),
    ])

  @property
  def channels(self) -> int:
    return channels_per_pixel(self.color_mode)

  @property
  def bytes_per_pixel(self) -> int:
    return bytes_per_pixel(self.color_mode, self.bit_depth)

  @property
  def scanline_bytes(self) -> int:
    """Length of one filtered scanline including the filter tag."""
    return 1 + self.bytes_per_pixel * self.width

  @property
  def nbytes(self) -> int:
    return self.height * self.scanline_bytes

  def details(self) -> str:
    return f"""
    width:         {self.width}
    height:        {self.height}
    bit depth:     {self.bit_depth}
    color type:    {int(self.color_mode)} ({self.color_mode.name})
    compression:   {self.compression_method}
    filter:        {self.filter_method}
    interlace:     {self.interlace_method}
    ---
    bytes/pixel:   {self.bytes_per_pixel}
    scanline:      {self.scanline_bytes}
    """

  def __eq__(self, other):
    if not isinstance(other, PngHeader):
      return NotImplemented
    return self.__dict__ == other.__dict__

  def __repr__(self):
    return str(self.__dict__)
