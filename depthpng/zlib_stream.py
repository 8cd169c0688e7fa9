"""
zlib (RFC 1950) framing around a DEFLATE stream.

  CMF | FLG | DEFLATE data | ADLER32 (big endian)

The Adler-32 covers the uncompressed bytes, which for a PNG are
the filtered scanlines, not the original samples.
"""
from .deflate import deflate, validate_level
from .lib import adler32

CM_DEFLATE = 8
CINFO_32K = 7 # log2(window size) - 8

def flevel(level:int) -> int:
  """Compression level hint stored in FLG, informational only."""
  if level <= 1:
    return 0
  elif level <= 5:
    return 1
  elif level == 6:
    return 2
  return 3

def zlib_header(level:int = 6) -> bytes:
  cmf = (CINFO_32K << 4) | CM_DEFLATE
  flg = flevel(level) << 6 # FDICT = 0
  flg |= 31 - ((cmf * 256 + flg) % 31)
  if flg & 0x1F == 31:
    flg -= 31
  return bytes([ cmf, flg ])

def check_header(header:bytes) -> bool:
  if len(header) < 2:
    return False
  cmf, flg = header[0], header[1]
  return (
    (cmf & 0x0F) == CM_DEFLATE
    and (cmf >> 4) <= CINFO_32K
    and (flg & 0x20) == 0
    and ((cmf << 8) | flg) % 31 == 0
  )

def frame(compressed:bytes, uncompressed:bytes, level:int = 6) -> bytes:
  """Wrap an existing DEFLATE stream."""
  return b''.join([
    zlib_header(level),
    compressed,
    adler32(uncompressed).to_bytes(4, 'big'),
  ])

def compress(data:bytes, level:int = 6, fixed_huffman:bool = False) -> bytes:
  """Compress data into a complete zlib stream."""
  level = validate_level(level)
  data = bytes(data)
  return frame(deflate(data, level, fixed_huffman=fixed_huffman), data, level)
