import numpy as np

SIGNATURE = b'\x89PNG\r\n\x1a\n'

# Width and height are stored as 4 byte unsigned integers
# but decoders are only required to accept the signed range.
MAX_DIMENSION = (2 ** 31) - 1

ADLER_MOD = 65521

def _make_crc_table():
  table = []
  for n in range(256):
    c = n
    for k in range(8):
      if c & 1:
        c = 0xEDB88320 ^ (c >> 1)
      else:
        c = c >> 1
    table.append(c)
  return tuple(table)

CRC_TABLE = _make_crc_table()

def crc32(buffer, crc:int = 0) -> int:
  """
  Standard (ISO 3309 / ITU-T V.42) CRC-32 as used by PNG chunks.

  crc: a previously returned value to continue a running checksum.
  """
  table = CRC_TABLE
  c = crc ^ 0xFFFFFFFF
  for byte in bytes(buffer):
    c = table[(c ^ byte) & 0xFF] ^ (c >> 8)
  return c ^ 0xFFFFFFFF

def adler32(buffer, value:int = 1, block_size:int = 2 ** 20) -> int:
  """
  Adler-32 as used by the zlib trailer.

  A = 1 + sum(bytes) mod 65521
  B = sum of each running A mod 65521
  checksum = (B << 16) | A

  value: a previously returned value to continue a running checksum.
  """
  a = value & 0xFFFF
  b = (value >> 16) & 0xFFFF

  data = np.frombuffer(bytes(buffer), dtype=np.uint8)
  for start in range(0, data.size, block_size):
    block = data[start:start+block_size].astype(np.int64)
    n = block.size
    # the k-th byte of the block is added into B (n - k) times
    weights = np.arange(n, 0, -1, dtype=np.int64)
    b = (b + n * a + int(np.dot(weights, block))) % ADLER_MOD
    a = (a + int(block.sum())) % ADLER_MOD

  return (b << 16) | a

# (color type, bit depth) -> bytes per pixel
BYTES_PER_PIXEL = {
  (0, 8): 1,
  (0, 16): 2,
  (2, 8): 3,
  (2, 16): 6,
}

# color type -> samples per pixel
CHANNELS = {
  0: 1,
  2: 3,
}

width2dtype = {
  1: np.uint8,
  2: np.uint16,
}

def bytes_per_pixel(color_type:int, bit_depth:int) -> int:
  return BYTES_PER_PIXEL[(int(color_type), int(bit_depth))]

def channels_per_pixel(color_type:int) -> int:
  return CHANNELS[int(color_type)]

def depth2dtype(bit_depth:int):
  return width2dtype[int(bit_depth) // 8]

def sip(buffer:bytes, block_size:int):
  """Sips fixed size pieces from a buffer, the last one may be short."""
  for start in range(0, len(buffer), block_size):
    yield buffer[start:start+block_size]
