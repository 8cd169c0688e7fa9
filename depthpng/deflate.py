"""
A DEFLATE (RFC 1951) compressor.

The input is parsed greedily into literals and (length, distance)
back references using hash chains over 3 byte prefixes within a
32 KiB window. When several earlier positions give the same match
length, the nearest one wins since chains are walked from the most
recent position and a candidate only replaces the current best if
it is strictly longer.

Tokens are then coded in blocks. For each block we cost out stored,
fixed Huffman and dynamic Huffman representations and emit the
smallest one. The last block carries the BFINAL flag.
"""
from typing import List, Optional, Sequence, Tuple
from bisect import bisect_right
import logging

from .headers import CompressionInternalError, UnsupportedConfiguration
from .huffman import HuffmanCodec

logger = logging.getLogger("depthpng")

WINDOW_SIZE = 32768
MIN_MATCH = 3
MAX_MATCH = 258
MAX_STORED = 65535
BLOCK_SYMBOLS = 2 ** 14
END_OF_BLOCK = 256

BTYPE_STORED = 0
BTYPE_FIXED = 1
BTYPE_DYNAMIC = 2

BTYPE_NAMES = {
  BTYPE_STORED: "stored",
  BTYPE_FIXED: "fixed",
  BTYPE_DYNAMIC: "dynamic",
}

LENGTH_BASE = [
  3, 4, 5, 6, 7, 8, 9, 10, 11, 13, 15, 17, 19, 23, 27, 31,
  35, 43, 51, 59, 67, 83, 99, 115, 131, 163, 195, 227, 258,
]
LENGTH_EXTRA = [
  0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 2, 2, 2, 2,
  3, 3, 3, 3, 4, 4, 4, 4, 5, 5, 5, 5, 0,
]
DIST_BASE = [
  1, 2, 3, 4, 5, 7, 9, 13, 17, 25, 33, 49, 65, 97, 129, 193,
  257, 385, 513, 769, 1025, 1537, 2049, 3073, 4097, 6145,
  8193, 12289, 16385, 24577,
]
DIST_EXTRA = [
  0, 0, 0, 0, 1, 1, 2, 2, 3, 3, 4, 4, 5, 5, 6, 6,
  7, 7, 8, 8, 9, 9, 10, 10, 11, 11, 12, 12, 13, 13,
]

# order in which code length code lengths are transmitted
CODE_LENGTH_ORDER = [
  16, 17, 18, 0, 8, 7, 9, 6, 10, 5, 11, 4, 12, 3, 13, 2, 14, 1, 15
]

NUM_LITLEN = 286
NUM_DIST = 30
NUM_CODE_LENGTH = 19

# level -> (longest match that stops the search, chain depth)
LEVELS = {
  1: (8, 4),
  2: (16, 8),
  3: (32, 32),
  4: (16, 16),
  5: (32, 32),
  6: (128, 128),
  7: (128, 256),
  8: (258, 1024),
  9: (258, 4096),
}

def _make_length_lookup():
  # length -> (symbol, extra bits, extra value)
  lookup = [None] * (MAX_MATCH + 1)
  for code, (base, extra) in enumerate(zip(LENGTH_BASE, LENGTH_EXTRA)):
    for length in range(base, min(base + (1 << extra), MAX_MATCH + 1)):
      lookup[length] = (257 + code, extra, length - base)
  return tuple(lookup)

LENGTH_LOOKUP = _make_length_lookup()

def distance_code(distance:int) -> Tuple[int,int,int]:
  """distance -> (symbol, extra bits, extra value)"""
  if not (1 <= distance <= WINDOW_SIZE):
    raise CompressionInternalError(
      f"Distance {distance} is outside of the {WINDOW_SIZE} byte window."
    )
  code = bisect_right(DIST_BASE, distance) - 1
  return (code, DIST_EXTRA[code], distance - DIST_BASE[code])

def length_code(length:int) -> Tuple[int,int,int]:
  if not (MIN_MATCH <= length <= MAX_MATCH):
    raise CompressionInternalError(
      f"Match length {length} is outside of [{MIN_MATCH}, {MAX_MATCH}]."
    )
  return LENGTH_LOOKUP[length]

FIXED_LITLEN = HuffmanCodec(
  [8] * 144 + [9] * 112 + [7] * 24 + [8] * 8
)
FIXED_DIST = HuffmanCodec([5] * 30)


class BitWriter:
  """Packs bit fields least significant bit first."""
  def __init__(self):
    self.buffer = bytearray()
    self.bits = 0
    self.nbits = 0

  def write(self, value:int, nbits:int):
    self.bits |= value << self.nbits
    self.nbits += nbits
    while self.nbits >= 8:
      self.buffer.append(self.bits & 0xFF)
      self.bits >>= 8
      self.nbits -= 8

  def align(self):
    if self.nbits > 0:
      self.write(0, 8 - self.nbits)

  def write_bytes(self, data:bytes):
    self.align()
    self.buffer.extend(data)

  def getvalue(self) -> bytes:
    self.align()
    return bytes(self.buffer)


def _match_length(data:bytes, i:int, j:int, max_len:int) -> int:
  n = 0
  while n + 8 <= max_len and data[i+n:i+n+8] == data[j+n:j+n+8]:
    n += 8
  while n < max_len and data[i+n] == data[j+n]:
    n += 1
  return n

def lz77(data:bytes, level:int = 6) -> List[Tuple[int,int]]:
  """
  Parse data into tokens.

  Returns: list of (value, distance). A distance of 0 marks a
    literal whose byte is value, otherwise value is the match length.
  """
  nice_length, max_chain = LEVELS[level]
  n = len(data)
  head = {}
  prev = [-1] * n
  tokens = []

  def insert(pos):
    key = (data[pos] << 16) | (data[pos+1] << 8) | data[pos+2]
    prev[pos] = head.get(key, -1)
    head[key] = pos

  i = 0
  while i < n:
    best_len = 0
    best_dist = 0

    if i + MIN_MATCH <= n:
      key = (data[i] << 16) | (data[i+1] << 8) | data[i+2]
      j = head.get(key, -1)
      max_len = min(MAX_MATCH, n - i)
      chain = max_chain

      while j >= 0 and i - j <= WINDOW_SIZE and chain > 0:
        if data[j + best_len] == data[i + best_len]:
          length = _match_length(data, i, j, max_len)
          if length > best_len:
            best_len = length
            best_dist = i - j
            if length >= nice_length or length == max_len:
              break
        j = prev[j]
        chain -= 1

      prev[i] = head.get(key, -1)
      head[key] = i

    if best_len >= MIN_MATCH:
      tokens.append((best_len, best_dist))
      for pos in range(i + 1, min(i + best_len, n - MIN_MATCH + 1)):
        insert(pos)
      i += best_len
    else:
      tokens.append((data[i], 0))
      i += 1

  return tokens

def _symbol_counts(tokens:Sequence[Tuple[int,int]]):
  lit_freq = [0] * NUM_LITLEN
  dist_freq = [0] * NUM_DIST
  extra_bits = 0
  for value, distance in tokens:
    if distance == 0:
      lit_freq[value] += 1
    else:
      lsym, lextra, _ = length_code(value)
      dsym, dextra, _ = distance_code(distance)
      lit_freq[lsym] += 1
      dist_freq[dsym] += 1
      extra_bits += lextra + dextra
  lit_freq[END_OF_BLOCK] += 1
  return lit_freq, dist_freq, extra_bits

def _run_length_encode(lengths:Sequence[int]) -> List[Tuple[int,int,int]]:
  """Code length sequence -> (symbol, extra bits, extra value) using 16, 17, 18."""
  out = []
  i = 0
  n = len(lengths)
  while i < n:
    value = lengths[i]
    run = 1
    while i + run < n and lengths[i + run] == value:
      run += 1

    remaining = run
    if value == 0:
      while remaining >= 11:
        k = min(remaining, 138)
        out.append((18, 7, k - 11))
        remaining -= k
      if remaining >= 3:
        out.append((17, 3, remaining - 3))
        remaining = 0
    else:
      out.append((value, 0, 0))
      remaining -= 1
      while remaining >= 3:
        k = min(remaining, 6)
        out.append((16, 2, k - 3))
        remaining -= k
    out.extend([ (value, 0, 0) ] * remaining)
    i += run

  return out


class DynamicTables:
  """Huffman tables of one dynamic block plus its header."""
  def __init__(self, lit_freq:Sequence[int], dist_freq:Sequence[int]):
    self.litlen = HuffmanCodec.from_frequencies(lit_freq, 15)
    self.dist = HuffmanCodec.from_frequencies(dist_freq, 15)

    self.hlit = self.litlen.num_codes(257)
    self.hdist = self.dist.num_codes(1)

    self.rle = _run_length_encode(
      self.litlen.lengths[:self.hlit] + self.dist.lengths[:self.hdist]
    )
    cl_freq = [0] * NUM_CODE_LENGTH
    for symbol, _, _ in self.rle:
      cl_freq[symbol] += 1
    self.code_lengths = HuffmanCodec.from_frequencies(cl_freq, 7)

    self.hclen = NUM_CODE_LENGTH
    while self.hclen > 4 and self.code_lengths.lengths[CODE_LENGTH_ORDER[self.hclen - 1]] == 0:
      self.hclen -= 1

    self.header_bits = 14 + 3 * self.hclen + sum(
      self.code_lengths.lengths[symbol] + extra
      for symbol, extra, _ in self.rle
    )

  def write_header(self, writer:BitWriter):
    writer.write(self.hlit - 257, 5)
    writer.write(self.hdist - 1, 5)
    writer.write(self.hclen - 4, 4)
    for symbol in CODE_LENGTH_ORDER[:self.hclen]:
      writer.write(self.code_lengths.lengths[symbol], 3)
    for symbol, extra, extra_value in self.rle:
      writer.write(*self.code_lengths.encode_symbol(symbol))
      if extra:
        writer.write(extra_value, extra)

def _write_tokens(writer:BitWriter, tokens, litlen:HuffmanCodec, dist:HuffmanCodec):
  write = writer.write
  for value, distance in tokens:
    if distance == 0:
      write(*litlen.encode_symbol(value))
      continue

    lsym, lextra, lvalue = length_code(value)
    write(*litlen.encode_symbol(lsym))
    if lextra:
      write(lvalue, lextra)

    dsym, dextra, dvalue = distance_code(distance)
    write(*dist.encode_symbol(dsym))
    if dextra:
      write(dvalue, dextra)

  write(*litlen.encode_symbol(END_OF_BLOCK))

def _stored_bits(nbytes:int) -> int:
  pieces = max((nbytes + MAX_STORED - 1) // MAX_STORED, 1)
  # header, worst case alignment padding, LEN and NLEN
  return pieces * (3 + 7 + 32) + 8 * nbytes

def write_stored(writer:BitWriter, data:bytes, final:bool):
  pieces = [ data[i:i+MAX_STORED] for i in range(0, len(data), MAX_STORED) ]
  if not pieces:
    pieces = [ b'' ]

  for k, piece in enumerate(pieces):
    is_last = final and (k == len(pieces) - 1)
    writer.write(int(is_last), 1)
    writer.write(BTYPE_STORED, 2)
    writer.align()
    size = len(piece)
    writer.write_bytes(
      size.to_bytes(2, 'little') + (size ^ 0xFFFF).to_bytes(2, 'little')
    )
    writer.write_bytes(piece)

def write_block(
  writer:BitWriter,
  tokens:Sequence[Tuple[int,int]],
  data:bytes,
  final:bool,
  fixed_huffman:bool = False,
) -> int:
  """
  Emit one block for tokens which cover exactly the bytes
  in data, choosing the cheapest block type.

  Returns: the block type used
  """
  lit_freq, dist_freq, extra_bits = _symbol_counts(tokens)

  costs = {
    BTYPE_STORED: _stored_bits(len(data)),
    BTYPE_FIXED: 3 + FIXED_LITLEN.cost(lit_freq) + FIXED_DIST.cost(dist_freq) + extra_bits,
  }

  tables = None
  if not fixed_huffman:
    tables = DynamicTables(lit_freq, dist_freq)
    costs[BTYPE_DYNAMIC] = (
      3 + tables.header_bits
      + tables.litlen.cost(lit_freq)
      + tables.dist.cost(dist_freq)
      + extra_bits
    )

  # on a tie, prefer the simpler block type
  btype = min(costs, key=lambda k: (costs[k], k))

  if btype == BTYPE_STORED:
    write_stored(writer, data, final)
    return btype

  writer.write(int(final), 1)
  writer.write(btype, 2)
  if btype == BTYPE_FIXED:
    _write_tokens(writer, tokens, FIXED_LITLEN, FIXED_DIST)
  else:
    tables.write_header(writer)
    _write_tokens(writer, tokens, tables.litlen, tables.dist)

  return btype

def validate_level(level:int) -> int:
  if isinstance(level, bool) or level not in range(0, 10):
    raise UnsupportedConfiguration(f"Compression level must be an integer in 0-9. Got: {level}")
  return int(level)

def deflate(
  data:bytes,
  level:int = 6,
  fixed_huffman:bool = False,
  block_symbols:int = BLOCK_SYMBOLS,
) -> bytes:
  """
  Compress data into a raw DEFLATE stream.

  level: 0 emits only stored blocks, 1-9 trade speed
    for a more thorough match search.
  fixed_huffman: never emit dynamic Huffman blocks.
  block_symbols: maximum number of tokens per block.
  """
  level = validate_level(level)
  data = bytes(data)
  writer = BitWriter()

  if level == 0:
    write_stored(writer, data, final=True)
    logger.debug(f"deflate: {len(data)} bytes in stored blocks")
    return writer.getvalue()

  tokens = lz77(data, level)

  blocks = [
    tokens[i:i+block_symbols]
    for i in range(0, len(tokens), block_symbols)
  ]
  if not blocks:
    blocks = [ [] ]

  offset = 0
  used = { btype: 0 for btype in BTYPE_NAMES }
  for k, block in enumerate(blocks):
    span = sum(1 if distance == 0 else value for value, distance in block)
    btype = write_block(
      writer, block, data[offset:offset+span],
      final=(k == len(blocks) - 1),
      fixed_huffman=fixed_huffman,
    )
    used[btype] += 1
    offset += span

  if offset != len(data):
    raise CompressionInternalError(
      f"Tokens covered {offset} bytes of a {len(data)} byte input."
    )

  binary = writer.getvalue()
  logger.debug(
    f"deflate: {len(data)} -> {len(binary)} bytes, {len(tokens)} tokens, blocks: "
    + ", ".join(f"{BTYPE_NAMES[b]}={n}" for b, n in used.items())
  )
  return binary
