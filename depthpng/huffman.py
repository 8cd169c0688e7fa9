"""
Canonical Huffman codes for DEFLATE (RFC 1951 section 3.2.2).

Code lengths are derived from symbol frequencies with a regular
Huffman tree and, if the tree is too deep for the format, are
shortened with the BITS adjustment procedure from ITU T.81 K.3
generalized to an arbitrary maximum length. Codes are then
assigned canonically from the lengths alone so that a decoder
can rebuild them from the transmitted lengths.
"""
from typing import List, Sequence, Tuple
import heapq

from .headers import CompressionInternalError

def _tree_depths(frequencies:Sequence[int]) -> List[int]:
  lengths = [0] * len(frequencies)
  heap = [
    (freq, symbol, (symbol,))
    for symbol, freq in enumerate(frequencies) if freq > 0
  ]
  heapq.heapify(heap)

  # the counter keeps heap entries comparable and the result stable
  counter = len(frequencies)
  while len(heap) > 1:
    f1, _, s1 = heapq.heappop(heap)
    f2, _, s2 = heapq.heappop(heap)
    for symbol in s1 + s2:
      lengths[symbol] += 1
    heapq.heappush(heap, (f1 + f2, counter, s1 + s2))
    counter += 1

  return lengths

def _adjust_bits(bits:List[int], max_bits:int) -> List[int]:
  """
  bits[i] is the number of codes of length i. Move codes
  longer than max_bits up the tree while keeping the code
  complete. See ITU T.81 Figure K.3.
  """
  i = len(bits) - 1
  while i > max_bits:
    while bits[i] > 0:
      j = i - 2
      while bits[j] == 0:
        j -= 1
      bits[i] -= 2
      bits[i - 1] += 1
      bits[j + 1] += 2
      bits[j] -= 1
    i -= 1
  return bits[:max_bits + 1]

def code_lengths(frequencies:Sequence[int], max_bits:int) -> List[int]:
  """
  Compute a length limited Huffman code length per symbol.

  Symbols with zero frequency get length 0 (unused). At least
  two symbols always receive a code, since a single code of
  one bit is not a complete prefix code.
  """
  frequencies = list(frequencies)
  used = [ s for s, f in enumerate(frequencies) if f > 0 ]

  for s in range(len(frequencies)):
    if len(used) >= 2:
      break
    if frequencies[s] == 0:
      frequencies[s] = 1
      used.append(s)

  if len(used) > (1 << max_bits):
    raise CompressionInternalError(
      f"{len(used)} symbols cannot be coded in {max_bits} bits."
    )

  lengths = _tree_depths(frequencies)
  longest = max(lengths)
  if longest <= max_bits:
    return lengths

  bits = [0] * (longest + 1)
  for length in lengths:
    if length > 0:
      bits[length] += 1
  bits = _adjust_bits(bits, max_bits)

  # most frequent symbols get the shortest codes
  order = sorted(used, key=lambda s: (-frequencies[s], s))
  lengths = [0] * len(frequencies)
  k = 0
  for length in range(1, max_bits + 1):
    for _ in range(bits[length]):
      lengths[order[k]] = length
      k += 1

  return lengths

def reverse_bits(code:int, length:int) -> int:
  out = 0
  for _ in range(length):
    out = (out << 1) | (code & 1)
    code >>= 1
  return out

def canonical_codes(lengths:Sequence[int]) -> List[int]:
  """Assign canonical codes (most significant bit first) from code lengths."""
  max_bits = max(lengths) if len(lengths) else 0
  bl_count = [0] * (max_bits + 1)
  for length in lengths:
    if length:
      bl_count[length] += 1

  next_code = [0] * (max_bits + 2)
  code = 0
  for bits in range(1, max_bits + 1):
    code = (code + bl_count[bits - 1]) << 1
    next_code[bits] = code

  codes = [0] * len(lengths)
  for symbol, length in enumerate(lengths):
    if length:
      codes[symbol] = next_code[length]
      next_code[length] += 1
      if codes[symbol] >= (1 << length):
        raise CompressionInternalError(
          f"Code lengths are oversubscribed at symbol {symbol}."
        )

  return codes


class HuffmanCodec:
  """
  Encoding table for one alphabet. Codes are stored
  bit reversed so they can be written directly into the
  least significant bit first DEFLATE bit stream.
  """
  def __init__(self, lengths:Sequence[int]):
    self.lengths = list(lengths)
    codes = canonical_codes(self.lengths)
    self.codes = [
      reverse_bits(code, length)
      for code, length in zip(codes, self.lengths)
    ]

  @classmethod
  def from_frequencies(kls, frequencies:Sequence[int], max_bits:int):
    return HuffmanCodec(code_lengths(frequencies, max_bits))

  def encode_symbol(self, symbol:int) -> Tuple[int, int]:
    length = self.lengths[symbol]
    if length == 0:
      raise CompressionInternalError(f"Unknown Huffman symbol {symbol}")
    return self.codes[symbol], length

  def cost(self, frequencies:Sequence[int]) -> int:
    """Number of bits needed to code the given symbol counts."""
    return sum(f * l for f, l in zip(frequencies, self.lengths))

  def num_codes(self, minimum:int) -> int:
    """Length of the table with trailing unused symbols removed."""
    n = len(self.lengths)
    while n > minimum and self.lengths[n - 1] == 0:
      n -= 1
    return n
