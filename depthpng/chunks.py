from typing import Iterator, List
import numbers

from .headers import FormatError, PngHeader, UnsupportedConfiguration
from .lib import SIGNATURE, crc32, sip

DEFAULT_IDAT_SIZE = 8192

class Chunk:
  """
  length (4B BE) | type (4B ASCII) | payload | crc32 of type + payload (4B BE)
  """
  OVERHEAD_BYTES = 12

  def __init__(self, chunk_type:bytes, payload:bytes = b''):
    if isinstance(chunk_type, str):
      chunk_type = chunk_type.encode('ascii')
    chunk_type = bytes(chunk_type)
    if len(chunk_type) != 4 or not chunk_type.isalpha():
      raise FormatError(f"Chunk types are four ASCII letters. Got: {chunk_type}")

    self.type = chunk_type
    self.payload = bytes(payload)

  def crc(self) -> int:
    return crc32(self.payload, crc32(self.type))

  def tobytes(self) -> bytes:
    return b''.join([
      len(self.payload).to_bytes(4, 'big'),
      self.type,
      self.payload,
      self.crc().to_bytes(4, 'big'),
    ])

  @property
  def nbytes(self) -> int:
    return len(self.payload) + Chunk.OVERHEAD_BYTES

  @property
  def critical(self) -> bool:
    return self.type[:1].isupper()

  def __eq__(self, other):
    if not isinstance(other, Chunk):
      return NotImplemented
    return self.type == other.type and self.payload == other.payload

  def __repr__(self):
    return f"Chunk({self.type.decode('ascii')}, {len(self.payload)} bytes)"


class RawChunk:
  """A chunk as found in a byte stream, with its stored crc."""
  def __init__(self, chunk:Chunk, stored_crc:int, offset:int):
    self.chunk = chunk
    self.stored_crc = stored_crc
    self.offset = offset

  @property
  def type(self) -> bytes:
    return self.chunk.type

  @property
  def payload(self) -> bytes:
    return self.chunk.payload

  def ok(self) -> bool:
    return self.stored_crc == self.chunk.crc()


def split_idat(zlib_stream:bytes, max_idat_size:int = DEFAULT_IDAT_SIZE) -> List[Chunk]:
  """Split the zlib stream, preserving order, into IDAT chunks."""
  if (
    isinstance(max_idat_size, bool)
    or not isinstance(max_idat_size, numbers.Integral)
    or max_idat_size <= 0
  ):
    raise UnsupportedConfiguration(
      f"IDAT payload size must be a positive integer. Got: {max_idat_size}"
    )
  idats = [ Chunk(b'IDAT', piece) for piece in sip(zlib_stream, int(max_idat_size)) ]
  if not idats:
    idats = [ Chunk(b'IDAT', b'') ]
  return idats

def assemble(
  header:PngHeader,
  zlib_stream:bytes,
  max_idat_size:int = DEFAULT_IDAT_SIZE,
) -> bytes:
  """signature | IHDR | IDAT... | IEND"""
  chunks = [ Chunk(PngHeader.CHUNK_TYPE, header.tobytes()) ]
  chunks += split_idat(zlib_stream, max_idat_size)
  chunks.append(Chunk(b'IEND'))

  return b''.join(
    [ SIGNATURE ] + [ chunk.tobytes() for chunk in chunks ]
  )

def iter_chunks(binary:bytes) -> Iterator[RawChunk]:
  """Walk the chunks of a PNG byte stream without checking crcs."""
  binary = bytes(binary)
  if binary[:len(SIGNATURE)] != SIGNATURE:
    raise FormatError(f"Incorrect signature. Got: {binary[:len(SIGNATURE)]} Expected: {SIGNATURE}")

  offset = len(SIGNATURE)
  while offset < len(binary):
    if offset + 8 > len(binary):
      raise FormatError(f"Truncated chunk header at byte {offset}.")

    length = int.from_bytes(binary[offset:offset+4], 'big')
    chunk_type = binary[offset+4:offset+8]
    end = offset + 8 + length + 4
    if end > len(binary):
      raise FormatError(
        f"Chunk {chunk_type} at byte {offset} declares {length} bytes but the stream ends at {len(binary)}."
      )

    payload = binary[offset+8:offset+8+length]
    stored_crc = int.from_bytes(binary[end-4:end], 'big')
    yield RawChunk(Chunk(chunk_type, payload), stored_crc, offset)

    offset = end
