import io
import random
import zlib

import numpy as np
import pytest

import depthpng
from depthpng import ColorMode
from depthpng.deflate import deflate, lz77, write_block, BitWriter
from depthpng.filters import (
  filter_row, filter_scanlines, paeth_predictor,
  select_filters, unfilter_scanlines,
)
from depthpng.huffman import code_lengths, canonical_codes
from depthpng.quantize import quantize_image, pixel_bytes
from depthpng.zlib_stream import zlib_header

COLOR_MODES = [ ColorMode.GRAYSCALE, ColorMode.RGB ]
BIT_DEPTHS = [ 8, 16 ]

def decode(binary):
  """Inflate the IDAT stream and undo the scanline filters."""
  head = depthpng.header(binary)
  filtered = zlib.decompress(depthpng.idat(binary))
  width_bytes = head.width * head.bytes_per_pixel
  raw = unfilter_scanlines(filtered, width_bytes, head.bytes_per_pixel)
  return head, filtered, raw

def random_field(width, height, channels=1):
  field = np.random.random(size=(height * width * channels,))
  # include some out of range and invalid samples
  field[::7] = 1.5
  field[::11] = -0.25
  field[::13] = np.nan
  return field

def smooth_field(width, height):
  y, x = np.mgrid[0:height, 0:width]
  return (np.sin(x / 7.0) * np.cos(y / 5.0) + 1.0) / 2.0

@pytest.mark.parametrize('color_mode', COLOR_MODES)
@pytest.mark.parametrize('bit_depth', BIT_DEPTHS)
@pytest.mark.parametrize('level', [0, 1, 6, 9])
def test_encode_decode_random(color_mode, bit_depth, level):
  width, height = 17, 13
  channels = 3 if color_mode == ColorMode.RGB else 1
  samples = random_field(width, height, channels)

  binary = depthpng.encode(
    samples, width, height,
    color_mode=color_mode, bit_depth=bit_depth, level=level,
  )
  head, filtered, raw = decode(binary)

  expected = pixel_bytes(
    quantize_image(samples, width, height, color_mode, bit_depth)
  )
  assert head.width == width
  assert head.height == height
  assert head.bit_depth == bit_depth
  assert head.color_mode == color_mode
  assert np.all(raw == expected)

@pytest.mark.parametrize('bit_depth', BIT_DEPTHS)
@pytest.mark.parametrize('fixed_huffman', [False, True])
def test_encode_decode_smooth(bit_depth, fixed_huffman):
  image = smooth_field(64, 48)
  binary = depthpng.encode_array(
    image, bit_depth=bit_depth, fixed_huffman=fixed_huffman
  )
  head, filtered, raw = decode(binary)

  expected = pixel_bytes(quantize_image(image.ravel(), 64, 48, ColorMode.GRAYSCALE, bit_depth))
  assert np.all(raw == expected)

  # one block at most: never worse than storing it, plus
  # block header, zlib header and adler32
  assert len(depthpng.idat(binary)) <= len(filtered) + 6 + 6
  if not fixed_huffman:
    assert len(binary) < len(filtered)

def test_deterministic():
  samples = random_field(31, 9)
  binary1 = depthpng.encode(samples, 31, 9, bit_depth=16)
  binary2 = depthpng.encode(samples.copy(), 31, 9, bit_depth=16)
  assert binary1 == binary2

def test_ihdr():
  binary = depthpng.encode([0.0] * 8, 4, 2, color_mode=ColorMode.GRAYSCALE, bit_depth=8)

  assert binary[:8] == bytes([ 0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A ])
  assert binary[8:12] == (13).to_bytes(4, 'big')
  assert binary[12:16] == b'IHDR'
  assert binary[16:24] == bytes([ 0, 0, 0, 4, 0, 0, 0, 2 ])
  assert binary[24:29] == bytes([ 8, 0, 0, 0, 0 ])

  binary = depthpng.encode([0.0] * 24, 4, 2, color_mode=ColorMode.RGB, bit_depth=16)
  assert binary[24:29] == bytes([ 16, 2, 0, 0, 0 ])

  head = depthpng.header(binary)
  assert head.bytes_per_pixel == 6
  assert depthpng.PngHeader.frombytes(head.tobytes()) == head

def test_chunk_layout():
  binary = depthpng.encode(random_field(40, 40), 40, 40, level=0, max_idat_size=100)
  types = depthpng.chunk_types(binary)

  assert types[0] == b'IHDR'
  assert types[-1] == b'IEND'
  assert set(types[1:-1]) == { b'IDAT' }
  assert len(types) > 3

  chunks = list(depthpng.chunks(binary))
  assert all(len(chunk.payload) <= 100 for chunk in chunks if chunk.type == b'IDAT')
  assert chunks[-1].payload == b''
  assert sum(chunk.nbytes for chunk in chunks) + 8 == len(binary)
  assert all(chunk.critical for chunk in chunks)
  assert not depthpng.Chunk(b'tEXt', b'depth').critical
  assert depthpng.Chunk(b'tEXt', b'depth').nbytes == 17

  head, filtered, raw = decode(binary)
  assert raw.shape == (40, 40)

def test_crc_validity():
  binary = depthpng.encode(random_field(20, 5), 20, 5, max_idat_size=64)

  offset = 8
  while offset < len(binary):
    length = int.from_bytes(binary[offset:offset+4], 'big')
    body = binary[offset+4:offset+8+length]
    stored = int.from_bytes(binary[offset+8+length:offset+12+length], 'big')
    assert stored == zlib.crc32(body)
    assert stored == depthpng.crc32(body)
    offset += 12 + length

  assert offset == len(binary)

def test_adler_validity():
  binary = depthpng.encode(random_field(20, 5), 20, 5)
  stream = depthpng.idat(binary)
  filtered = zlib.decompress(stream)

  assert int.from_bytes(stream[-4:], 'big') == zlib.adler32(filtered)
  assert int.from_bytes(stream[-4:], 'big') == depthpng.adler32(filtered)
  assert ((stream[0] << 8) | stream[1]) % 31 == 0

def test_checksums():
  for size in [ 0, 1, 100, 5552, 5553, 70000 ]:
    data = np.random.randint(0, 256, size=(size,), dtype=np.uint8).tobytes()
    assert depthpng.crc32(data) == zlib.crc32(data)
    assert depthpng.adler32(data) == zlib.adler32(data)

  data = b'\xff' * 200000
  assert depthpng.adler32(data, block_size=4096) == zlib.adler32(data)
  assert depthpng.adler32(data[100:], depthpng.adler32(data[:100])) == zlib.adler32(data)
  assert depthpng.crc32(data[100:], depthpng.crc32(data[:100])) == zlib.crc32(data)

  assert depthpng.crc32(b'IEND') == 0xAE426082
  assert depthpng.adler32(b'') == 1

@pytest.mark.parametrize('bit_depth', BIT_DEPTHS)
def test_quantization_boundaries(bit_depth):
  maxval = (2 ** bit_depth) - 1
  values = depthpng.quantize(
    [ 1.5, 1.0, -0.5, 0.0, np.nan, np.inf, -np.inf, 0.5 ],
    bit_depth
  )
  assert values[0] == values[1] == maxval
  assert values[2] == values[3] == 0
  assert values[4] == 0
  assert values[5] == maxval
  assert values[6] == 0
  # ties round away from zero
  assert values[7] == (maxval + 1) // 2

  assert depthpng.quantize([ 0.25 ], 8)[0] == 64 # 63.75
  assert depthpng.quantize([ 1 / 255 ], 8)[0] == 1

def test_rgb_channels():
  gray = np.array([ 0.0, 0.5, 1.0, 0.25 ])
  binary = depthpng.encode(gray, 2, 2, color_mode=ColorMode.RGB)
  head, filtered, raw = decode(binary)
  pixels = raw.reshape((2, 2, 3))
  assert np.all(pixels[:,:,0] == pixels[:,:,1])
  assert np.all(pixels[:,:,0] == pixels[:,:,2])
  assert list(pixels[:,:,0].ravel()) == [ 0, 128, 255, 64 ]

  color = np.zeros((2, 2, 3))
  color[:,:,0] = 1.0
  color[:,:,2] = 0.5
  binary = depthpng.encode_array(color)
  assert depthpng.header(binary).color_mode == ColorMode.RGB
  head, filtered, raw = decode(binary)
  pixels = raw.reshape((2, 2, 3))
  assert np.all(pixels[:,:,0] == 255)
  assert np.all(pixels[:,:,1] == 0)
  assert np.all(pixels[:,:,2] == 128)

def test_sixteen_bit_big_endian():
  binary = depthpng.encode([ 1.0, 0.0, 256 / 65535 ], 3, 1, bit_depth=16, filter_type=0)
  head, filtered, raw = decode(binary)
  assert filtered == bytes([ 0, 0xFF, 0xFF, 0x00, 0x00, 0x01, 0x00 ])

def test_single_pixel():
  binary = depthpng.encode([ 1.0 ], 1, 1, color_mode=ColorMode.GRAYSCALE, bit_depth=8)
  head, filtered, raw = decode(binary)
  assert raw.shape == (1, 1)
  assert raw[0,0] == 255
  assert depthpng.ok(binary)

def test_uniform_rows_select_none():
  binary = depthpng.encode(np.zeros((10 * 6,)), 10, 6)
  head, filtered, raw = decode(binary)
  assert filtered[::11] == bytes(6)

  raw = np.full((4, 12), 9, dtype=np.uint8)
  choice, rows = select_filters(raw, 3)
  # the first row can only be predicted from the left,
  # every later row matches the row above exactly
  assert choice[0] == 1
  assert list(choice[1:]) == [ 2, 2, 2 ]
  assert np.all(rows[1:] == 0)

@pytest.mark.parametrize('width', [0, -1])
def test_invalid_width(width):
  with pytest.raises(depthpng.InvalidDimensions):
    depthpng.encode([ 0.0 ], width, 1)

@pytest.mark.parametrize('height', [0, -1])
def test_invalid_height(height):
  with pytest.raises(depthpng.InvalidDimensions):
    depthpng.encode([ 0.0 ], 1, height)

def test_invalid_dimensions():
  with pytest.raises(depthpng.InvalidDimensions):
    depthpng.encode([ 0.0 ], 2 ** 31, 1)
  with pytest.raises(depthpng.InvalidDimensions):
    depthpng.encode([ 0.0 ], 1.5, 1)
  with pytest.raises(ValueError):
    depthpng.encode([ 0.0 ], 0, 1)

def test_sample_count_mismatch():
  with pytest.raises(depthpng.SampleCountMismatch):
    depthpng.encode([ 0.0 ] * 7, 4, 2)
  with pytest.raises(depthpng.SampleCountMismatch):
    depthpng.encode([ 0.0 ] * 9, 4, 2)
  with pytest.raises(depthpng.SampleCountMismatch):
    depthpng.encode([ 0.0 ] * 16, 4, 2, color_mode=ColorMode.RGB)

  # values that are not real numbers are never coerced
  with pytest.raises(depthpng.SampleCountMismatch):
    depthpng.encode([ None, 0.5 ], 2, 1)
  with pytest.raises(depthpng.SampleCountMismatch):
    depthpng.encode([ "0.5", "1" ], 2, 1)
  with pytest.raises(depthpng.SampleCountMismatch):
    depthpng.encode([ 0.5 + 1j, 0.0 ], 2, 1)
  with pytest.raises(depthpng.SampleCountMismatch):
    depthpng.quantize([ None ], 8)

  # both single channel and three channel input are fine for RGB
  depthpng.encode([ 0.0 ] * 8, 4, 2, color_mode=ColorMode.RGB)
  depthpng.encode([ 0.0 ] * 24, 4, 2, color_mode=ColorMode.RGB)

def test_unsupported_configuration():
  with pytest.raises(depthpng.UnsupportedConfiguration):
    depthpng.encode([ 0.0 ], 1, 1, bit_depth=4)
  with pytest.raises(depthpng.UnsupportedConfiguration):
    depthpng.encode([ 0.0 ], 1, 1, color_mode=6)
  with pytest.raises(depthpng.UnsupportedConfiguration):
    depthpng.encode([ 0.0 ], 1, 1, filter_type=5)
  with pytest.raises(depthpng.UnsupportedConfiguration):
    depthpng.encode([ 0.0 ], 1, 1, level=10)
  with pytest.raises(depthpng.UnsupportedConfiguration):
    depthpng.encode([ 0.0 ], 1, 1, max_idat_size=0)
  with pytest.raises(depthpng.UnsupportedConfiguration):
    depthpng.encode_array(np.zeros((2, 2, 4)))

def test_paeth_predictor():
  assert paeth_predictor(0, 0, 0) == 0
  assert paeth_predictor(10, 10, 10) == 10
  assert paeth_predictor(1, 9, 9) == 1 # p=1, pa=0
  assert paeth_predictor(9, 1, 9) == 1 # p=1, pb=0
  assert paeth_predictor(20, 10, 15) == 15 # p=15, pc=0
  # ties resolve in the order a, b, c
  assert paeth_predictor(1, 7, 5) == 1 # p=3, pa=2, pb=4, pc=2
  assert paeth_predictor(7, 1, 5) == 1 # p=3, pa=4, pb=2, pc=2

def reference_filter(kind, raw, prior, bpp):
  out = []
  for x in range(len(raw)):
    a = raw[x - bpp] if x >= bpp else 0
    b = prior[x]
    c = prior[x - bpp] if x >= bpp else 0
    pred = [ 0, a, b, (a + b) // 2, paeth_predictor(a, b, c) ][kind]
    out.append((raw[x] - pred) % 256)
  return bytes(out)

@pytest.mark.parametrize('bpp', [1, 2, 3, 6])
def test_filter_row(bpp):
  for _ in range(20):
    raw = bytes(random.randint(0, 255) for _ in range(bpp * 9))
    prior = bytes(random.randint(0, 255) for _ in range(bpp * 9))
    for kind in range(5):
      assert filter_row(kind, raw, prior, bpp) == reference_filter(kind, raw, prior, bpp)
      assert filter_row(kind, raw, None, bpp) == reference_filter(kind, raw, bytes(len(raw)), bpp)

@pytest.mark.parametrize('filter_type', [None, 0, 1, 2, 3, 4])
@pytest.mark.parametrize('bpp', [1, 2, 3, 6])
def test_filter_scanlines_inverse(filter_type, bpp):
  raw = np.random.randint(0, 256, size=(7, bpp * 5), dtype=np.uint8)
  filtered = filter_scanlines(raw, bpp, filter_type)
  assert len(filtered) == 7 * (1 + bpp * 5)
  if filter_type is not None:
    assert filtered[::1 + bpp * 5] == bytes([ filter_type ] * 7)
  assert np.all(unfilter_scanlines(filtered, bpp * 5, bpp) == raw)

def test_unfilter_rejects_malformed():
  raw = np.random.randint(0, 256, size=(3, 4), dtype=np.uint8)
  filtered = filter_scanlines(raw, 1)

  with pytest.raises(depthpng.FormatError):
    unfilter_scanlines(filtered[:-1], 4, 1)

  damaged = bytearray(filtered)
  damaged[5] = 7
  with pytest.raises(depthpng.FormatError):
    unfilter_scanlines(bytes(damaged), 4, 1)

def test_adaptive_filter_cost():
  raw = np.random.randint(0, 256, size=(9, 12), dtype=np.uint8)
  choice, rows = select_filters(raw, 3)
  prior = bytes(12)
  for y in range(9):
    row = raw[y].tobytes()
    costs = []
    for kind in range(5):
      filtered = reference_filter(kind, row, prior, 3)
      costs.append(sum(b if b < 128 else 256 - b for b in filtered))
    assert choice[y] == costs.index(min(costs))
    assert rows[y].tobytes() == reference_filter(int(choice[y]), row, prior, 3)
    prior = row

DEFLATE_INPUTS = [
  b'',
  b'a',
  b'abc',
  b'a' * 1000,
  b'abcXabcYabc' * 50,
  bytes(range(256)) * 300,
  b'\x00' * 100000,
]

@pytest.mark.parametrize('level', [0, 1, 4, 6, 9])
@pytest.mark.parametrize('fixed_huffman', [False, True])
def test_deflate_inflates(level, fixed_huffman):
  random_bytes = np.random.randint(0, 256, size=(70000,), dtype=np.uint8).tobytes()
  skewed = np.random.geometric(0.3, size=(3000,)).clip(0, 255).astype(np.uint8).tobytes()
  for data in DEFLATE_INPUTS + [ random_bytes, skewed ]:
    binary = deflate(data, level=level, fixed_huffman=fixed_huffman)
    assert zlib.decompress(binary, -15) == data

def test_deflate_block_types():
  data = bytes(range(256)) * 8
  tokens = lz77(data)

  for fixed in (True, False):
    writer = BitWriter()
    btype = write_block(writer, tokens, data, final=True, fixed_huffman=fixed)
    assert zlib.decompress(writer.getvalue(), -15) == data
    if fixed:
      assert btype == 1

  # incompressible data is stored
  data = np.random.randint(0, 256, size=(3000,), dtype=np.uint8).tobytes()
  writer = BitWriter()
  assert write_block(writer, lz77(data), data, final=True) == 0
  assert zlib.decompress(writer.getvalue(), -15) == data

def test_deflate_small_blocks():
  data = (b'depth' * 100) + bytes(range(200))
  binary = deflate(data, block_symbols=7)
  assert zlib.decompress(binary, -15) == data

def test_lz77_nearest_distance():
  tokens = lz77(b'abcXabcYabc')
  assert tokens == [
    (ord('a'), 0), (ord('b'), 0), (ord('c'), 0), (ord('X'), 0),
    (3, 4),
    (ord('Y'), 0),
    (3, 4),
  ]

def test_lz77_limits():
  tokens = lz77(b'a' * 1000)
  assert tokens[0] == (ord('a'), 0)
  matches = [ t for t in tokens[1:] ]
  assert all(distance == 1 for length, distance in matches)
  assert all(3 <= length <= 258 for length, distance in matches)
  assert sum(length for length, distance in matches) == 999

  data = np.random.randint(0, 256, size=(40000,), dtype=np.uint8).tobytes()
  data = data + data[:1000]
  tokens = lz77(data, level=9)
  assert all(distance <= 32768 for length, distance in tokens)

def test_zlib_header():
  for level in range(10):
    header = zlib_header(level)
    assert header[0] == 0x78
    assert ((header[0] << 8) | header[1]) % 31 == 0
  assert zlib_header(6) == b'\x78\x9c'
  assert zlib_header(9) == b'\x78\xda'
  assert zlib_header(1) == b'\x78\x01'

def test_huffman_length_limit():
  # fibonacci frequencies make the deepest possible tree
  freqs = [ 1, 1 ]
  while len(freqs) < 30:
    freqs.append(freqs[-1] + freqs[-2])

  for max_bits in (7, 15):
    lengths = code_lengths(freqs, max_bits)
    assert max(lengths) <= max_bits
    assert all(length > 0 for length in lengths)
    assert sum(2 ** -length for length in lengths) == 1.0

  lengths = code_lengths([ 0, 0, 5, 0 ], 15)
  assert sorted(lengths) == [ 0, 0, 1, 1 ]

def test_canonical_codes():
  # RFC 1951 section 3.2.2 example
  lengths = [ 3, 3, 3, 3, 3, 2, 4, 4 ]
  assert canonical_codes(lengths) == [
    0b010, 0b011, 0b100, 0b101, 0b110, 0b00, 0b1110, 0b1111
  ]

def test_normalize():
  depth = np.array([ 0.5, 1.0, 2.5, np.nan, np.inf ])
  out = depthpng.normalize(depth)
  assert np.allclose(out[:3], [ 0.0, 0.25, 1.0 ])
  assert np.isnan(out[3])

  out = depthpng.normalize(depth, near=0.0, far=5.0, invert=True)
  assert np.allclose(out[:3], [ 0.9, 0.8, 0.5 ])

  out = depthpng.normalize(np.full((3,), 2.0))
  assert np.all(out == 0.0)

  binary = depthpng.encode_array(depthpng.normalize(depth.reshape((1, 5))))
  head, filtered, raw = decode(binary)
  assert list(raw[0]) == [ 0, 64, 255, 0, 255 ]

def test_check_detects_corruption():
  binary = depthpng.encode(random_field(16, 16), 16, 16, max_idat_size=50)
  assert depthpng.ok(binary)

  report = depthpng.check(binary)
  assert report["crc"] == []
  assert report["order"] == True

  damaged = bytearray(binary)
  damaged[60] ^= 0x10
  damaged = bytes(damaged)
  assert not depthpng.ok(damaged)
  assert len(depthpng.check(damaged)["crc"]) == 1

  with pytest.raises(depthpng.FormatError):
    list(depthpng.chunks(damaged))

  assert not depthpng.ok(b'not a png')
  with pytest.raises(depthpng.FormatError):
    depthpng.header(b'not a png')
  with pytest.raises(depthpng.FormatError):
    depthpng.header(binary[:20])

def test_save_and_load_header(tmp_path):
  image = smooth_field(30, 20)

  f = io.BytesIO()
  binary = depthpng.save(image, f, bit_depth=16)
  assert f.getvalue() == binary

  path = tmp_path / "depth.png"
  depthpng.save(image.ravel(), str(path), width=30, height=20, bit_depth=16)
  assert path.read_bytes() == binary

  head = depthpng.load_header(str(path))
  assert (head.width, head.height, head.bit_depth) == (30, 20, 16)

def test_cli(tmp_path):
  from click.testing import CliRunner
  from depthpng_cli import main

  src = tmp_path / "depth.npy"
  np.save(src, smooth_field(12, 8) * 4.0)

  runner = CliRunner()
  result = runner.invoke(main, [ "-b", "8", str(src) ])
  assert result.exit_code == 0

  dest = tmp_path / "depth.png"
  binary = dest.read_bytes()
  head = depthpng.header(binary)
  assert (head.width, head.height, head.bit_depth) == (12, 8, 8)
  head, filtered, raw = decode(binary)
  assert raw.max() == 255 and raw.min() == 0

  result = runner.invoke(main, [ "-t", str(dest) ])
  assert result.exit_code == 0
  assert "chunks ok." in result.output
