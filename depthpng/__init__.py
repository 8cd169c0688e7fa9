"""A PNG encoder for depth maps and other float fields.

Samples are clamped to [0, 1] and quantized to 8 or 16 bits
(NaN becomes 0), each scanline is run through whichever of the
five PNG predictors leaves the smallest residuals, and the
result is compressed with a self contained DEFLATE encoder
(LZ77 over a 32 KiB window, fixed or dynamic Huffman blocks,
whichever is smaller) wrapped in a zlib stream.

The PNG is written as signature, IHDR, one or more IDAT
chunks and IEND. No ancillary chunks are emitted.

    import depthpng

    binary = depthpng.encode(depth.ravel(), width, height, bit_depth=16)
    binary = depthpng.encode_array(depth)
"""
from .codec import (
  encode, encode_array,
  header, chunks, chunk_types, idat,
  nbytes, check, ok,
)
from .headers import (
  PngError, FormatError, InvalidDimensions,
  SampleCountMismatch, UnsupportedConfiguration,
  CompressionInternalError,
  ColorMode, FilterType, PngHeader,
)
from .chunks import Chunk
from .quantize import quantize, normalize
from .lib import crc32, adler32
from .util import save, load_header, load_numpy, bload

__version__ = "1.0.0"
