from typing import Optional

import io
import os

import numpy as np

from .codec import encode, encode_array, header
from .headers import PngHeader
from .lib import SIGNATURE

def _load(filelike, size:int = -1) -> bytes:
  if hasattr(filelike, 'read'):
    return filelike.read(size)
  with open(filelike, 'rb') as f:
    return f.read(size)

def load_header(filelike) -> PngHeader:
  """Load the IHDR reading only the first few bytes of the file."""
  # signature + IHDR length, type, payload and crc
  binary = _load(filelike, len(SIGNATURE) + 12 + PngHeader.HEADER_BYTES)
  return header(binary)

def bload(filelike) -> bytes:
  """Load the binary file."""
  return _load(filelike)

def load_numpy(filelike) -> np.ndarray:
  f = io.BytesIO(_load(filelike))
  return np.load(f, allow_pickle=False)

def save(
  samples,
  filelike,
  width:Optional[int] = None,
  height:Optional[int] = None,
  **kwargs
):
  """
  Encode samples as a PNG and write it into the file-like
  object or file path. If width and height are omitted,
  samples must be a (height, width[, 3]) array.
  """
  if width is None and height is None:
    binary = encode_array(samples, **kwargs)
  else:
    binary = encode(samples, width, height, **kwargs)

  if hasattr(filelike, 'write'):
    filelike.write(binary)
  else:
    with open(os.fspath(filelike), 'wb') as f:
      f.write(binary)

  return binary
