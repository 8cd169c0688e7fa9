"""
PNG filter method 0: five byte predictors applied per scanline.

Each filtered scanline is one filter type byte followed by
the residuals of the raw bytes against the chosen predictor.
Predictions only ever reference raw (unfiltered) bytes of the
current row and of the row above, so every row can be filtered
independently. This lets us compute all rows and all five
candidates at once with numpy.

The adaptive choice is the usual minimum sum of absolute
differences heuristic: treat each residual as a signed byte,
sum the magnitudes, take the cheapest filter. Ties go to the
lowest filter type number.
"""
from typing import Optional

import numpy as np

from .headers import FilterType, FormatError, UnsupportedConfiguration

NUM_FILTERS = len(FilterType)

def paeth_predictor(a:int, b:int, c:int) -> int:
  """a = left, b = above, c = upper left"""
  p = a + b - c
  pa = abs(p - a)
  pb = abs(p - b)
  pc = abs(p - c)
  if pa <= pb and pa <= pc:
    return a
  elif pb <= pc:
    return b
  return c

def _shift_right(arr:np.ndarray, bpp:int) -> np.ndarray:
  """Shift each row right by one pixel, filling with zeros."""
  out = np.zeros_like(arr)
  out[:, bpp:] = arr[:, :-bpp]
  return out

def candidates(raw:np.ndarray, prior:np.ndarray, bpp:int) -> np.ndarray:
  """
  Compute all five filtered versions of the given rows.

  raw, prior: (rows, width_bytes) uint8 arrays, prior being
    the row above each row of raw.

  Returns: (5, rows, width_bytes) uint8
  """
  x = raw.astype(np.int16)
  b = prior.astype(np.int16)
  a = _shift_right(x, bpp)
  c = _shift_right(b, bpp)

  pa = np.abs(b - c)
  pb = np.abs(a - c)
  pc = np.abs(a + b - 2 * c)
  paeth = np.where(
    (pa <= pb) & (pa <= pc), a,
    np.where(pb <= pc, b, c)
  )

  out = np.stack([
    x,
    x - a,
    x - b,
    x - ((a + b) >> 1),
    x - paeth,
  ])
  return (out & 0xFF).astype(np.uint8)

def filter_cost(filtered:np.ndarray) -> np.ndarray:
  """Sum of absolute values of the residuals read as signed bytes."""
  signed = filtered.view(np.int8).astype(np.int64)
  return np.abs(signed).sum(axis=-1)

def validate_filter_type(filter_type:Optional[int]) -> Optional[int]:
  if filter_type is None:
    return None
  try:
    return int(FilterType(filter_type))
  except ValueError:
    raise UnsupportedConfiguration(
      f"Filter type must be one of {[ int(f) for f in FilterType ]} or None. Got: {filter_type}"
    )

def select_filters(raw:np.ndarray, bpp:int, filter_type:Optional[int] = None):
  """
  Choose a filter per row and compute the filtered rows.

  raw: (height, width_bytes) uint8 raw scanline bytes
  bpp: bytes per complete pixel (at least 1)
  filter_type: None for adaptive selection, otherwise 0-4
    to apply the same filter to every row.

  Returns: (filter types per row, (height, width_bytes) filtered rows)
  """
  filter_type = validate_filter_type(filter_type)
  raw = np.ascontiguousarray(raw, dtype=np.uint8)
  height = raw.shape[0]

  prior = np.zeros_like(raw)
  prior[1:] = raw[:-1]

  filtered = candidates(raw, prior, bpp)

  if filter_type is None:
    # argmin returns the first minimum, i.e. the lowest filter type
    choice = np.argmin(filter_cost(filtered), axis=0)
  else:
    choice = np.full((height,), filter_type, dtype=np.int64)

  rows = filtered[choice, np.arange(height)]
  return choice.astype(np.uint8), rows

def filter_scanlines(
  raw:np.ndarray, bpp:int,
  filter_type:Optional[int] = None,
) -> bytes:
  """
  Produce the concatenated filtered scanlines (the
  uncompressed zlib payload of a PNG) from raw pixel bytes.
  """
  choice, rows = select_filters(raw, bpp, filter_type)
  return np.concatenate([ choice[:, np.newaxis], rows ], axis=1).tobytes()

def filter_row(kind:int, raw:bytes, prior:Optional[bytes], bpp:int) -> bytes:
  """Apply a single filter to a single row."""
  kind = validate_filter_type(kind)
  x = np.frombuffer(bytes(raw), dtype=np.uint8)[np.newaxis, :]
  if prior is None:
    b = np.zeros_like(x)
  else:
    b = np.frombuffer(bytes(prior), dtype=np.uint8)[np.newaxis, :]
  return candidates(x, b, bpp)[kind, 0].tobytes()

def unfilter_scanlines(data:bytes, width_bytes:int, bpp:int) -> np.ndarray:
  """
  Invert filter_scanlines.

  data: concatenated filtered scanlines each of length 1 + width_bytes
  Returns: (height, width_bytes) uint8 raw bytes
  """
  stride = width_bytes + 1
  if len(data) % stride != 0:
    raise FormatError(
      f"Filtered data length {len(data)} is not a multiple of the scanline length {stride}."
    )

  lines = np.frombuffer(data, dtype=np.uint8).reshape((-1, stride))
  height = lines.shape[0]
  out = np.zeros((height, width_bytes), dtype=np.uint8)
  prior = np.zeros((width_bytes,), dtype=np.int64)

  for y in range(height):
    kind = int(lines[y, 0])
    filt = lines[y, 1:].astype(np.int64)

    if kind == FilterType.NONE:
      recon = filt
    elif kind == FilterType.SUB:
      recon = np.zeros_like(filt)
      for k in range(min(bpp, width_bytes)):
        recon[k::bpp] = np.cumsum(filt[k::bpp]) & 0xFF
    elif kind == FilterType.UP:
      recon = (filt + prior) & 0xFF
    elif kind in (FilterType.AVERAGE, FilterType.PAETH):
      recon = np.zeros_like(filt)
      for x in range(width_bytes):
        a = int(recon[x - bpp]) if x >= bpp else 0
        b = int(prior[x])
        if kind == FilterType.AVERAGE:
          pred = (a + b) >> 1
        else:
          c = int(prior[x - bpp]) if x >= bpp else 0
          pred = paeth_predictor(a, b, c)
        recon[x] = (int(filt[x]) + pred) & 0xFF
    else:
      raise FormatError(f"Invalid filter type {kind} on row {y}.")

    out[y] = recon
    prior = recon

  return out
