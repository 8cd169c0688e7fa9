"""
Maps floating point samples onto the integer sample
range of the PNG. This is the only lossy step of encoding.

Every sample is first clamped into [0.0, 1.0]:

  NaN            -> 0.0
  +Inf, v > 1.0  -> 1.0
  -Inf, v < 0.0  -> 0.0

and then scaled linearly onto [0, 2^depth - 1], rounding
to the nearest integer with ties away from zero. Since the
clamped value is never negative this is floor(v * max + 0.5).

RGB images may be supplied either as a single channel, which
is quantized once and replicated into all three channels
(grayscale as RGB), or as three interleaved channels which
are each quantized independently with the same rule.
"""
from typing import Optional, Sequence, Union

import numpy as np
import numpy.typing as npt

from .headers import (
  ColorMode, SampleCountMismatch,
  validate_dimensions, validate_format,
)
from .lib import depth2dtype, channels_per_pixel

SampleGrid = Union[Sequence[float], npt.ArrayLike]

def as_samples(samples:SampleGrid) -> np.ndarray:
  """Read-only flat float64 view of the caller's samples."""
  try:
    arr = np.asarray(samples)
  except (TypeError, ValueError) as err:
    raise SampleCountMismatch(f"Samples could not be read as numbers. {err}")

  # object (None), string and complex arrays are not samples
  if arr.dtype.kind not in "biuf":
    raise SampleCountMismatch(
      f"Samples must be real numbers. Got dtype: {arr.dtype}"
    )
  return arr.astype(np.float64, copy=False).reshape(-1)

def quantize(samples:SampleGrid, bit_depth:int = 8) -> np.ndarray:
  """
  Quantize every sample to an unsigned integer of bit_depth bits.

  Returns a flat uint8 (8 bit) or uint16 (16 bit) array with the
  same number of elements as the input.
  """
  validate_format(ColorMode.GRAYSCALE, bit_depth)

  arr = as_samples(samples)
  maxval = (2 ** bit_depth) - 1

  arr = np.nan_to_num(arr, nan=0.0, posinf=1.0, neginf=0.0)
  arr = np.clip(arr, 0.0, 1.0)
  arr = np.floor(arr * maxval + 0.5)

  return arr.astype(depth2dtype(bit_depth))

def quantize_image(
  samples:SampleGrid,
  width:int, height:int,
  color_mode:int = ColorMode.GRAYSCALE,
  bit_depth:int = 8,
) -> np.ndarray:
  """
  Quantize a row major sample grid into a (height, width, channels)
  array of unsigned integers ready to be serialized into scanlines.
  """
  validate_dimensions(width, height)
  color_mode = validate_format(color_mode, bit_depth)
  width, height = int(width), int(height)

  arr = as_samples(samples)
  pixels = width * height
  channels = channels_per_pixel(color_mode)

  if arr.size == pixels * channels:
    quantized = quantize(arr, bit_depth).reshape((height, width, channels))
  elif color_mode == ColorMode.RGB and arr.size == pixels:
    quantized = quantize(arr, bit_depth).reshape((height, width, 1))
    quantized = np.repeat(quantized, channels, axis=2)
  else:
    expected = f"{pixels * channels}"
    if color_mode == ColorMode.RGB:
      expected = f"{pixels} or {pixels * channels}"
    raise SampleCountMismatch(
      f"Got {arr.size} samples for a {width}x{height} {color_mode.name} image. Expected: {expected}"
    )

  return quantized

def pixel_bytes(quantized:np.ndarray) -> np.ndarray:
  """
  Serialize quantized samples into raw (unfiltered) scanline bytes.

  Returns a (height, width * bytes_per_pixel) uint8 array. 16 bit
  samples are stored most significant byte first.
  """
  height = quantized.shape[0]
  if quantized.dtype == np.uint16:
    quantized = quantized.astype('>u2')
  raw = np.ascontiguousarray(quantized).view(np.uint8)
  return raw.reshape((height, -1))

def normalize(
  samples:SampleGrid,
  near:Optional[float] = None,
  far:Optional[float] = None,
  invert:bool = False,
) -> np.ndarray:
  """
  Linearly rescale metric samples (e.g. depth in meters) so that
  near maps to 0.0 and far maps to 1.0. Values outside of the range
  are left for the quantizer to clamp and NaN stays NaN.

  near, far: defaults to the smallest and largest finite sample.
  invert: map near to 1.0 and far to 0.0 instead
    (closer surfaces render brighter).

  Returns an array of the same shape as the input.
  """
  arr = np.asarray(samples, dtype=np.float64)
  finite = arr[np.isfinite(arr)]

  if near is None:
    near = float(finite.min()) if finite.size else 0.0
  if far is None:
    far = float(finite.max()) if finite.size else 1.0

  span = float(far) - float(near)
  if span == 0:
    out = np.where(np.isnan(arr), np.nan, 0.0)
  else:
    with np.errstate(invalid='ignore'):
      out = (arr - near) / span

  if invert:
    out = 1.0 - out

  return out
