import depthpng

import numpy as np
import zlib

import time

def depth_map(width, height):
  y, x = np.mgrid[0:height, 0:width]
  depth = 1.0 + 0.5 * np.sin(x / 23.0) + 0.25 * np.cos(y / 17.0)
  depth += np.random.normal(scale=0.005, size=depth.shape)
  depth[:10, :10] = np.nan
  return depth

def run_sample(depth, bit_depth, level):
  image = depthpng.normalize(depth)

  s = time.time()
  binary = depthpng.encode_array(image, bit_depth=bit_depth, level=level)
  encode_time = time.time() - s

  head = depthpng.header(binary)
  raw_bytes = head.width * head.height * head.bytes_per_pixel

  stream = depthpng.idat(binary)
  filtered = zlib.decompress(stream)

  s = time.time()
  zlib_bin = zlib.compress(filtered, level)
  zlib_time = time.time() - s

  mpxs = lambda t: image.size / t / 1e6

  print(f"""
    bit depth {bit_depth}, level {level}
      encode       :  {mpxs(encode_time):.3f} MPx/sec ({len(binary)} bytes, {len(binary)/raw_bytes*100:.1f}%)
      zlib (ref)   :  {mpxs(zlib_time):.3f} MPx/sec ({len(zlib_bin)} bytes, {len(zlib_bin)/raw_bytes*100:.1f}%)
  """, flush=True)

# 256x192 is the size of a LiDAR scene depth map
depth = depth_map(256, 192)
for bit_depth in (8, 16):
  for level in (1, 6, 9):
    run_sample(depth, bit_depth, level)
