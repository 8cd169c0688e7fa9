import os
import sys

import click
import numpy as np

import depthpng

@click.command()
@click.option('-i', "--info", default=False, is_flag=True, help="Print the header of a png file.", show_default=True)
@click.option('-t', "--test", default=False, is_flag=True, help="Check a png file for corruption and report damaged chunks.", show_default=True)
@click.option("--rgb", default=False, is_flag=True, help="Write a truecolor image. Single channel arrays are replicated into all three channels.", show_default=True)
@click.option('-b', "--bit-depth", default="16", type=click.Choice(["8", "16"]), help="Bits per channel.", show_default=True)
@click.option('-l', "--level", default=6, type=click.IntRange(0, 9), help="Compression effort. 0 stores the data uncompressed.", show_default=True)
@click.option("--fixed", default=False, is_flag=True, help="Only use fixed Huffman codes.", show_default=True)
@click.option('-f', "--filter", "filter_type", default=None, type=click.IntRange(0, 4), help="Force a scanline filter (0 None, 1 Sub, 2 Up, 3 Average, 4 Paeth). Default: choose per row.")
@click.option("--idat-size", default=8192, type=click.IntRange(min=1), help="Maximum IDAT chunk payload in bytes.", show_default=True)
@click.option("--normalize/--no-normalize", default=True, help="Rescale samples from [near, far] into [0, 1] before quantizing.", show_default=True)
@click.option("--near", default=None, type=float, help="Sample value mapped to 0. Default: smallest finite sample.")
@click.option("--far", default=None, type=float, help="Sample value mapped to the maximum. Default: largest finite sample.")
@click.option("--invert", default=False, is_flag=True, help="Map near to the maximum and far to 0.", show_default=True)
@click.argument("source", nargs=-1)
def main(
	info, test, rgb, bit_depth, level, fixed, filter_type,
	idat_size, normalize, near, far, invert, source
):
	"""
	Convert numpy (.npy) depth maps and other 2D float
	arrays into png images.

	Each SOURCE.npy is written next to itself as SOURCE.png.
	"""
	source = list(source)
	for i in range(len(source)):
		if source[i] == "-":
			source = source[:i] + [ line.strip() for line in sys.stdin.readlines() ] + source[i+1:]
			break

	for src in source:
		if info:
			print_header(src)
			continue
		elif test:
			check_binary(src)
			continue

		options = {
			"color_mode": depthpng.ColorMode.RGB if rgb else None,
			"bit_depth": int(bit_depth),
			"level": level,
			"fixed_huffman": fixed,
			"filter_type": filter_type,
			"max_idat_size": idat_size,
		}
		convert_file(src, normalize, near, far, invert, options)

def check_binary(src):
	try:
		binary = depthpng.bload(src)
	except FileNotFoundError:
		print(f"depthpng: File \"{src}\" does not exist.")
		return

	print(f"testing {src}...")

	report = depthpng.check(binary)

	def pretty(human, key):
		if report[key] == True:
			print(f"{human} ok.")
		elif report[key] == False:
			print(f"{human} damaged.")
		elif report[key] is None:
			print(f"{human} not checked.")

	pretty("signature", "signature")
	pretty("header", "header")
	pretty("chunk order", "order")
	pretty("zlib header", "zlib")

	if report["crc"] is None:
		print("chunks not checked.")
	elif report["crc"] == []:
		print("chunks ok.")
	else:
		print(f"chunks damaged: { ','.join(str(i) for i in report['crc']) }")

	print("done.")

def print_header(src):
	try:
		head = depthpng.load_header(src)
	except FileNotFoundError:
		print(f"depthpng: File \"{src}\" does not exist.")
		return
	except depthpng.FormatError as err:
		print("depthpng:", err)
		return

	print(f"Filename: {src}")
	for key,val in head.__dict__.items():
		print(f"{key}: {val}")
	print()

def convert_file(src, normalize, near, far, invert, options):
	try:
		data = depthpng.load_numpy(src)
	except FileNotFoundError:
		print(f"depthpng: File \"{src}\" does not exist.")
		return
	except ValueError:
		print(f"depthpng: {src} is not a numpy file.")
		return

	if normalize:
		data = depthpng.normalize(data, near=near, far=far, invert=invert)

	dest = removesuffix(src, ".npy") + ".png"

	try:
		depthpng.save(data, dest, **options)
	except depthpng.PngError as err:
		print(f"depthpng: {src}: {err}")
		return

	try:
		stat = os.stat(dest)
		if stat.st_size == 0:
			raise ValueError("File is zero length.")
	except (FileNotFoundError, ValueError) as err:
		print(f"depthpng: Unable to write {dest}. Aborting.")
		sys.exit(1)

def removesuffix(x:str, suffix:str) -> str:
  if x.endswith(suffix):
    x = x[:-len(suffix)]
  return x
