import setuptools

setuptools.setup(
  name="depthpng",
  version="1.0.0",
  description="Encode depth maps and other 2D float fields as PNG images.",
  python_requires=">=3.8",
  packages=[ "depthpng", "depthpng_cli" ],
  install_requires=[
    "numpy",
    "click",
  ],
  extras_require={
    "test": [
      "pytest",
    ],
  },
  entry_points={
    "console_scripts": [
      "depthpng=depthpng_cli:main"
    ],
  },
)
