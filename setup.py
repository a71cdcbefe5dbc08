"""Build script for libtmatch.

Pure Python.  The GPU backend needs a CUDA or MPS build of torch; without
one, ``MatchEngine`` falls back to the SciPy CPU backend.
"""

from setuptools import setup, find_packages


setup(
    name="libtmatch",
    version="0.1.0",
    description="GPU-accelerated template matching with an FFT CPU fallback",
    packages=find_packages(include=["libtmatch", "libtmatch.*"]),
    python_requires=">=3.8",
    install_requires=[
        "numpy>=1.20",
        "scipy>=1.6",
        "torch>=1.12",
    ],
    extras_require={
        "test": ["pytest", "opencv-python-headless"],
        "examples": ["opencv-python"],
    },
)
