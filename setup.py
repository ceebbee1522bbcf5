"""
setup.py - this module makes the package installable
"""

from setuptools import setup, find_packages

NAME = "holotweezers"
VERSION = "0.1.0"
DEPENDENCIES = [
    "numpy",
    "scipy",
    "matplotlib",
    "h5py",
    "tqdm"
]
EXTRAS = {
    "gpu": ["cupy"],
    "test": ["pytest"],
}
DESCRIPTION = ("Package for GPU-accelerated phase hologram generation "
               "for holographic optical tweezers.")
AUTHOR = "holotweezers developers"

setup(author=AUTHOR,
      description=DESCRIPTION,
      install_requires=DEPENDENCIES,
      extras_require=EXTRAS,
      packages=find_packages(include=["holotweezers", "holotweezers.*"]),
      python_requires=">=3.8",
      name=NAME,
      version=VERSION,
)
