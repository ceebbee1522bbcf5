"""
GPU-accelerated phase hologram generation for optical traps.

The :class:`~holotweezers.holography.algorithms.HologramSession` class turns a set of
3D spots with relative intensities into a quantized phase pattern for a spatial light
modulator, either by a direct superposition of lenses and prisms or by
`weighted Gerchberg-Saxton (WGS) <https://doi.org/10.1364/OE.15.001913>`_
iteration with per-spot (Fresnel) or FFT (Fourier) propagation.

Tip
~~~
This module makes use of the GPU-accelerated computing library :mod:`cupy`
(`GitHub <https://docs.cupy.dev/en/stable/reference/index.html>`_).
If :mod:`cupy` is not supported, then :mod:`numpy` is used as a fallback, though
CPU alone is significantly slower.

Note
~~~~
Internally, algorithms is split into several hidden files
to enhance clarity and reduce file length.

- ``_header.py`` : The common imports, constants, and errors for all the files.
- ``_buffers.py`` : Allocation and release of the session buffers.
- ``_corrections.py`` : Aberration, lookup polynomial, lookup table, and quantization.
- ``_amplitudes.py`` : Field received by individual points.
- ``_lenses.py``, ``_fresnel.py``, ``_fourier.py`` : The three generators.
- ``_stats.py`` : Statistics and plotting.
- ``_session.py`` : The core file (:class:`HologramSession`).
"""
from holotweezers.holography.algorithms._header import *

from holotweezers.holography.algorithms._session import HologramSession as _HologramSession

# Hack to get automodule to put the class in the correct location.
class HologramSession(_HologramSession):
    pass

# Hack to get the class and attribute docs to work.
HologramSession.__doc__ = _HologramSession.__doc__
