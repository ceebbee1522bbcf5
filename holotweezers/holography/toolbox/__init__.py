r"""
Helper functions for spot vectors and coordinate grids.

Spots are described by columns of ``(D, N)`` arrays of ``D``-dimensional vectors,
``D`` being 2 (focal plane) or 3 (volume). Several unit systems are used:

-  Length units (``"m"``, ``"mm"``, ``"um"``, ``"nm"``)
    Position of the trap in the sample, relative to the optical axis at the focal
    plane of a Fourier lens of focal length :math:`f`. **This is the unit callers
    use.**

-  ``"norm"``
    Normalized blaze :math:`\frac{k_x}{k} = \frac{x}{f}`. The depth is stored as the
    normalized focal power :math:`\frac{\lambda z}{f^2}` which, multiplied by
    :math:`\pi |\vec{x}|^2`, gives the defocus phase on a grid in wavelengths.
    **This is the unit the algorithms work in.**

-  ``"knm"``
    Integer-spaced bins of the discrete Fourier transform of the ``data_w``-wide
    modulator grid, centered at ``data_w / 2``.
"""

import numpy as np

from holotweezers.misc.math import REAL_TYPES

LENGTH_FACTORS = {
    "m": 1e6,
    "mm": 1e3,
    "um": 1,
    "nm": 1e-3,
}
VECTOR_UNITS = ["norm", "knm"] + list(LENGTH_FACTORS.keys())


def format_vectors(vectors, expected_dimension=2, handle_dimension="pass"):
    """
    Validates that an array of M-dimensional vectors is a ``numpy.ndarray`` of shape ``(M, N)``.
    Handles shaping and transposing if, for instance, tuples or row vectors are passed.

    Parameters
    ----------
    vectors : array_like
        M-vector or array of M-vectors to process.
    expected_dimension : int
        Dimension of the system, i.e. ``M``.
    handle_dimension : {"error", "crop", "pass"}
        What to do with vectors of larger dimension ``K > M``: raise, crop to ``M``,
        or return ``(K, N)``. Smaller dimensionality always raises.

    Returns
    -------
    numpy.ndarray
        Column vectors of shape ``(M, N)`` (or ``(K, N)`` with ``"pass"``).

    Raises
    ------
    ValueError
        If the vector input was inappropriate.
    """
    expected_dimension = int(expected_dimension)

    options_dimension = ["error", "crop", "pass"]
    if not (handle_dimension in options_dimension):
        raise ValueError(
            f"handle_dimension option '{handle_dimension}' not recognized. "
            f"Must be one of '{options_dimension}'."
        )

    vectors = np.squeeze(np.asarray(vectors, dtype=float))

    # Singletons and row vectors.
    if vectors.ndim == 0:
        raise ValueError("Expected vectors, found a scalar.")
    if vectors.ndim == 1:
        vectors = vectors[:, np.newaxis]
    elif vectors.ndim == 2 and vectors.shape[0] == 1:
        vectors = vectors.T

    if vectors.ndim != 2:
        raise ValueError(f"Wrong dimension {vectors.shape} for vectors.")

    if vectors.shape[0] < expected_dimension:
        raise ValueError(f"Expected {expected_dimension}-vectors. Found {vectors.shape[0]}-vectors.")
    elif vectors.shape[0] > expected_dimension:
        if handle_dimension == "crop":
            vectors = vectors[:expected_dimension, :]
        elif handle_dimension == "error":
            raise ValueError(f"Expected {expected_dimension}-vectors. Found {vectors.shape[0]}-vectors.")

    return vectors


def format_3vectors(vectors):
    """
    Validates spot vectors into a ``numpy.ndarray`` of shape ``(3, N)``.
    Focal-plane ``(2, N)`` vectors are padded with :math:`z = 0`.

    Parameters
    ----------
    vectors : array_like
        2- or 3-vectors.

    Returns
    -------
    numpy.ndarray
        Shape ``(3, N)``.
    """
    vectors = format_vectors(vectors, expected_dimension=2, handle_dimension="pass")

    if vectors.shape[0] == 2:
        vectors = np.vstack((vectors, np.zeros((1, vectors.shape[1]))))
    elif vectors.shape[0] > 3:
        raise ValueError(f"Expected 2- or 3-vectors. Found {vectors.shape[0]}-vectors.")

    return vectors


def convert_vector(vector, from_units="um", to_units="norm", wav_um=None, f_um=None, pitch_um=None, data_w=None):
    r"""
    Unit conversions for spot vectors. See the module documentation for the units.

    Parameters
    ----------
    vector : array_like
        Vectors of shape ``(2, N)`` or ``(3, N)``, processed by :meth:`format_vectors()`.
    from_units, to_units : str
        Units to convert between.
    wav_um : float
        Wavelength in microns. Needed for anything but ``"norm"`` to ``"norm"``.
    f_um : float
        Focal length of the Fourier lens in microns. Needed for length units.
    pitch_um : float
        Modulator pixel pitch in microns. Needed for ``"knm"``.
    data_w : int
        Width of the square computational grid. Needed for ``"knm"``.

    Returns
    -------
    numpy.ndarray
        Converted vectors with the same shape as the formatted input.

    Note
    ~~~~
    The depth (third row) is not defined for ``"knm"``; it passes through a
    ``"knm"`` conversion in normalized focal power.
    """
    for units in (from_units, to_units):
        if units not in VECTOR_UNITS:
            raise ValueError(f"Unit '{units}' not recognized. Options: {VECTOR_UNITS}")

    vector = format_vectors(vector, expected_dimension=2, handle_dimension="pass").astype(float)

    if from_units == to_units:
        return vector

    def require(**kwargs):
        for key, value in kwargs.items():
            if value is None:
                raise ValueError(f"{key} is required to convert '{from_units}' to '{to_units}'.")
            if not isinstance(value, REAL_TYPES) or value <= 0:
                raise ValueError(f"{key} must be a positive number; found {value}.")

    vector_xy = vector[:2, :]
    vector_z = vector[2:, :] if vector.shape[0] > 2 else None

    # Into "norm".
    if from_units in LENGTH_FACTORS:
        require(f_um=f_um, wav_um=wav_um)
        scale = LENGTH_FACTORS[from_units]
        norm_xy = vector_xy * (scale / f_um)
        if vector_z is not None:
            vector_z = vector_z * (scale * wav_um / (f_um * f_um))
    elif from_units == "knm":
        require(wav_um=wav_um, pitch_um=pitch_um, data_w=data_w)
        norm_xy = (vector_xy - data_w / 2.0) * (wav_um / (pitch_um * data_w))
    else:
        norm_xy = vector_xy

    # Out of "norm".
    if to_units in LENGTH_FACTORS:
        require(f_um=f_um, wav_um=wav_um)
        scale = LENGTH_FACTORS[to_units]
        vector_xy = norm_xy * (f_um / scale)
        if vector_z is not None:
            vector_z = vector_z * (f_um * f_um / (scale * wav_um))
    elif to_units == "knm":
        require(wav_um=wav_um, pitch_um=pitch_um, data_w=data_w)
        vector_xy = norm_xy * (pitch_um * data_w / wav_um) + data_w / 2.0
    else:
        vector_xy = norm_xy

    if vector_z is None:
        return vector_xy
    return np.vstack((vector_xy, vector_z))


def _process_grid(grid):
    r"""
    Interprets a coordinate grid argument.

    Parameters
    ----------
    grid : (array_like, array_like) OR object with a ``grid`` attribute
        Meshgrids of normalized :math:`\frac{x}{\lambda}` coordinates of the modulator
        pixels, in ``(x_grid, y_grid)`` form. An :class:`~holotweezers.hardware.slms.slm.SLM`
        or :class:`~holotweezers.holography.algorithms.HologramSession` can be passed instead.

    Returns
    -------
    (array_like, array_like)
        The grids in ``(x_grid, y_grid)`` form.
    """
    if hasattr(grid, "grid"):
        grid = grid.grid

    if len(grid) != 2:
        raise ValueError("Expected a 2-tuple with x and y meshgrids.")
    if np.shape(grid[0]) != np.shape(grid[1]):
        raise ValueError("Expected a 2-tuple with x and y meshgrids of the same shape.")

    return grid


def make_grid(data_w, pitch_um, wav_um):
    r"""
    Builds centered meshgrids for a square ``data_w`` by ``data_w`` modulator.

    Coordinates are in wavelengths, :math:`\frac{x}{\lambda}`, measured from the center
    of the grid, so the extreme pixels sit at :math:`\pm\frac{(w-1)}{2}\frac{p}{\lambda}`.

    Parameters
    ----------
    data_w : int
        Width and height in pixels.
    pitch_um : float
        Pixel pitch in microns.
    wav_um : float
        Wavelength in microns.

    Returns
    -------
    (numpy.ndarray, numpy.ndarray)
        ``(x_grid, y_grid)``, each of shape ``(data_w, data_w)``.
    """
    data_w = int(data_w)
    pix = (data_w - 1) * np.linspace(-0.5, 0.5, data_w)
    x = (float(pitch_um) / float(wav_um)) * pix

    return tuple(np.meshgrid(x, x))
