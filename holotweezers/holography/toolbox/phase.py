"""
Analytic phase patterns and the phase-to-level mappings of the output stage.
"""
import numpy as np
try:
    import cupy as cp   # type: ignore
except ImportError:
    cp = np
from math import comb

from holotweezers.holography.toolbox import _process_grid, format_3vectors

POLYNOMIAL_ORDERS = (3, 4, 5, 6, 7)


def _get_xp(array):
    """Returns :mod:`cupy` for cupy arrays and :mod:`numpy` otherwise."""
    if cp == np:
        return np
    return cp.get_array_module(array)


def wrap_phase(phase, out=None):
    r"""
    Wraps phase into :math:`[-\pi, \pi)`.

    Parameters
    ----------
    phase : numpy.ndarray OR cupy.ndarray
        Phase in radians.
    out : numpy.ndarray OR cupy.ndarray OR None
        Where to store the result. May be ``phase`` itself.

    Returns
    -------
    numpy.ndarray OR cupy.ndarray
        The wrapped phase.
    """
    xp = _get_xp(phase)

    if out is None:
        out = xp.empty_like(phase)

    xp.add(phase, np.pi, out=out)
    xp.mod(out, 2 * np.pi, out=out)
    out -= np.pi

    return out


# Lenses and prisms.

def lens_prism_separable(x, y, vectors):
    r"""
    Returns the phase of a lens and prism (blazed grating) toward each vector,
    split into the terms that depend only on :math:`x` and only on :math:`y`.

    .. math:: \theta(x, y) = \underbrace{2\pi k_x x + \pi k_z x^2}_{\theta_x}
                           + \underbrace{2\pi k_y y + \pi k_z y^2}_{\theta_y}

    The full phase is ``theta_y[:, :, None] + theta_x[:, None, :]``. Keeping the
    factors apart turns the per-spot sum over all modulator pixels into two matrix
    products, which is how the algorithms evaluate the propagation kernel.

    Parameters
    ----------
    x, y : numpy.ndarray OR cupy.ndarray
        1D coordinates of the modulator columns and rows in wavelengths.
    vectors : numpy.ndarray OR cupy.ndarray
        Shape ``(3, N)`` in normalized ``"norm"`` units
        (see :meth:`~holotweezers.holography.toolbox.convert_vector()`).

    Returns
    -------
    (numpy.ndarray, numpy.ndarray)
        ``(theta_x, theta_y)`` of shapes ``(N, len(x))`` and ``(N, len(y))``.
    """
    kx = vectors[0, :, None]
    ky = vectors[1, :, None]
    kz = vectors[2, :, None]

    theta_x = (2 * np.pi * kx) * x[None, :] + (np.pi * kz) * (x * x)[None, :]
    theta_y = (2 * np.pi * ky) * y[None, :] + (np.pi * kz) * (y * y)[None, :]

    return theta_x, theta_y


def lens_prism(grid, vector=(0, 0, 0)):
    r"""
    Returns the phase pattern which steers light to a single point in 3D:
    a `blazed grating <https://en.wikipedia.org/wiki/Blazed_grating>`_
    plus a thin lens.

    .. math:: \phi(\vec{x}) = 2\pi \vec{k}_{xy} \cdot \vec{x} + \pi k_z |\vec{x}|^2

    Parameters
    ----------
    grid : (array_like, array_like) OR :class:`~holotweezers.hardware.slms.slm.SLM`
        Meshgrids of normalized :math:`\frac{x}{\lambda}` coordinates.
    vector : (float, float) OR (float, float, float)
        Spot vector in normalized ``"norm"`` units.

    Returns
    -------
    numpy.ndarray
        The unwrapped phase for this function.
    """
    (x_grid, y_grid) = _process_grid(grid)
    vector = format_3vectors(vector)

    theta_x, theta_y = lens_prism_separable(
        np.asarray(x_grid)[0, :], np.asarray(y_grid)[:, 0], vector
    )

    return theta_y[0][:, None] + theta_x[0][None, :]


# Output alphabet.

def quantize(phase, bitresolution=256, lut=None, out=None):
    r"""
    Maps phase in :math:`[-\pi, \pi)` linearly onto the integer levels
    ``0, ..., bitresolution - 1``, optionally passing the levels through a
    lookup table.

    .. math:: \ell = \left\lfloor \frac{\phi + \pi}{2\pi} \cdot 2^b \right\rfloor

    Values outside the range are clipped, so the map is monotonic in phase.

    Parameters
    ----------
    phase : numpy.ndarray OR cupy.ndarray
        Wrapped phase.
    bitresolution : int
        Number of levels in the alphabet.
    lut : numpy.ndarray OR cupy.ndarray OR None
        Table of ``bitresolution`` output values indexed by level.
    out : numpy.ndarray OR cupy.ndarray OR None
        ``uint8`` destination.

    Returns
    -------
    numpy.ndarray OR cupy.ndarray
        ``uint8`` levels.
    """
    xp = _get_xp(phase)

    levels = xp.floor((phase + np.pi) * (bitresolution / (2 * np.pi)))
    xp.clip(levels, 0, bitresolution - 1, out=levels)
    levels = levels.astype(np.int32)

    if lut is not None:
        levels = xp.asarray(lut)[levels]

    if out is None:
        return levels.astype(np.uint8)

    out[...] = levels
    return out


def dequantize(pattern, bitresolution=256):
    r"""
    Inverse of the linear part of :meth:`quantize()`: returns the phase at the
    start of each level's bin, :math:`\phi = \frac{2\pi\ell}{2^b} - \pi`.

    Parameters
    ----------
    pattern : numpy.ndarray OR cupy.ndarray
        Integer levels.
    bitresolution : int
        Number of levels in the alphabet.

    Returns
    -------
    numpy.ndarray OR cupy.ndarray
        Phase in radians.
    """
    return pattern * (2 * np.pi / bitresolution) - np.pi


# Spatially varying lookup polynomial.

def polynomial_terms(order):
    r"""
    Exponents :math:`(i, j, k)` of the monomials :math:`x^i y^j p^k` with
    :math:`i + j + k \le` ``order``.

    Terms are sorted by total degree and then by decreasing :math:`i` and :math:`j`,
    so for any order the list starts with
    :math:`1, x, y, p, x^2, xy, xp, y^2, yp, p^2, \ldots`.
    There are :math:`\binom{n + 3}{3}` terms: 20, 35, 56, 84, 120 for orders 3 to 7.

    Parameters
    ----------
    order : int
        Maximum total degree.

    Returns
    -------
    numpy.ndarray
        Shape ``(D, 3)`` integer exponents.
    """
    order = int(order)
    terms = []

    for degree in range(order + 1):
        for i in range(degree, -1, -1):
            for j in range(degree - i, -1, -1):
                terms.append((i, j, degree - i - j))

    terms = np.array(terms, dtype=int).reshape((-1, 3))
    return terms


def polynomial_levels(x, y, phase, coeffs, terms=None, bitresolution=256, out=None):
    r"""
    Evaluates the lookup polynomial which maps pixel position and phase to an
    output level,

    .. math:: \ell(x, y, \phi) = \sum_{(i, j, k)} c_{ijk} \, x^i y^j p^k,
              \quad p = \frac{\phi + \pi}{2\pi},

    rounded and clipped to ``0, ..., bitresolution - 1``. This compensates a phase
    response which varies across the modulator.

    Parameters
    ----------
    x, y : numpy.ndarray OR cupy.ndarray
        1D pixel coordinates normalized to :math:`[-1, 1]`.
    phase : numpy.ndarray OR cupy.ndarray
        Wrapped phase of shape ``(len(y), len(x))``.
    coeffs : array_like
        Shape ``(D,)`` coefficients ordered as :meth:`polynomial_terms()`.
    terms : numpy.ndarray OR None
        Exponents. If ``None``, deduced from the number of coefficients.
    bitresolution : int
        Number of output levels.
    out : numpy.ndarray OR cupy.ndarray OR None
        ``uint8`` destination.

    Returns
    -------
    numpy.ndarray OR cupy.ndarray
        ``uint8`` levels.
    """
    xp = _get_xp(phase)
    coeffs = np.asarray(coeffs.get() if hasattr(coeffs, "get") else coeffs, dtype=float)

    if terms is None:
        orders = [n for n in range(32) if comb(n + 3, 3) == len(coeffs)]
        if len(orders) == 0:
            raise ValueError(f"{len(coeffs)} coefficients do not match any polynomial order.")
        terms = polynomial_terms(orders[0])
    if len(terms) != len(coeffs):
        raise ValueError(f"Expected {len(terms)} coefficients; found {len(coeffs)}.")

    order = int(np.max(terms))
    p = (phase + np.pi) * (1 / (2 * np.pi))

    # Cache powers; x and y stay 1D and broadcast.
    x_pow = [xp.ones_like(x)]
    y_pow = [xp.ones_like(y)]
    p_pow = [xp.ones_like(p)]
    for _ in range(order):
        x_pow.append(x_pow[-1] * x)
        y_pow.append(y_pow[-1] * y)
        p_pow.append(p_pow[-1] * p)

    levels = xp.zeros_like(p)
    for (i, j, k), c in zip(terms, coeffs):
        if c != 0:
            levels += c * (y_pow[j][:, None] * x_pow[i][None, :]) * p_pow[k]

    xp.rint(levels, out=levels)
    xp.clip(levels, 0, bitresolution - 1, out=levels)

    if out is None:
        return levels.astype(np.uint8)

    out[...] = levels
    return out
