"""
Common type definitions and small numerical helpers.
"""

import numpy as np

INTEGER_TYPES = (
    int,
    np.integer,
)

FLOAT_TYPES = (
    float,
    np.floating,
)

REAL_TYPES = (
    *INTEGER_TYPES,
    *FLOAT_TYPES,
)


def divide_or_one(numerator, denominator, xp=np, atol=1e-12):
    """
    Elementwise ``numerator / denominator``, substituting ``1`` wherever the ratio
    is undefined.

    The ratio is considered undefined where ``|denominator| <= atol`` or where the
    result is not finite. A zero numerator over a valid denominator gives ``0``.
    This is the guard used by the Gerchberg-Saxton weighting rule: a spot which
    receives no light keeps its weight, while a lit spot which should be dark is
    driven to zero.

    Parameters
    ----------
    numerator, denominator : numpy.ndarray OR cupy.ndarray
        Arrays of the same shape.
    xp : module
        :mod:`numpy` or :mod:`cupy`, matching the arrays.
    atol : float
        Magnitudes of ``denominator`` at or below this are treated as zero.

    Returns
    -------
    numpy.ndarray OR cupy.ndarray
        The guarded ratio.
    """
    valid = xp.abs(denominator) > atol
    ratio = xp.where(valid, numerator / xp.where(valid, denominator, 1), 1)
    ratio[xp.logical_not(xp.isfinite(ratio))] = 1

    return ratio
