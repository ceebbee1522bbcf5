import matplotlib.pyplot as plt
from tqdm.auto import tqdm
import warnings
import pprint
import platform
import os
from contextlib import contextmanager

# Import numpy and scipy dependencies.
import numpy as np
import scipy.fft as spfft

# Try to import cupy, but revert to base numpy/scipy upon ImportError.
try:
    import cupy as cp                                                           # type: ignore
    import cupyx.scipy.fft as cpfft                                             # type: ignore
except ImportError:
    cp = np
    cpfft = spfft
    warnings.warn(
        "cupy is not installed; using numpy. Install cupy for faster GPU-based holography."
    )

# Import helper functions
from holotweezers.holography import toolbox
from holotweezers.holography.toolbox import phase as tphase
from holotweezers.misc.math import INTEGER_TYPES, REAL_TYPES, divide_or_one
from holotweezers.misc.files import generate_path, save_h5, load_h5

# Generation methods. Numeric selectors are accepted as well as names.
# Caution: The order of this list defines the numeric selector.
METHODS = ["LP", "GS-Fresnel", "GS-Fourier"]
METHOD_INDEX = {key: i for i, key in enumerate(METHODS)}

# Methods need at least this many spots to iterate.
MIN_ITERATIVE_SPOTS = 3

# Default capacities. Buffers are sized from these at start().
SPOT_CAPACITY = 1024
MAX_ITERATIONS = 1000
AMPLITUDE_BATCH = 512

# Output alphabet.
BITRESOLUTION = 256

# Device errors which can surface from a dispatch or an allocation.
if cp == np:
    _ALLOCATION_ERRORS = (MemoryError,)
    _EXECUTION_ERRORS = (FloatingPointError,)
else:
    _ALLOCATION_ERRORS = (MemoryError, cp.cuda.memory.OutOfMemoryError)
    _EXECUTION_ERRORS = (cp.cuda.runtime.CUDARuntimeError, cp.cuda.driver.CUDADriverError)


class SessionError(RuntimeError):
    """Raised when a :class:`HologramSession` is used outside of ``start()``/``stop()``."""


class DeviceError(RuntimeError):
    """
    A device allocation or dispatch failed.

    Work dispatched before the failure is not rolled back, so session buffers may hold
    partial results. The session stays started; ``stop()`` still releases it.

    Attributes
    ----------
    operation : str
        Name of the session operation which failed.
    """
    def __init__(self, operation, message):
        self.operation = operation
        super().__init__(f"{operation}: {message}")


class DeviceAllocationError(DeviceError):
    """The device ran out of memory."""


class DeviceExecutionError(DeviceError):
    """A device dispatch faulted."""


def _synchronize():
    """Blocks until every pending device dispatch is complete."""
    if cp != np:
        cp.cuda.get_current_stream().synchronize()


@contextmanager
def _device_operation(operation):
    """
    Wraps device errors raised within the block (or surfacing at the final
    synchronization) into :class:`DeviceError` subclasses named after ``operation``.
    """
    try:
        yield
        _synchronize()
    except _ALLOCATION_ERRORS as err:
        raise DeviceAllocationError(operation, str(err)) from err
    except _EXECUTION_ERRORS as err:
        raise DeviceExecutionError(operation, str(err)) from err
