"""
Abstract functionality for phase modulator drivers.

The hologram engine only ever talks to a modulator through four calls:
:meth:`SLM.initialize()`, :meth:`SLM.upload_frame()`, :meth:`SLM.set_power()`, and
:meth:`SLM.close()`. Vendor subclasses implement the private ``_*_hw`` methods.
"""

import os
import warnings

import numpy as np
import matplotlib.pyplot as plt
from mpl_toolkits.axes_grid1 import make_axes_locatable

from holotweezers import __version__
from holotweezers.hardware import _Picklable
from holotweezers.misc.math import REAL_TYPES
from holotweezers.misc.files import generate_path, latest_path, save_h5, load_h5


def parse_lut(lut, bitresolution=256):
    """
    Validates a lookup table into ``bitresolution`` ``uint8`` entries.

    Parameters
    ----------
    lut : array_like
        Shape ``(bitresolution,)`` values, or ``(bitresolution, 2)`` rows of
        ``(level, value)``.
    bitresolution : int
        Number of levels.

    Returns
    -------
    numpy.ndarray
        The table.
    """
    if hasattr(lut, "get"):
        lut = lut.get()
    lut = np.squeeze(np.asarray(lut, dtype=float))

    if lut.ndim == 2:
        lut = lut[:, -1]        # (level, value) rows.
    if lut.shape != (bitresolution,):
        raise ValueError(
            f"Expected a lookup table with {bitresolution} entries; found shape {lut.shape}."
        )
    if np.any(lut < 0) or np.any(lut >= bitresolution):
        raise ValueError(f"Lookup table values must be within [0, {bitresolution}).")

    return np.rint(lut).astype(np.uint8)


def read_lut(file_path, bitresolution=256):
    """
    Loads a lookup table from a file.

    Parameters
    ----------
    file_path : str
        Either an ``.h5`` file with a ``"lut"`` dataset, or a whitespace- or
        comma-delimited text file with one column (values) or two columns
        (level, value) and one row per level.
    bitresolution : int
        Number of levels.

    Returns
    -------
    numpy.ndarray
        The ``uint8`` table.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    """
    if not os.path.isfile(file_path):
        raise FileNotFoundError(f"Lookup table '{file_path}' not found.")

    if os.path.splitext(file_path)[1].lower() == ".h5":
        lut = load_h5(file_path)["lut"]
    else:
        with open(file_path, "r") as file_:
            delimiter = "," if "," in file_.readline() else None
        lut = np.loadtxt(file_path, delimiter=delimiter)

    return parse_lut(lut, bitresolution)


class SLM(_Picklable):
    r"""
    Abstract class for spatial light modulators.

    Attributes
    ----------
    name : str
        Name of the SLM.
    shape : (int, int)
        Stores ``(height, width)`` of the SLM in pixels, the same convention as :attr:`numpy.ndarray.shape`.
    bitdepth : int
        Depth of the SLM pixel well in bits. Only 8-bit modulators are driven by the
        hologram engine.
    bitresolution : int
        Stores ``2 ** bitdepth``.
    pitch_um : numpy.ndarray
        Pixel pitch in microns, ``(x, y)``.
    pitch : numpy.ndarray
        Pixel pitch normalized to wavelengths ``pitch_um / wav_um``.
    wav_um : float
        Operating wavelength in microns.
    grid : (numpy.ndarray<float> (height, width), numpy.ndarray<float> (height, width))
        :math:`x` and :math:`y` coordinates of the SLM's pixels in wavelengths
        measured from the center of the SLM.
    source : dict
        Measured or assumed properties of the illumination. The key ``"amplitude"``
        (shape :attr:`shape`), if present, is used by the hologram engine as the
        illumination amplitude.
    lut : numpy.ndarray OR None
        256-entry table mapping linear levels to the values written to the hardware,
        compensating a nonlinear phase response. Filled by :meth:`initialize()`.
    write_enable : bool
        Whether :meth:`upload_frame()` reaches the hardware.
    legacy_bus : bool OR None
        Whether the device was found on the legacy bus. ``None`` before :meth:`initialize()`.
    true_frames : int
        Frame timing parameter passed to the hardware; number of refreshes per frame.
    powered : bool
        Whether the modulator drive is on.
    display : numpy.ndarray
        Last pattern written, in integer levels.
    """
    _pickle = [
        "name",
        "shape",
        "bitdepth",
        "bitresolution",
        "pitch_um",
        "pitch",
        "wav_um",
        "write_enable",
        "true_frames",
    ]
    _pickle_data = [
        "lut",
        "display",
    ]

    def __init__(
        self,
        resolution,
        bitdepth=8,
        name="SLM",
        wav_um=1.064,
        pitch_um=(8, 8),
    ):
        """
        Initialize SLM.

        Parameters
        ----------
        resolution
            The width and height of the SLM in ``(width, height)`` form.

            Important
            ~~~~~~~~~
            This is the opposite of the numpy ``(height, width)``
            convention stored in :attr:`shape`.
        bitdepth
            See :attr:`bitdepth`. Defaults to 8.
        name
            See :attr:`name`.
        wav_um
            See :attr:`wav_um`. Defaults to 1064 nm.
        pitch_um
            See :attr:`pitch_um`. Defaults to 8 micron square pixels.
        """
        self.name = str(name)
        width, height = resolution
        self.shape = (int(height), int(width))

        self.wav_um = float(wav_um)

        self.bitdepth = int(bitdepth)
        self.bitresolution = 2 ** self.bitdepth
        if self.bitdepth > 8:
            raise ValueError(f"Only 8-bit modulators are supported; found bitdepth {self.bitdepth}.")
        self.dtype = np.uint8

        if isinstance(pitch_um, REAL_TYPES):
            pitch_um = [pitch_um, pitch_um]
        pitch_um = np.squeeze(pitch_um)
        if pitch_um.size != 2:
            raise ValueError("Expected (float, float) for pitch_um")
        self.pitch_um = np.array([float(pitch_um[0]), float(pitch_um[1])])
        self.pitch = self.pitch_um / self.wav_um

        xpix = (width - 1) * np.linspace(-0.5, 0.5, width)
        ypix = (height - 1) * np.linspace(-0.5, 0.5, height)
        self.grid = list(np.meshgrid(self.pitch[0] * xpix, self.pitch[1] * ypix))

        self.source = {}

        self.lut = None
        self.write_enable = False
        self.legacy_bus = None
        self.true_frames = 3
        self.powered = False

        self.display = np.zeros(self.shape, dtype=self.dtype)

    def close(self):
        """Abstract method to close the SLM and release the driver."""
        raise NotImplementedError()

    # Lookup tables.

    def _parse_lut(self, lut):
        """Validates a lookup table into ``bitresolution`` ``uint8`` entries."""
        return parse_lut(lut, self.bitresolution)

    def load_lut(self, file_path):
        """Loads a lookup table for this SLM. See :meth:`read_lut()`."""
        return read_lut(file_path, self.bitresolution)

    # Driver calls.

    def _initialize_hw(self, write_enable, true_frames):
        """
        Abstract method to open the device. Subclasses **should** overwrite this.

        Returns
        -------
        bool
            Whether the device sits on the legacy bus.
        """
        raise NotImplementedError()

    def initialize(self, write_enable=True, lut_file=None, lut=None, true_frames=3):
        """
        Opens the device and loads the lookup table.

        Parameters
        ----------
        write_enable : bool
            Whether frames should reach the hardware. If ``False``, frames are only
            cached in :attr:`display`.
        lut_file : str OR None
            File to load the lookup table from (see :meth:`load_lut()`).
        lut : array_like OR None
            Lookup table passed directly. Takes precedence over ``lut_file``.
        true_frames : int
            See :attr:`true_frames`.

        Returns
        -------
        bool
            See :attr:`legacy_bus`.
        """
        if lut is not None:
            self.lut = self._parse_lut(lut)
        elif lut_file is not None:
            self.lut = self.load_lut(lut_file)

        self.write_enable = bool(write_enable)
        self.true_frames = int(true_frames)
        if self.true_frames < 1:
            raise ValueError(f"true_frames must be positive; found {true_frames}.")

        self.legacy_bus = bool(self._initialize_hw(self.write_enable, self.true_frames))

        return self.legacy_bus

    def _upload_frame_hw(self, pattern):
        """
        Abstract method to send a frame to the device. Subclasses **should** overwrite this.
        :meth:`upload_frame()` contains error checks and overhead, then calls :meth:`_upload_frame_hw()`.
        """
        raise NotImplementedError()

    def upload_frame(self, pattern):
        """
        Checks and writes a pattern of integer levels to the SLM.

        Warning
        ~~~~~~~
        Subclasses *should not* overwrite this method. Subclasses *should* overwrite
        :meth:`_upload_frame_hw()` instead.

        Parameters
        ----------
        pattern : numpy.ndarray
            ``uint8`` levels of shape :attr:`shape`.

        Returns
        -------
        numpy.ndarray
            :attr:`display`, the data sent to the SLM.

        Raises
        ------
        TypeError
            If the data is not of type :attr:`dtype`.
        ValueError
            If the data does not have shape :attr:`shape`.
        """
        if hasattr(pattern, "get"):
            pattern = pattern.get()
        pattern = np.asarray(pattern)

        if pattern.dtype != self.dtype:
            raise TypeError(f"Unexpected type {pattern.dtype}. Expected {np.dtype(self.dtype)}.")
        if pattern.shape != self.shape:
            raise ValueError(f"Pattern of shape {pattern.shape} does not match the SLM shape {self.shape}.")

        np.copyto(self.display, pattern)

        if self.write_enable:
            self._upload_frame_hw(self.display)

        return self.display

    def _set_power_hw(self, on):
        """Abstract method to switch the modulator drive."""
        raise NotImplementedError()

    def set_power(self, on=True):
        """
        Switches the modulator drive on or off.

        Parameters
        ----------
        on : bool
            Desired state.
        """
        self._set_power_hw(bool(on))
        self.powered = bool(on)

    # Display helpers.

    def plot(self, pattern=None, title="Display", ax=None, cbar=True):
        """
        Plots the provided pattern of levels.

        Parameters
        ----------
        pattern : numpy.ndarray OR None
            Pattern to plot. If ``None``, plots the last written :attr:`display`.
        title : str
            Title the axis.
        ax : matplotlib.pyplot.axis OR None
            Axis to plot upon.
        cbar : bool
            Also plot a colorbar.

        Returns
        -------
        matplotlib.pyplot.axis
            Axis of the plotted pattern.
        """
        if pattern is None:
            pattern = self.display
        if hasattr(pattern, "get"):
            pattern = pattern.get()

        if ax is None:
            _, ax = plt.subplots(1, 1, figsize=(8, 8))

        im = ax.imshow(
            pattern, clim=[0, self.bitresolution - 1], cmap="twilight", interpolation="none"
        )

        if cbar:
            cax = make_axes_locatable(ax).append_axes("right", size="2%", pad=0.05)
            ax.figure.colorbar(im, cax=cax, orientation="vertical")

        ax.set_title(title)
        ax.set_xlabel("SLM $n$ [pix]")
        ax.set_ylabel("SLM $m$ [pix]")

        return ax

    def save_frame(self, path=".", name=None):
        """
        Saves :attr:`display` (and :attr:`lut`) to a file like ``"path/name_id.h5"``.

        Parameters
        ----------
        path : str
            Directory to save in.
        name : str OR None
            File stem. Defaults to :attr:`name` + ``"-frame"``.

        Returns
        -------
        str
            The file path written.
        """
        if name is None:
            name = self.name + "-frame"
        file_path = generate_path(path, name, extension="h5")

        save_h5(
            file_path,
            {
                "__version__": __version__,
                "display": self.display,
                "lut": self.lut,
            }
        )

        return file_path

    def load_frame(self, file_path=None):
        """
        Loads a frame saved by :meth:`save_frame()` and writes it to the SLM.

        Parameters
        ----------
        file_path : str OR None
            Full path of the file. If ``None``, the latest file in the current
            directory named like :attr:`name` + ``"-frame"`` is used.

        Returns
        -------
        str
            The file path read.

        Raises
        ------
        FileNotFoundError
            If no file is found.
        """
        if file_path is None:
            path = os.path.abspath(".")
            name = self.name + "-frame"
            file_path = latest_path(path, name, extension="h5")
            if file_path is None:
                raise FileNotFoundError(
                    "Unable to find a frame file like\n{}".format(os.path.join(path, name))
                )

        data = load_h5(file_path)

        if "lut" in data and self.lut is not None and not np.array_equal(data["lut"], self.lut):
            warnings.warn("The frame was saved with a different lookup table than the one loaded.")

        self.upload_frame(np.asarray(data["display"], dtype=self.dtype))

        return file_path

