"""
Simulated SLM.
"""

import numpy as np
from .slm import SLM


class SimulatedSLM(SLM):
    """
    A simulated SLM which records every driver call instead of talking to hardware.

    Attributes
    ----------
    frames : list of numpy.ndarray
        Copies of every frame which reached the (simulated) hardware.
    power_log : list of bool
        Every state passed to :meth:`set_power()`.
    initialized : bool
        Whether :meth:`initialize()` has been called since the last :meth:`close()`.
    closed : bool
        Whether :meth:`close()` has been called.
    """

    def __init__(self, resolution, pitch_um=(8, 8), legacy_bus=False, amplitude=None, **kwargs):
        r"""
        Initialize simulated slm.

        Parameters
        ----------
        resolution
            The width and height of the SLM in ``(width, height)`` form.
        pitch_um : (float, float)
            Pixel pitch in microns. Defaults to 8 micron square pixels.
        legacy_bus : bool
            Value reported by :meth:`initialize()`.
        amplitude : numpy.ndarray OR None
            Illumination amplitude stored in :attr:`source` ``["amplitude"]``.
            Uniform if ``None``.
        **kwargs
            See :meth:`.SLM.__init__` for permissible options.
        """
        super().__init__(resolution, pitch_um=pitch_um, **kwargs)

        self._legacy_bus = bool(legacy_bus)

        if amplitude is None:
            self.source["amplitude"] = np.ones(self.shape)
        else:
            amplitude = np.asarray(amplitude, dtype=float)
            if amplitude.shape != self.shape:
                raise ValueError(
                    f"Amplitude of shape {amplitude.shape} does not match the SLM shape {self.shape}."
                )
            self.source["amplitude"] = amplitude

        self.frames = []
        self.power_log = []
        self.initialized = False
        self.closed = False

    def close(self):
        """Marks the simulated device as closed. Safe to call more than once."""
        self.initialized = False
        self.powered = False
        self.closed = True

    def _initialize_hw(self, write_enable, true_frames):
        self.initialized = True
        self.closed = False
        return self._legacy_bus

    def _upload_frame_hw(self, pattern):
        if not self.initialized:
            raise RuntimeError(f"{self.name} must be initialized before uploading frames.")
        self.frames.append(np.copy(pattern))

    def _set_power_hw(self, on):
        self.power_log.append(on)
