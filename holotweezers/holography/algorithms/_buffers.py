from holotweezers.holography.algorithms._header import *


def _get(array):
    """Host copy of a device (or host) array."""
    if hasattr(array, "get"):
        return array.get()
    return np.array(array, copy=True)


class _SessionBuffers(object):
    """
    Device buffer pool of a :class:`HologramSession`.

    Every buffer used by the three generators is allocated once by :meth:`_allocate_buffers()`
    at a size fixed by :attr:`data_w`, :attr:`spot_capacity`, and :attr:`max_iterations`,
    and is released by :meth:`_release_buffers()`. Between the two, generation calls only
    ever write into these buffers in place.

    Optional correction buffers (:attr:`aberration`, :attr:`polynomial`, :attr:`lut`)
    are either present or ``None``; their presence is what enables them.
    """

    # Names of the buffers allocated by start().
    _buffer_names = [
        "amp",
        "x",
        "y",
        "x_norm",
        "y_norm",
        "phase",
        "phase_reference",
        "field",
        "pattern",
        "spot_vectors",
        "spot_intensity",
        "spot_fields",
        "weights",
        "amplitudes",
    ]
    _correction_names = ["aberration", "polynomial", "lut"]

    def _clear_buffers(self):
        """Sets every buffer attribute to ``None``."""
        for name in self._buffer_names + self._correction_names:
            setattr(self, name, None)
        self.amp_sum = None
        self.amp_power = None

    def _allocate_buffers(self):
        """
        Allocates and initializes all buffers on the active device.
        The working phase starts at zero.
        """
        W = self.data_w
        C = self.spot_capacity
        M = self.max_iterations

        # Illumination.
        self.amp = cp.asarray(self._amp_host, dtype=self.dtype)
        self.amp_sum = float(cp.sum(self.amp))
        self.amp_power = float(cp.sum(self.amp * self.amp))
        if self.amp_sum <= 0:
            raise ValueError("The illumination amplitude must not be identically zero.")

        # Coordinates. Rows and columns share the same 1D grid since the modulator is square.
        (x_grid, _) = toolbox.make_grid(W, self.pitch_um, self.wav_um)
        self.x = cp.asarray(x_grid[0, :], dtype=self.dtype)
        self.y = cp.asarray(x_grid[0, :], dtype=self.dtype)
        norm = cp.asarray(np.linspace(-1, 1, W), dtype=self.dtype)
        self.x_norm = norm
        self.y_norm = norm

        # Fields.
        self.phase = cp.zeros((W, W), dtype=self.dtype)
        self.phase_reference = cp.zeros((W, W), dtype=self.dtype)
        self.field = cp.zeros((W, W), dtype=self.dtype_complex)
        self.pattern = cp.zeros((W, W), dtype=np.uint8)

        # Spots and their histories.
        self.spot_vectors = cp.zeros((3, C), dtype=self.dtype)
        self.spot_intensity = cp.zeros((C,), dtype=self.dtype)
        self.spot_fields = cp.zeros((C,), dtype=self.dtype_complex)
        self.weights = cp.zeros((M + 1, C), dtype=self.dtype)
        self.amplitudes = cp.zeros((M + 1, C), dtype=self.dtype)

    def _release_buffers(self):
        """Drops every buffer and returns pooled device memory."""
        self._clear_buffers()

        if cp != np:
            cp.get_default_memory_pool().free_all_blocks()
            cp.get_default_pinned_memory_pool().free_all_blocks()

    def _require_started(self, operation):
        if not self.started:
            raise SessionError(
                f"{operation}() requires a started session; call start() first."
            )

    @staticmethod
    def _device_capabilities(device):
        """
        Describes the device selected for computation.

        Returns
        -------
        dict
            ``"name"``, ``"device"``, ``"cupy"``, ``"max_work_items"`` (threads per block
            on GPU, logical cores on CPU), and ``"memory_bytes"`` (``None`` when unknown).
        """
        if cp == np:
            return {
                "name": platform.processor() or platform.machine() or "cpu",
                "device": int(device),
                "cupy": False,
                "max_work_items": os.cpu_count() or 1,
                "memory_bytes": None,
            }

        properties = cp.cuda.runtime.getDeviceProperties(int(device))
        name = properties["name"]
        if isinstance(name, bytes):
            name = name.decode()

        return {
            "name": name,
            "device": int(device),
            "cupy": True,
            "max_work_items": int(properties["maxThreadsPerBlock"]),
            "memory_bytes": int(properties["totalGlobalMem"]),
        }

    # Spots.

    def _load_spots(self, spot_vectors, spot_intensity=None):
        """
        Converts spots to normalized units and copies them into the spot buffers.
        Spots beyond :attr:`spot_capacity` are dropped with a warning.

        Parameters
        ----------
        spot_vectors : array_like
            ``(2, N)`` or ``(3, N)`` spot positions in microns.
        spot_intensity : array_like OR None
            ``(N,)`` relative intensities. Uniform if ``None``.

        Returns
        -------
        int
            Number of spots loaded.
        """
        vectors = toolbox.format_3vectors(spot_vectors)
        N = vectors.shape[1]

        if spot_intensity is None:
            intensity = np.ones(N)
        else:
            intensity = np.ravel(np.asarray(spot_intensity, dtype=float))
            if intensity.size != N:
                raise ValueError(
                    f"Expected {N} spot intensities; found {intensity.size}."
                )
        if not np.all(np.isfinite(vectors)) or not np.all(np.isfinite(intensity)):
            raise ValueError("Spot vectors and intensities must be finite.")
        if np.any(intensity < 0):
            raise ValueError("Spot intensities must be non-negative.")

        if N > self.spot_capacity:
            warnings.warn(
                f"{N} spots exceed the capacity of {self.spot_capacity}; "
                f"only the first {self.spot_capacity} are used."
            )
            N = self.spot_capacity
            vectors = vectors[:, :N]
            intensity = intensity[:N]

        if np.sum(intensity) <= 0:
            raise ValueError("At least one spot must have positive intensity.")

        vectors_norm = toolbox.convert_vector(
            vectors, from_units="um", to_units="norm", wav_um=self.wav_um, f_um=self.f_um
        )

        self.spot_vectors.fill(0)
        self.spot_intensity.fill(0)
        self.spot_vectors[:, :N] = cp.asarray(vectors_norm, dtype=self.dtype)
        self.spot_intensity[:N] = cp.asarray(intensity / np.sum(intensity), dtype=self.dtype)

        return N

    def _desired_amplitudes(self, N):
        r"""
        Desired relative amplitudes :math:`\sqrt{I_m / \sum I}` of the loaded spots.
        """
        return cp.sqrt(self.spot_intensity[:N])

    # User-facing accessors.

    @property
    def grid(self):
        """Host meshgrids of the modulator coordinates in wavelengths, ``(x_grid, y_grid)``."""
        return toolbox.make_grid(self.data_w, self.pitch_um, self.wav_um)

    def get_phase(self):
        """
        Returns a host copy of the working phase field.

        Returns
        -------
        numpy.ndarray
            Phase in :math:`[-\\pi, \\pi)` of shape ``(data_w, data_w)``, before corrections.
        """
        self._require_started("get_phase")
        return _get(self.phase)

    def get_pattern(self):
        """
        Returns a host copy of the last quantized pattern.

        Returns
        -------
        numpy.ndarray
            ``uint8`` levels of shape ``(data_w, data_w)``.
        """
        self._require_started("get_pattern")
        return _get(self.pattern)
