from holotweezers.holography.algorithms._header import *
from holotweezers.holography.algorithms._header import _device_operation
from holotweezers.holography.algorithms._buffers import _SessionBuffers, _get
from holotweezers.holography.algorithms._corrections import _SessionCorrections
from holotweezers.holography.algorithms._amplitudes import _SessionAmplitudes
from holotweezers.holography.algorithms._lenses import _SessionLenses
from holotweezers.holography.algorithms._fresnel import _SessionFresnel
from holotweezers.holography.algorithms._fourier import _SessionFourier
from holotweezers.holography.algorithms._stats import _SessionStats


class HologramSession(
    _SessionBuffers,
    _SessionCorrections,
    _SessionAmplitudes,
    _SessionLenses,
    _SessionFresnel,
    _SessionFourier,
    _SessionStats,
):
    r"""
    Computes phase patterns which focus light into a set of 3D spots (optical traps).

    A session owns every buffer its generators need. These are allocated once by
    :meth:`start()` at sizes fixed by :attr:`data_w`, :attr:`spot_capacity`, and
    :attr:`max_iterations`, reused by every :meth:`generate()` call, and released by
    :meth:`stop()`. Sessions are independent; several may coexist. A session is not
    thread safe; callers should serialize access.

    Spots are given in microns at the focal plane of a Fourier lens of focal length
    :attr:`f_um`, where :math:`z` is the displacement along the optical axis.
    Three generators are available (see :meth:`generate()`):

    - ``"LP"`` (``0``), lenses and prisms, a single weighted superposition,
    - ``"GS-Fresnel"`` (``1``), weighted GS with per-spot propagation, any 3D spots,
    - ``"GS-Fourier"`` (``2``), weighted GS with FFT propagation, spots in the focal plane.

    Example
    ~~~~~~~
    .. code-block:: python

        slm = SimulatedSLM((512, 512))
        with HologramSession(slm) as session:
            pattern, weights, amplitudes = session.generate(
                [[-20, 0, 20], [0, 10, 0], [0, 0, 5]], n_iterations=20, method="GS-Fresnel"
            )

    Attributes
    ----------
    slm : :class:`~holotweezers.hardware.slms.slm.SLM` OR None
        Modulator driven when hardware output is enabled. Also the source of the optical
        parameters when they are not given.
    data_w : int
        Width and height of the square modulator in pixels.
    spot_capacity : int
        Maximum number of spots per call. Extra spots are dropped with a warning.
    max_iterations : int
        Maximum number of iterations per call. Extra iterations are dropped with a warning.
    wav_um, f_um, pitch_um : float
        Wavelength, Fourier lens focal length, and modulator pixel pitch in microns.
    dtype : type
        Real datatype of the device buffers, ``numpy.float32`` or ``numpy.float64``.
    dtype_complex : type
        Matching complex datatype.
    started : bool
        Whether the buffers are allocated.
    hardware_output : bool
        Whether patterns are uploaded to :attr:`slm`.
    capabilities : dict OR None
        Device description returned by :meth:`start()`.
    flags : dict
        Options of the last :meth:`generate()` call.
    stats : dict
        Statistics of the last :meth:`generate()` call. See :meth:`plot_stats()`.
    """

    def __init__(
        self,
        slm=None,
        data_w=None,
        spot_capacity=SPOT_CAPACITY,
        max_iterations=MAX_ITERATIONS,
        wav_um=None,
        f_um=4000.0,
        pitch_um=None,
        amp=None,
        dtype=np.float32,
    ):
        """
        Initializes a session. No device memory is touched until :meth:`start()`.

        Parameters
        ----------
        slm : :class:`~holotweezers.hardware.slms.slm.SLM` OR None
            Modulator to drive. Must be square. Provides the defaults for ``data_w``,
            ``wav_um``, ``pitch_um``, and ``amp`` (from ``slm.source["amplitude"]``).
        data_w : int OR None
            Width of the square modulator. Defaults to the SLM width, or 512.
        spot_capacity : int
            Maximum number of spots per call.
        max_iterations : int
            Maximum number of iterations per call.
        wav_um : float OR None
            Wavelength in microns. Defaults to the SLM wavelength, or 1.064.
        f_um : float
            Focal length of the Fourier lens in microns.
        pitch_um : float OR None
            Pixel pitch in microns. Defaults to the SLM pitch, or 8.
        amp : array_like OR None
            Illumination amplitude on the modulator of shape ``(data_w, data_w)``.
            Defaults to uniform.
        dtype : type
            ``numpy.float32`` (default, with ``numpy.complex64``) or ``numpy.float64``
            (with ``numpy.complex128``).
        """
        self.slm = slm

        # Geometry and optics.
        if slm is not None:
            if slm.shape[0] != slm.shape[1]:
                raise ValueError(f"The modulator must be square; found shape {slm.shape}.")
            if data_w is None:
                data_w = slm.shape[1]
            elif int(data_w) != slm.shape[1]:
                raise ValueError(f"data_w={data_w} does not match the modulator width {slm.shape[1]}.")
            if wav_um is None:
                wav_um = slm.wav_um
            if pitch_um is None:
                if slm.pitch_um[0] != slm.pitch_um[1]:
                    raise ValueError(f"The modulator pixels must be square; found pitch {slm.pitch_um}.")
                pitch_um = slm.pitch_um[0]
            if amp is None:
                amp = slm.source.get("amplitude", None)

        self.data_w = 512 if data_w is None else int(data_w)
        self.wav_um = 1.064 if wav_um is None else float(wav_um)
        self.f_um = float(f_um)
        self.pitch_um = 8.0 if pitch_um is None else float(pitch_um)

        for key in ["data_w", "wav_um", "f_um", "pitch_um"]:
            if not getattr(self, key) > 0:
                raise ValueError(f"{key} must be positive; found {getattr(self, key)}.")

        # Capacities.
        if not isinstance(spot_capacity, INTEGER_TYPES) or spot_capacity < 1:
            raise ValueError(f"spot_capacity must be a positive integer; found {spot_capacity}.")
        if not isinstance(max_iterations, INTEGER_TYPES) or max_iterations < 1:
            raise ValueError(f"max_iterations must be a positive integer; found {max_iterations}.")
        self.spot_capacity = int(spot_capacity)
        self.max_iterations = int(max_iterations)

        # Datatypes.
        if dtype == np.float32:
            self.dtype = np.float32
            self.dtype_complex = np.complex64
        elif dtype == np.float64:
            self.dtype = np.float64
            self.dtype_complex = np.complex128
        else:
            raise ValueError(f"dtype {dtype} not supported; use numpy.float32 or numpy.float64.")

        # Illumination, kept on the host until start().
        if amp is None:
            self._amp_host = np.ones((self.data_w, self.data_w))
        else:
            self._amp_host = np.asarray(amp.get() if hasattr(amp, "get") else amp, dtype=float)
            if self._amp_host.shape != (self.data_w, self.data_w):
                raise ValueError(
                    f"Amplitude of shape {self._amp_host.shape} does not match "
                    f"({self.data_w}, {self.data_w})."
                )

        # State.
        self.started = False
        self.hardware_output = False
        self.capabilities = None
        self.flags = {}
        self.stats = {}
        self._clear_buffers()

    def __repr__(self):
        return (
            f"{self.__class__.__name__}(data_w={self.data_w}, spot_capacity={self.spot_capacity}, "
            f"max_iterations={self.max_iterations}, started={self.started})"
        )

    # Lifecycle.

    def start(self, hardware_output=False, device=0, lut_file=None, true_frames=3):
        """
        Allocates every buffer and, optionally, brings up the modulator.

        Parameters
        ----------
        hardware_output : bool
            Whether to initialize :attr:`slm`, power it, and upload every generated pattern.
            The SLM lookup table (if any) is installed as the session's table.
        device : int
            GPU to compute on. Ignored without :mod:`cupy`.
        lut_file : str OR None
            Lookup table file. Passed to the SLM when ``hardware_output``, otherwise
            installed directly with :meth:`set_lut()`.
        true_frames : int
            Frames the SLM holds each pattern for. Passed to the SLM.

        Returns
        -------
        dict
            Device description: ``"name"``, ``"device"``, ``"cupy"``, ``"max_work_items"``,
            ``"memory_bytes"``, and ``"legacy_bus"`` (whether the SLM uses its legacy bus;
            ``False`` without hardware output).

        Raises
        ------
        SessionError
            If already started.
        ValueError
            If hardware output is requested without an SLM, or for an SLM whose
            levels do not match the output alphabet.
        DeviceAllocationError
            If the device cannot hold the buffers. Nothing stays allocated.
        """
        if self.started:
            raise SessionError("The session is already started; call stop() first.")
        if hardware_output and self.slm is None:
            raise ValueError("Hardware output requires an SLM.")
        if hardware_output and self.slm.bitresolution != BITRESOLUTION:
            raise ValueError(
                f"Hardware output requires a {BITRESOLUTION}-level modulator; "
                f"{self.slm.name} has {self.slm.bitresolution} levels."
            )

        if cp != np:
            cp.cuda.Device(int(device)).use()
        capabilities = self._device_capabilities(device)

        try:
            with _device_operation("start"):
                self._allocate_buffers()
        except (DeviceError, ValueError):
            self._release_buffers()
            raise
        self.started = True

        legacy_bus = False
        if hardware_output:
            legacy_bus = self.slm.initialize(
                write_enable=True, lut_file=lut_file, true_frames=true_frames
            )
            self.slm.set_power(True)
            self.hardware_output = True
            if self.slm.lut is not None:
                self.set_lut(self.slm.lut)
        elif lut_file is not None:
            self.set_lut(file_path=lut_file)

        capabilities["legacy_bus"] = bool(legacy_bus)
        self.capabilities = capabilities

        return capabilities

    def stop(self):
        """
        Powers down and closes the SLM (with hardware output), then releases every
        buffer, including the corrections. Does nothing if not started.
        """
        if not self.started:
            return

        try:
            if self.hardware_output:
                self.slm.set_power(False)
                self.slm.close()
        finally:
            self._release_buffers()
            self.started = False
            self.hardware_output = False

    def __enter__(self):
        if not self.started:
            self.start()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.stop()
        return False

    # Generation.

    @staticmethod
    def _parse_method(method):
        """Returns the index into :data:`METHODS` of a name or numeric selector."""
        if isinstance(method, str):
            if method not in METHOD_INDEX:
                raise ValueError(f"Unrecognized method '{method}'. Valid methods include {METHODS}")
            return METHOD_INDEX[method]
        if isinstance(method, INTEGER_TYPES) and 0 <= method < len(METHODS):
            return int(method)
        raise ValueError(f"Unrecognized method {method}. Valid selectors are 0 to {len(METHODS) - 1}.")

    def _update_flags(self, method, n_iterations, alpha, N, verbose):
        """
        Helper function for :meth:`generate()` to record the call options.
        """
        self.flags = {
            "method": method,
            "n_iterations": int(n_iterations),
            "alpha": float(alpha),
            "spot_count": int(N),
            "polynomial_order": self.corrections["polynomial_order"],
            "aberration": self.corrections["aberration"],
            "lut": self.corrections["lut"],
        }

        if verbose > 1:
            print(f"Generating with '{method}' using the following flags:")
            pprint.pprint(self.flags)
            print("", end="", flush=True)  # Prevent tqdm conflicts.

    def generate(
        self,
        spot_vectors,
        spot_intensity=None,
        n_iterations=20,
        weights=None,
        alpha=0.5,
        method=0,
        verbose=False,
        callback=None,
    ):
        r"""
        Computes the pattern which focuses light into the given spots.

        Generation continues from the current working phase, so repeated calls
        refine (or, with a restricted phase change, move smoothly between) patterns.

        Policy substitutions are not errors and are reported with :func:`warnings.warn`:

        - Fewer than :data:`MIN_ITERATIVE_SPOTS` spots always use ``"LP"``.
        - Spots beyond :attr:`spot_capacity` are dropped.
        - Iterations beyond :attr:`max_iterations` are dropped.

        Zero iterations also uses ``"LP"``, without warning.

        Parameters
        ----------
        spot_vectors : array_like
            ``(2, N)`` or ``(3, N)`` spot positions in microns.
        spot_intensity : array_like OR None
            ``(N,)`` desired relative intensities. Uniform if ``None``.
        n_iterations : int
            Iterations of the iterative methods.
        weights : array_like OR None
            ``(N,)`` starting weights of ``"GS-Fresnel"``. Defaults to the desired
            amplitudes. ``"GS-Fourier"`` ignores these with a warning.
        alpha : float
            Restricted phase change in waves: per iteration, pixels may move at most
            :math:`2\pi\alpha` away from the phase at the start of the call. The
            default ``.5`` is unrestricted.
        method : int OR str
            ``0`` or ``"LP"``, ``1`` or ``"GS-Fresnel"``, ``2`` or ``"GS-Fourier"``.
        verbose : bool OR int
            Whether to show a :mod:`tqdm` progress bar. Values above ``1`` also print
            the :attr:`flags`.
        callback : callable OR None
            Called as ``callback(self)`` after every iteration of the iterative methods.
            The working :attr:`phase` may be inspected but should not be changed.

        Returns
        -------
        pattern : numpy.ndarray
            ``uint8`` pattern of shape ``(data_w, data_w)``, with the corrections applied.
        weights : numpy.ndarray
            ``(n_iterations + 1, N)`` weight history, or ``(1, N)`` for ``"LP"``.
        amplitudes : numpy.ndarray
            Amplitude history of the same shape. The last row is achieved by ``pattern``.

        Raises
        ------
        SessionError
            If the session is not started.
        DeviceError
            If a device allocation or dispatch fails.
        """
        self._require_started("generate")

        # Parse arguments.
        method_index = self._parse_method(method)

        if not isinstance(n_iterations, INTEGER_TYPES) or n_iterations < 0:
            raise ValueError(f"n_iterations must be a non-negative integer; found {n_iterations}.")
        n_iterations = int(n_iterations)
        if n_iterations > self.max_iterations:
            warnings.warn(
                f"{n_iterations} iterations exceed the maximum of {self.max_iterations}; "
                f"only {self.max_iterations} are run."
            )
            n_iterations = self.max_iterations

        if not isinstance(alpha, REAL_TYPES) or not alpha >= 0:
            raise ValueError(f"alpha must be a non-negative number; found {alpha}.")
        alpha_rpc = 2 * np.pi * float(alpha)

        with _device_operation("generate"):
            N = self._load_spots(spot_vectors, spot_intensity)

        if N < MIN_ITERATIVE_SPOTS and method_index != 0:
            warnings.warn(
                f"'{METHODS[method_index]}' needs at least {MIN_ITERATIVE_SPOTS} spots; "
                f"using '{METHODS[0]}' for {N}."
            )
            method_index = 0
        elif n_iterations == 0:
            method_index = 0

        if weights is not None:
            weights = np.ravel(np.asarray(weights, dtype=float))
            if weights.size < N:
                raise ValueError(f"Expected {N} weights; found {weights.size}.")
            weights = weights[:N]

        self._update_flags(METHODS[method_index], n_iterations, alpha, N, verbose)

        # Prepare the iterations iterable. Don't use a bar for a single iteration.
        iterations = range(n_iterations)
        if verbose and n_iterations > 1 and method_index != 0:
            iterations = tqdm(iterations, desc=METHODS[method_index])

        # Generate.
        with _device_operation("generate"):
            if method_index == 0:
                rows = self._generate_lenses(N)
            elif method_index == 1:
                rows = self._generate_fresnel(N, iterations, weights, alpha_rpc, callback)
            else:
                rows = self._generate_fourier(N, iterations, weights, alpha_rpc, callback)

            self._quantize_output()

        pattern = _get(self.pattern)
        weight_history = _get(self.weights[:rows, :N])
        amplitude_history = _get(self.amplitudes[:rows, :N])

        self._update_stats(weight_history, amplitude_history)

        if self.hardware_output:
            self.slm.upload_frame(pattern)

        return pattern, weight_history, amplitude_history
