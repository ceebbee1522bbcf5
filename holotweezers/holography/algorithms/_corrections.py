from holotweezers.holography.algorithms._header import *
from holotweezers.holography.algorithms._header import _device_operation
from holotweezers.hardware.slms.slm import parse_lut, read_lut


class _SessionCorrections(object):
    """
    Correction subsystem and output stage of a :class:`HologramSession`.

    Three independent corrections shape the pattern sent to the modulator:

    - :attr:`aberration`, an additive phase map compensating optical aberrations,
    - :attr:`polynomial`, a lookup polynomial in pixel position and phase which
      replaces the linear quantizer (spatially varying nonlinearity),
    - :attr:`lut`, a 256-entry table composed after the linear quantizer.

    Each is ``None`` when disabled. Corrections are applied only when producing
    the output pattern; the working :attr:`phase` is never corrected.
    """

    @property
    def corrections(self):
        """
        Which corrections are currently enabled.

        Returns
        -------
        dict
            ``"aberration"`` (bool), ``"polynomial_order"`` (int, ``0`` when disabled),
            and ``"lut"`` (bool).
        """
        return {
            "aberration": self.aberration is not None,
            "polynomial_order": 0 if self.polynomial is None else self.polynomial["order"],
            "lut": self.lut is not None,
        }

    def set_corrections(
        self,
        use_aberration=False,
        aberration=None,
        use_polynomial=False,
        polynomial_order=0,
        polynomial_coeffs=None,
    ):
        """
        Enables or disables the aberration map and the lookup polynomial.

        Caution
        ~~~~~~~
        Changes are applied in order (aberration, then polynomial) and are not rolled
        back if a later step fails. After an exception, check :attr:`corrections`.

        Parameters
        ----------
        use_aberration : bool
            Whether to add an aberration phase map to the output.
        aberration : array_like OR None
            Map in radians of shape ``(data_w, data_w)``. A string is read as an ``.h5``
            file holding an ``"aberration"`` dataset. Uploaded into the resident
            buffer, which is allocated only if absent. If ``None`` while enabling, the
            resident map is kept.
        use_polynomial : bool
            Whether to map phase to levels with the lookup polynomial.
        polynomial_order : int
            Polynomial order. Only orders 3 to 7 are supported; any other order
            disables the polynomial with a warning.
        polynomial_coeffs : array_like OR None
            ``C(order + 3, 3)`` coefficients ordered as in
            :meth:`~holotweezers.holography.toolbox.phase.polynomial_terms()`.

        Raises
        ------
        SessionError
            If the session is not started.
        ValueError
            If a payload has the wrong shape or is missing.
        DeviceAllocationError
            If the device cannot hold the tables.
        """
        self._require_started("set_corrections")

        with _device_operation("set_corrections"):
            # Aberration map.
            if use_aberration:
                if isinstance(aberration, str):
                    aberration = load_h5(aberration)["aberration"]
                if aberration is not None:
                    aberration = np.asarray(
                        aberration.get() if hasattr(aberration, "get") else aberration,
                        dtype=float
                    )
                    if aberration.shape != (self.data_w, self.data_w):
                        raise ValueError(
                            f"Aberration map of shape {aberration.shape} does not match "
                            f"({self.data_w}, {self.data_w})."
                        )
                    if self.aberration is None:
                        self.aberration = cp.empty((self.data_w, self.data_w), dtype=self.dtype)
                    self.aberration[...] = cp.asarray(aberration, dtype=self.dtype)
                elif self.aberration is None:
                    raise ValueError("No aberration map is resident; pass one to enable the correction.")
            else:
                self.aberration = None

            # Lookup polynomial.
            if use_polynomial and int(polynomial_order) not in tphase.POLYNOMIAL_ORDERS:
                warnings.warn(
                    f"Polynomial order {polynomial_order} is outside "
                    f"{tphase.POLYNOMIAL_ORDERS[0]}-{tphase.POLYNOMIAL_ORDERS[-1]}; "
                    "the polynomial correction is disabled."
                )
                use_polynomial = False

            if use_polynomial:
                order = int(polynomial_order)
                terms = tphase.polynomial_terms(order)
                if polynomial_coeffs is None:
                    raise ValueError("polynomial_coeffs are required to enable the polynomial correction.")
                coeffs = np.ravel(np.asarray(polynomial_coeffs, dtype=float))
                if coeffs.size != len(terms):
                    raise ValueError(
                        f"Order {order} needs {len(terms)} coefficients; found {coeffs.size}."
                    )
                self.polynomial = {"order": order, "terms": terms, "coeffs": coeffs}
            else:
                self.polynomial = None

        return self.corrections

    def set_lut(self, lut=None, file_path=None):
        """
        Installs (or clears) the 256-entry nonlinearity table.

        Parameters
        ----------
        lut : array_like OR None
            Table of output values indexed by linear level.
        file_path : str OR None
            File to read the table from when ``lut`` is ``None``.
            See :meth:`~holotweezers.hardware.slms.slm.read_lut()`.
            If both are ``None``, the table is cleared.
        """
        self._require_started("set_lut")

        if lut is None and file_path is not None:
            lut = read_lut(file_path, BITRESOLUTION)

        with _device_operation("set_lut"):
            if lut is None:
                self.lut = None
            else:
                self.lut = cp.asarray(parse_lut(lut, BITRESOLUTION))

    def _quantize_output(self):
        """
        Applies the corrections to the working phase and writes :attr:`pattern`.

        The polynomial, when enabled, takes priority over the linear quantizer and
        the lookup table.
        """
        phase = self.phase
        if self.aberration is not None:
            phase = tphase.wrap_phase(phase + self.aberration)

        if self.polynomial is not None:
            tphase.polynomial_levels(
                self.x_norm,
                self.y_norm,
                phase,
                self.polynomial["coeffs"],
                terms=self.polynomial["terms"],
                bitresolution=BITRESOLUTION,
                out=self.pattern,
            )
        else:
            tphase.quantize(phase, bitresolution=BITRESOLUTION, lut=self.lut, out=self.pattern)

        return self.pattern
