from holotweezers.holography.algorithms._header import *
from holotweezers.holography.algorithms._header import _device_operation
from holotweezers.holography.algorithms._buffers import _get


class _SessionAmplitudes(object):
    r"""
    Propagation between the modulator and individual points in the sample.

    The field received at a point :math:`\vec{k}_m` from the modulator field
    :math:`A e^{i\phi}` is the overlap with that point's lens and prism,

    .. math:: V_m = \frac{1}{\sum A} \sum_{x, y} A(x, y) e^{i\phi(x, y)} e^{-i\theta_m(x, y)},

    normalized such that a perfect single spot has :math:`|V_m| = 1`. The lens and prism
    phase :math:`\theta_m = \theta_{m,x}(x) + \theta_{m,y}(y)` is separable,
    so each sum is evaluated as a pair of matrix products over batches of
    :data:`AMPLITUDE_BATCH` points.
    """

    def _kernels(self, vectors):
        r"""
        Conjugate kernels :math:`e^{-i\theta_{m,x}}` and :math:`e^{-i\theta_{m,y}}` for a batch
        of normalized ``(3, B)`` device vectors, of shapes ``(B, data_w)`` each.
        """
        theta_x, theta_y = tphase.lens_prism_separable(self.x, self.y, vectors)

        return (
            cp.exp(-1j * theta_x).astype(self.dtype_complex),
            cp.exp(-1j * theta_y).astype(self.dtype_complex),
        )

    def _project(self, field, vectors, out=None):
        """
        Complex field received by each point from the modulator ``field``.

        Parameters
        ----------
        field : numpy.ndarray OR cupy.ndarray
            Complex modulator field ``A exp(i phase)`` of shape ``(data_w, data_w)``.
        vectors : numpy.ndarray OR cupy.ndarray
            ``(3, N)`` normalized vectors on the device.
        out : numpy.ndarray OR cupy.ndarray OR None
            ``(N,)`` complex destination.

        Returns
        -------
        numpy.ndarray OR cupy.ndarray
            ``(N,)`` complex fields.
        """
        N = vectors.shape[1]
        if out is None:
            out = cp.empty((N,), dtype=self.dtype_complex)

        for start in range(0, N, AMPLITUDE_BATCH):
            batch = slice(start, min(start + AMPLITUDE_BATCH, N))
            ex, ey = self._kernels(vectors[:, batch])

            # sum_yx ey[m, y] field[y, x] ex[m, x]
            out[batch] = cp.sum(cp.matmul(ey, field) * ex, axis=1) * (1 / self.amp_sum)

        return out

    def _superpose(self, coeffs, vectors, out=None):
        r"""
        Complex superposition :math:`\sum_m c_m e^{i\theta_m}` of the lenses and prisms
        toward ``vectors``, over the full modulator.

        Parameters
        ----------
        coeffs : numpy.ndarray OR cupy.ndarray
            ``(N,)`` complex coefficients.
        vectors : numpy.ndarray OR cupy.ndarray
            ``(3, N)`` normalized vectors on the device.
        out : numpy.ndarray OR cupy.ndarray OR None
            ``(data_w, data_w)`` complex destination.

        Returns
        -------
        numpy.ndarray OR cupy.ndarray
            The superposed complex field.
        """
        N = vectors.shape[1]
        if out is None:
            out = cp.zeros((self.data_w, self.data_w), dtype=self.dtype_complex)
        else:
            out.fill(0)

        for start in range(0, N, AMPLITUDE_BATCH):
            batch = slice(start, min(start + AMPLITUDE_BATCH, N))
            ex, ey = self._kernels(vectors[:, batch])

            # sum_m conj(ey[m, y]) c[m] conj(ex[m, x])
            out += cp.matmul(cp.conj(ey).T * coeffs[batch], cp.conj(ex))

        return out

    def _phase_to_field(self, phase, out=None):
        """Modulator field ``amp * exp(i phase)``."""
        if out is None:
            out = cp.empty((self.data_w, self.data_w), dtype=self.dtype_complex)

        cp.exp(1j * phase, out=out)
        out *= self.amp

        return out

    def evaluate_amplitudes(self, spot_vectors, pattern=None):
        """
        Amplitude which each point receives from a phase pattern.

        Points are processed in sequential batches of :data:`AMPLITUDE_BATCH`; the
        result does not depend on how the points are grouped into calls.

        Parameters
        ----------
        spot_vectors : array_like
            ``(2, N)`` or ``(3, N)`` point positions in microns, any ``N``.
        pattern : array_like OR None
            Either a float phase field in radians, or integer levels which are mapped
            back to phase by the linear quantizer (lookup tables and polynomials are not
            inverted). If ``None``, the working :attr:`phase` is used.

        Returns
        -------
        numpy.ndarray
            ``(N,)`` amplitudes; a perfect single spot reads ``1``.
        """
        self._require_started("evaluate_amplitudes")

        vectors = toolbox.convert_vector(
            toolbox.format_3vectors(spot_vectors),
            from_units="um", to_units="norm", wav_um=self.wav_um, f_um=self.f_um
        )

        with _device_operation("evaluate_amplitudes"):
            if pattern is None:
                phase = self.phase
            else:
                phase = cp.asarray(pattern)
                if phase.shape != (self.data_w, self.data_w):
                    raise ValueError(
                        f"Pattern of shape {phase.shape} does not match ({self.data_w}, {self.data_w})."
                    )
                if np.issubdtype(phase.dtype, np.integer):
                    phase = tphase.dequantize(phase, BITRESOLUTION)
                phase = phase.astype(self.dtype)

            field = self._phase_to_field(phase)
            fields = self._project(field, cp.asarray(vectors, dtype=self.dtype))
            amplitudes = cp.abs(fields)

        return _get(amplitudes)
