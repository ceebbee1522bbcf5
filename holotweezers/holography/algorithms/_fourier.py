from holotweezers.holography.algorithms._header import *
from holotweezers.holography.algorithms._buffers import _get


class _SessionFourier(object):
    r"""
    Weighted Gerchberg-Saxton (GS) with FFT propagation.

    The farfield of the modulator is the shifted 2D FFT of its field, where bin
    :math:`(n_x, n_y)` corresponds to the normalized vector
    :math:`\vec{k} = \frac{\lambda}{p w}(n_x - w/2, n_y - w/2)`. Each spot is
    constrained at its nearest bin (``"knm"`` units, see
    :meth:`~holotweezers.holography.toolbox.convert_vector()`), so spots off the bin
    grid are rounded onto it and spot depth is ignored. Every iteration costs a pair of
    FFTs regardless of the number of spots.
    """

    def _spot_bins(self, N):
        """
        Nearest FFT bins of the loaded spots.

        Returns
        -------
        (numpy.ndarray OR cupy.ndarray, numpy.ndarray OR cupy.ndarray)
            ``(iy, ix)`` integer index arrays of shape ``(N,)`` on the device.
        """
        vectors = _get(self.spot_vectors[:, :N])

        if np.any(vectors[2, :] != 0):
            warnings.warn(
                "GS-Fourier constrains the focal plane only; spot depths are ignored."
            )

        knm = toolbox.convert_vector(
            vectors[:2, :],
            from_units="norm",
            to_units="knm",
            wav_um=self.wav_um,
            pitch_um=self.pitch_um,
            data_w=self.data_w,
        )
        bins = np.mod(np.rint(knm).astype(int), self.data_w)

        flat = bins[1, :] * self.data_w + bins[0, :]
        if len(np.unique(flat)) < N:
            warnings.warn(
                "GS-Fourier rounds spots onto FFT bins; spots sharing a bin are "
                "constrained (and reported) together."
            )

        return cp.asarray(bins[1, :]), cp.asarray(bins[0, :])

    def _farfield(self, field):
        """Shifted farfield of a modulator field, with zero frequency at ``data_w // 2``."""
        return cpfft.fftshift(cpfft.fft2(field))

    def _nearfield(self, farfield):
        """Inverse of :meth:`_farfield()`."""
        return cpfft.ifft2(cpfft.ifftshift(farfield))

    def _generate_fourier(self, N, iterations, weights=None, alpha_rpc=np.pi, callback=None):
        r"""
        Runs the farfield weighted GS loop.

        At each iteration, the farfield amplitude at every spot bin is replaced by

        .. math:: |F_m| = \frac{w_m}{\bar{w}} \sqrt{w^2 \sum A^2 \frac{I_m}{\sum I}},

        keeping the farfield phase. Bins without a spot are left unchanged.
        Weights always start uniform at :math:`1/N`; caller weights are ignored.

        Parameters
        ----------
        N : int
            Number of loaded spots.
        iterations : iterable
            ``range(n_iterations)``, possibly wrapped by :mod:`tqdm`.
        weights : array_like OR None
            Ignored with a warning if given.
        alpha_rpc : float
            Restricted phase change bound in radians.
        callback : callable OR None
            Called as ``callback(self)`` after every iteration. The return value is ignored.

        Returns
        -------
        int
            Number of history rows written.
        """
        if weights is not None:
            warnings.warn("GS-Fourier starts from uniform weights; the given weights are ignored.")

        (iy, ix) = self._spot_bins(N)
        desired = self._desired_amplitudes(N)
        target = desired * np.sqrt(self.data_w * self.data_w * self.amp_power)

        # Seed.
        self.weights[0, :N] = 1.0 / N
        self.phase_reference[...] = self.phase
        field = self._phase_to_field(self.phase, out=self.field)

        n = 0
        for i in iterations:
            farfield = self._farfield(field)
            spots = farfield[iy, ix]
            achieved = cp.abs(spots) * (1 / self.amp_sum)
            self.amplitudes[i, :N] = achieved

            self.weights[i + 1, :N] = self._update_weights(self.weights[i, :N], achieved, desired)
            w = self.weights[i + 1, :N]

            # Farfield constraint at the spots only.
            farfield[iy, ix] = (w / cp.mean(w)) * target * cp.exp(1j * cp.angle(spots))

            self._restrict_phase(cp.angle(self._nearfield(farfield)), alpha_rpc)
            field = self._phase_to_field(self.phase, out=self.field)

            n = i + 1
            if callback is not None:
                callback(self)

        # Done: measure the final phase.
        farfield = self._farfield(field)
        self.amplitudes[n, :N] = cp.abs(farfield[iy, ix]) * (1 / self.amp_sum)

        return n + 1
