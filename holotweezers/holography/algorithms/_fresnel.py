from holotweezers.holography.algorithms._header import *


class _SessionFresnel(object):
    r"""
    Weighted Gerchberg-Saxton (GS) with per-spot near-field propagation.

    Each spot is treated individually: the field it receives is the overlap of the
    modulator field with its own lens and prism (see :class:`_SessionAmplitudes`), so
    spots may sit anywhere in 3D and need not lie on a Fourier grid. This is the
    "GSW" algorithm of
    `Di Leonardo et al. <https://doi.org/10.1364/OE.15.001913>`_.
    """

    @staticmethod
    def _update_weights(weights, achieved, desired, xp=cp):
        r"""
        Gerchberg-Saxton weighting,

        .. math:: w_m \leftarrow w_m \frac{d_m}{a_m},
                  \quad d_m = \sqrt{\frac{I_m}{\sum I}} \sqrt{\sum_n a_n^2},

        i.e. spots pushed toward the desired distribution at the total power currently
        achieved. Weights of spots with :math:`a_m \approx 0` or a non-finite ratio are
        left unchanged, and spots with :math:`d_m = 0` are driven to zero weight.
        Weights are not renormalized.

        Parameters
        ----------
        weights : numpy.ndarray OR cupy.ndarray
            ``(N,)`` current weights.
        achieved : numpy.ndarray OR cupy.ndarray
            ``(N,)`` achieved amplitudes :math:`a_m`.
        desired : numpy.ndarray OR cupy.ndarray
            ``(N,)`` relative desired amplitudes :math:`\sqrt{I_m / \sum I}`.
        xp : module
            :mod:`numpy` or :mod:`cupy`.

        Returns
        -------
        numpy.ndarray OR cupy.ndarray
            ``(N,)`` updated weights.
        """
        target = desired * xp.sqrt(xp.sum(achieved * achieved))
        return weights * divide_or_one(target, achieved, xp=xp)

    def _restrict_phase(self, new_phase, alpha_rpc):
        r"""
        Restricted phase change: writes ``new_phase`` into the working :attr:`phase`,
        except at pixels where it departs from :attr:`phase_reference` by more than
        ``alpha_rpc``, which keep the reference phase. Afterwards
        :math:`|\text{wrap}(\phi - \phi_\text{ref})| \le \alpha_\text{RPC}` everywhere.
        """
        tphase.wrap_phase(new_phase, out=self.phase)

        if alpha_rpc < np.pi:
            delta = tphase.wrap_phase(self.phase - self.phase_reference)
            revert = cp.abs(delta) > alpha_rpc
            self.phase[revert] = self.phase_reference[revert]

    def _generate_fresnel(self, N, iterations, weights=None, alpha_rpc=np.pi, callback=None):
        """
        Runs the near-field weighted GS loop.

        Row ``i`` of :attr:`amplitudes` is measured from the phase entering iteration
        ``i``; row ``i + 1`` of :attr:`weights` is the weight used to build the phase
        leaving it. The final row of :attr:`amplitudes` measures the returned phase.

        Parameters
        ----------
        N : int
            Number of loaded spots.
        iterations : iterable
            ``range(n_iterations)``, possibly wrapped by :mod:`tqdm`.
        weights : array_like OR None
            ``(N,)`` starting weights. Defaults to the desired amplitudes.
        alpha_rpc : float
            Restricted phase change bound in radians.
        callback : callable OR None
            Called as ``callback(self)`` after every iteration. The return value is ignored.

        Returns
        -------
        int
            Number of history rows written.
        """
        vectors = self.spot_vectors[:, :N]
        fields = self.spot_fields[:N]
        desired = self._desired_amplitudes(N)

        # Seed.
        if weights is None:
            self.weights[0, :N] = desired
        else:
            self.weights[0, :N] = cp.asarray(weights, dtype=self.dtype)
        self.phase_reference[...] = self.phase

        n = 0
        for i in iterations:
            # Forward: field at each spot from the current phase.
            self._project(self._phase_to_field(self.phase, out=self.field), vectors, out=fields)
            achieved = cp.abs(fields)
            self.amplitudes[i, :N] = achieved

            # Weight update.
            self.weights[i + 1, :N] = self._update_weights(self.weights[i, :N], achieved, desired)

            # Backward: weighted superposition with each spot's current phase.
            coeffs = self.weights[i + 1, :N] * cp.exp(1j * cp.angle(fields))
            superposition = self._superpose(coeffs.astype(self.dtype_complex), vectors, out=self.field)
            self._restrict_phase(cp.angle(superposition), alpha_rpc)

            n = i + 1
            if callback is not None:
                callback(self)

        # Done: measure the final phase.
        self._project(self._phase_to_field(self.phase, out=self.field), vectors, out=fields)
        self.amplitudes[n, :N] = cp.abs(fields)

        return n + 1
