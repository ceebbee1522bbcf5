from holotweezers.holography.algorithms._header import *


class _SessionLenses(object):

    def _generate_lenses(self, N):
        r"""
        Lenses and prisms: the direct superposition of every spot's lens and prism,
        weighted by the desired amplitude,

        .. math:: \phi(x, y) = \arg \sum_m \sqrt{\frac{I_m}{\sum I}} e^{i\theta_m(x, y)}.

        Single pass and deterministic. The result becomes the working :attr:`phase`,
        and the amplitude it achieves at each spot is measured and stored as both
        row ``0`` of :attr:`weights` and of :attr:`amplitudes`.

        Parameters
        ----------
        N : int
            Number of loaded spots.

        Returns
        -------
        int
            Number of history rows written (always ``1``).
        """
        vectors = self.spot_vectors[:, :N]
        coeffs = self._desired_amplitudes(N).astype(self.dtype_complex)

        superposition = self._superpose(coeffs, vectors, out=self.field)
        tphase.wrap_phase(cp.angle(superposition), out=self.phase)

        self.phase_reference[...] = self.phase

        fields = self._project(
            self._phase_to_field(self.phase, out=self.field),
            vectors,
            out=self.spot_fields[:N]
        )
        self.amplitudes[0, :N] = cp.abs(fields)
        self.weights[0, :N] = self.amplitudes[0, :N]

        return 1
