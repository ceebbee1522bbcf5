from holotweezers.holography.algorithms._header import *
from holotweezers.holography.algorithms._buffers import _get


class _SessionStats(object):

    # Statistics handling.
    @staticmethod
    def _calculate_stats(achieved_amp, target_amp, xp=np):
        """
        Helper function to analyze how close the achieved spot amplitudes are to the target.

        Parameters
        ----------
        achieved_amp : numpy.ndarray OR cupy.ndarray
            ``(N,)`` amplitudes received by the spots, normalized such that a perfect
            single spot reads ``1``.
        target_amp : numpy.ndarray OR cupy.ndarray
            ``(N,)`` desired amplitudes. Only relative values matter.
        xp : module
            :mod:`numpy` or :mod:`cupy`, matching the arrays.

        Returns
        -------
        dict
            ``"efficiency"``, the fraction of the illumination power delivered to the spots;
            ``"uniformity"``, :math:`1 - \\frac{r_\\max - r_\\min}{r_\\max + r_\\min}` for the
            ratios :math:`r` of normalized achieved to target power;
            ``"pkpk_err"`` and ``"std_err"``, the peak-to-peak and standard deviation of the
            power error, scaled by the number of spots.
        """
        achieved_pwr = xp.square(xp.asarray(achieved_amp, dtype=float))
        target_pwr = xp.square(xp.asarray(target_amp, dtype=float))

        efficiency = float(xp.sum(achieved_pwr))

        achieved_sum = float(xp.sum(achieved_pwr))
        target_sum = float(xp.sum(target_pwr))
        if achieved_sum == 0 or target_sum == 0:
            return {
                "efficiency": efficiency,
                "uniformity": np.nan,
                "pkpk_err": np.nan,
                "std_err": np.nan,
            }

        # Normalize, ignoring spots which should be dark.
        mask = target_pwr > 0
        achieved_pwr = achieved_pwr[mask] / achieved_sum
        target_pwr = target_pwr[mask] / target_sum

        ratio_pwr = achieved_pwr / target_pwr
        pwr_err = target_pwr - achieved_pwr

        rmin = float(xp.amin(ratio_pwr))
        rmax = float(xp.amax(ratio_pwr))
        uniformity = 1 - (rmax - rmin) / (rmax + rmin) if rmax + rmin > 0 else np.nan

        return {
            "efficiency": efficiency,
            "uniformity": float(uniformity),
            "pkpk_err": pwr_err.size * float(xp.amax(pwr_err) - xp.amin(pwr_err)),
            "std_err": pwr_err.size * float(xp.std(pwr_err)),
        }

    def _update_stats(self, weights, amplitudes):
        """
        Rebuilds :attr:`stats` from the histories of the last ``generate()`` call.

        Parameters
        ----------
        weights, amplitudes : numpy.ndarray
            ``(rows, N)`` host histories.
        """
        N = amplitudes.shape[1]
        target = np.sqrt(_get(self.spot_intensity[:N]))

        stats = {"efficiency": [], "uniformity": [], "pkpk_err": [], "std_err": []}
        for row in amplitudes:
            row_stats = self._calculate_stats(row, target)
            for key in stats:
                stats[key].append(row_stats[key])

        self.stats = {
            "method": [self.flags["method"]] * amplitudes.shape[0],
            "flags": dict(self.flags),
            "stats": stats,
            "weights": weights,
            "amplitudes": amplitudes,
        }

    def save_stats(self, path=".", name=None, include_state=True):
        """
        Uses :meth:`~holotweezers.misc.files.save_h5()` to export the statistics of the
        last ``generate()`` call to a new file ``path/name_id.h5``.

        Parameters
        ----------
        path : str
            Directory to save in.
        name : str OR None
            File stem. Defaults to ``"stats"``.
        include_state : bool
            If ``True`` and the session is started, also stores the working phase and
            the output pattern. This is for debugging; the session cannot be
            restored from it.

        Returns
        -------
        str
            The file written.
        """
        if len(self.stats) == 0:
            raise ValueError("No statistics to save; call generate() first.")

        to_save = dict(self.stats)
        if include_state and self.started:
            to_save["phase"] = _get(self.phase)
            to_save["pattern"] = _get(self.pattern)

        file_path = generate_path(path, "stats" if name is None else name, extension="h5")
        save_h5(file_path, to_save)

        return file_path

    def load_stats(self, file_path):
        """
        Uses :meth:`~holotweezers.misc.files.load_h5()` to import statistics written by
        :meth:`save_stats()` into :attr:`stats`. Stored state is not applied to the session.

        Parameters
        ----------
        file_path : str
            Full path to the file to read.

        Returns
        -------
        dict
            The loaded statistics.
        """
        from_save = load_h5(file_path)

        if "stats" not in from_save:
            raise ValueError(f"No statistics stored in '{file_path}'.")

        from_save.pop("phase", None)
        from_save.pop("pattern", None)
        from_save["method"] = [str(method) for method in np.atleast_1d(from_save["method"])]
        from_save["stats"] = {
            key: list(np.atleast_1d(value)) for key, value in from_save["stats"].items()
        }
        self.stats = from_save

        return self.stats

    def plot_stats(self, stats_dict=None, ylim=None, ax=None, show=False):
        """
        Plots the statistics per history row: inefficiency, nonuniformity, and the power errors.

        Parameters
        ----------
        stats_dict : dict OR None
            Stats to plot in the form of :attr:`stats`. If ``None``, defaults to :attr:`stats`.
        ylim : (float, float) OR None
            Allows the user to pass in desired y limits.
        ax : matplotlib.axes.Axes OR None
            Axis to plot on. If ``None``, a new figure is made.
        show : bool
            Whether or not to immediately show the plot.

        Returns
        -------
        matplotlib.axes.Axes
            The axis plotted on.
        """
        if stats_dict is None:
            stats_dict = self.stats
        if stats_dict is None or "stats" not in stats_dict:
            raise ValueError("No statistics to plot; call generate() first.")

        if ax is None:
            _, ax = plt.subplots(1, 1, figsize=(6, 4))

        stats = ["efficiency", "uniformity", "pkpk_err", "std_err"]
        markers = ["o", "o", "s", "D"]
        legendstats = ["inefficiency", "nonuniformity", "pkpk_err", "std_err"]

        niter = np.arange(0, len(stats_dict["method"]))

        for i, stat in enumerate(stats):
            y = np.array(stats_dict["stats"][stat], dtype=float)
            if i < 2:
                y = 1 - y

            ax.scatter(
                niter, y, marker=markers[i], ec="C%d" % i, fc="None" if i >= 1 else "C%d" % i,
                label=legendstats[i]
            )
            ax.plot(niter, y, c="C%d" % i, lw=0.5)

        method = stats_dict["method"][0] if len(stats_dict["method"]) else ""
        ax.set_xlabel("Iteration")
        ax.set_ylabel("Relative Metrics")
        ax.set_title(f"{method} Statistics")
        ax.set_yscale("log")
        ax.grid(True)
        if ylim is not None:
            ax.set_ylim(ylim)
        ax.set_xlim([-0.75, len(niter) - 0.25])
        ax.legend(loc="lower left")

        if show:
            plt.show()

        return ax
