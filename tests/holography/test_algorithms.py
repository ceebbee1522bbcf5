"""
Tests for the three generators of HologramSession.
"""
import pytest
import numpy as np

from holotweezers.holography.algorithms import HologramSession, METHODS
from holotweezers.holography.toolbox.phase import wrap_phase


# Asymmetric constellation of five spots on FFT bins (offsets from the center).
BINS_X = [-7, -2, 3, 9, 14]
BINS_Y = [4, -6, 0, 11, -3]


def _host(array):
    return array.get() if hasattr(array, "get") else np.array(array)


def _uniformity(amplitudes):
    return np.amin(amplitudes) / np.amax(amplitudes)


class TestMethodSelection:

    @pytest.mark.parametrize("method, name", [(0, "LP"), (1, "GS-Fresnel"), (2, "GS-Fourier"),
                                              ("LP", "LP"), ("GS-Fresnel", "GS-Fresnel")])
    def test_selectors(self, session, spot_grid, method, name):
        spots = spot_grid(session, BINS_X, BINS_Y)
        session.generate(spots, method=method, n_iterations=2)
        assert session.flags["method"] == name

    @pytest.mark.parametrize("method", [3, -1, "WGS", 1.0])
    def test_unknown_method(self, session, method):
        with pytest.raises(ValueError):
            session.generate([[0, 10, 20], [0, 0, 0]], method=method)

    @pytest.mark.parametrize("count", [1, 2])
    @pytest.mark.parametrize("method", [1, 2])
    def test_few_spots_use_lenses(self, session, count, method):
        spots = np.array([[0.0, 15.0], [0.0, -10.0]])[:, :count]
        with pytest.warns(UserWarning, match="at least 3 spots"):
            pattern, weights, amplitudes = session.generate(spots, method=method, n_iterations=10)

        assert session.flags["method"] == "LP"
        assert weights.shape == (1, count)
        assert amplitudes.shape == (1, count)
        assert pattern.shape == (session.data_w, session.data_w)

    @pytest.mark.parametrize("count", [1, 2])
    def test_few_spots_lenses_without_warning(self, session, count, recwarn):
        spots = np.array([[0.0, 15.0], [0.0, -10.0]])[:, :count]
        _, weights, _ = session.generate(spots, method="LP")
        assert weights.shape == (1, count)
        assert len([w for w in recwarn if "at least" in str(w.message)]) == 0

    def test_zero_iterations_use_lenses(self, session, spot_grid):
        spots = spot_grid(session, BINS_X, BINS_Y)
        _, weights, amplitudes = session.generate(spots, method="GS-Fresnel", n_iterations=0)
        assert session.flags["method"] == "LP"
        assert weights.shape == (1, 5)

    @pytest.mark.parametrize("n_iterations", [-1, 2.5, "3"])
    def test_bad_iterations(self, session, spot_grid, n_iterations):
        with pytest.raises(ValueError):
            session.generate(spot_grid(session, BINS_X, BINS_Y), method=1, n_iterations=n_iterations)

    def test_bad_alpha(self, session, spot_grid):
        with pytest.raises(ValueError):
            session.generate(spot_grid(session, BINS_X, BINS_Y), method=1, alpha=-0.1)

    def test_methods_list(self):
        assert METHODS == ["LP", "GS-Fresnel", "GS-Fourier"]


class TestSpots:

    def test_intensity_length_mismatch(self, session):
        with pytest.raises(ValueError):
            session.generate([[0, 10, 20], [0, 0, 0]], spot_intensity=[1, 1])

    def test_negative_intensity(self, session):
        with pytest.raises(ValueError):
            session.generate([[0, 10, 20], [0, 0, 0]], spot_intensity=[1, -1, 1])

    def test_all_dark(self, session):
        with pytest.raises(ValueError):
            session.generate([[0, 10, 20], [0, 0, 0]], spot_intensity=[0, 0, 0])

    def test_bad_dimension(self, session):
        with pytest.raises(ValueError):
            session.generate(np.zeros((4, 3)))

    def test_capacity_truncation(self, slm):
        session = HologramSession(slm, spot_capacity=8, max_iterations=4)
        session.start()
        try:
            spots = np.vstack((np.linspace(-40, 40, 10), np.linspace(-30, 30, 10)))
            with pytest.warns(UserWarning, match="capacity"):
                _, weights, amplitudes = session.generate(spots, method="GS-Fresnel", n_iterations=2)
            assert weights.shape == (3, 8)
            assert amplitudes.shape == (3, 8)
            assert session.flags["spot_count"] == 8
        finally:
            session.stop()

    def test_iteration_truncation(self, slm, spot_grid):
        session = HologramSession(slm, spot_capacity=8, max_iterations=5)
        session.start()
        try:
            with pytest.warns(UserWarning, match="maximum"):
                _, weights, amplitudes = session.generate(
                    spot_grid(session, BINS_X, BINS_Y), method="GS-Fresnel", n_iterations=10
                )
            assert weights.shape == (6, 5)
            assert amplitudes.shape == (6, 5)
        finally:
            session.stop()


class TestLenses:

    def test_center_spot(self, session, spot_grid):
        """A single spot at the center is perfect, and dark elsewhere."""
        pattern, weights, amplitudes = session.generate([[0.0], [0.0]], method="LP")

        assert np.allclose(amplitudes, 1, atol=1e-4)
        assert np.allclose(weights, amplitudes)

        probes = spot_grid(session, [3, -10, 0, 7], [0, 4, 12, -7])
        probed = session.evaluate_amplitudes(probes)
        assert np.all(probed < 0.05 * amplitudes[0, 0])

    def test_deterministic(self, session, spot_grid):
        spots = spot_grid(session, BINS_X, BINS_Y)
        pattern1, _, amplitudes1 = session.generate(spots, method="LP")
        pattern2, _, amplitudes2 = session.generate(spots, method="LP")
        assert np.array_equal(pattern1, pattern2)
        assert np.allclose(amplitudes1, amplitudes2)

    def test_two_spots_share_power(self, session):
        _, _, amplitudes = session.generate([[-20.0, 20.0], [0.0, 0.0]], method="LP")
        # Two equal spots each receive a quarter of the power, up to the overlap of their kernels.
        assert np.allclose(amplitudes[0, 0], amplitudes[0, 1], rtol=1e-3)
        assert 0.4 < amplitudes[0, 0] < 0.75

    def test_intensity_ratio(self, session):
        _, _, amplitudes = session.generate([[-20.0, 20.0], [0.0, 0.0]], spot_intensity=[1, 4], method="LP")
        assert amplitudes[0, 1] > amplitudes[0, 0]


class TestFresnel:

    def test_history_shapes(self, session, spot_grid):
        n = 7
        _, weights, amplitudes = session.generate(
            spot_grid(session, BINS_X, BINS_Y), method="GS-Fresnel", n_iterations=n
        )
        assert weights.shape == (n + 1, 5)
        assert amplitudes.shape == (n + 1, 5)
        assert np.all(amplitudes >= 0)

    def test_default_seed(self, session, spot_grid):
        intensity = np.array([1, 2, 3, 4, 5], dtype=float)
        _, weights, _ = session.generate(
            spot_grid(session, BINS_X, BINS_Y), spot_intensity=intensity, method=1, n_iterations=2
        )
        assert np.allclose(weights[0], np.sqrt(intensity / np.sum(intensity)), rtol=1e-5)

    def test_caller_seed(self, session, spot_grid):
        seed = np.array([0.5, 0.4, 0.3, 0.2, 0.1])
        _, weights, _ = session.generate(
            spot_grid(session, BINS_X, BINS_Y), weights=seed, method=1, n_iterations=2
        )
        assert np.allclose(weights[0], seed, rtol=1e-6)

    def test_caller_seed_too_short(self, session, spot_grid):
        with pytest.raises(ValueError):
            session.generate(spot_grid(session, BINS_X, BINS_Y), weights=[1, 1], method=1)

    def test_dark_spot_with_caller_seed(self, session, spot_grid):
        """A spot with zero intensity is switched off even when seeded with weight."""
        spots = spot_grid(session, BINS_X[:4], BINS_Y[:4])
        _, weights, amplitudes = session.generate(
            spots, spot_intensity=[1, 1, 1, 0], weights=np.ones(4), method="GS-Fresnel", n_iterations=20
        )

        assert weights[-1, 3] == 0
        assert np.all(weights[-1, :3] > 0)
        assert amplitudes[-1, 3] < 0.2 * np.amin(amplitudes[-1, :3])
        assert _uniformity(amplitudes[-1, :3]) > 0.8

    def test_uniformity(self, session, spot_grid):
        _, _, amplitudes = session.generate(
            spot_grid(session, BINS_X, BINS_Y), method="GS-Fresnel", n_iterations=20
        )
        assert _uniformity(amplitudes[-1]) > 0.8
        assert np.sum(np.square(amplitudes[-1])) > 0.5

    def test_three_dimensional(self, session, spot_grid):
        spots = spot_grid(session, BINS_X, BINS_Y)
        spots = np.vstack((spots, [[0, 20, -20, 40, -40]]))
        _, _, amplitudes = session.generate(spots, method="GS-Fresnel", n_iterations=20)
        assert _uniformity(amplitudes[-1]) > 0.7

    def test_last_row_matches_evaluator(self, session, spot_grid):
        spots = spot_grid(session, BINS_X, BINS_Y)
        pattern, _, amplitudes = session.generate(spots, method="GS-Fresnel", n_iterations=5)

        assert np.allclose(session.evaluate_amplitudes(spots), amplitudes[-1], atol=1e-4)
        # The quantized pattern loses little.
        assert np.allclose(session.evaluate_amplitudes(spots, pattern), amplitudes[-1], atol=0.02)

    def test_callback(self, session, spot_grid):
        calls = []
        session.generate(
            spot_grid(session, BINS_X, BINS_Y), method=1, n_iterations=4,
            callback=lambda s: calls.append(s is session)
        )
        assert calls == [True] * 4

    def test_continues_from_working_phase(self, session, spot_grid):
        spots = spot_grid(session, BINS_X, BINS_Y)
        _, _, first = session.generate(spots, method=1, n_iterations=10)
        _, _, second = session.generate(spots, method=1, n_iterations=1)
        assert np.allclose(second[0], first[-1], atol=1e-4)


class TestFourier:

    def test_history_shapes(self, session, spot_grid):
        n = 7
        _, weights, amplitudes = session.generate(
            spot_grid(session, BINS_X, BINS_Y), method="GS-Fourier", n_iterations=n
        )
        assert weights.shape == (n + 1, 5)
        assert amplitudes.shape == (n + 1, 5)

    def test_uniform_seed(self, session, spot_grid):
        _, weights, _ = session.generate(
            spot_grid(session, BINS_X, BINS_Y), spot_intensity=[1, 2, 3, 4, 5], method=2, n_iterations=2
        )
        assert np.allclose(weights[0], 1 / 5)

    def test_caller_weights_ignored(self, session, spot_grid):
        with pytest.warns(UserWarning, match="ignored"):
            _, weights, _ = session.generate(
                spot_grid(session, BINS_X, BINS_Y), weights=np.arange(1, 6), method=2, n_iterations=2
            )
        assert np.allclose(weights[0], 1 / 5)

    def test_depth_ignored(self, session, spot_grid):
        spots = spot_grid(session, BINS_X, BINS_Y, z_um=10)
        with pytest.warns(UserWarning, match="depths"):
            session.generate(spots, method=2, n_iterations=2)

    def test_shared_bin_warns(self, session, spot_grid):
        """Spots closer than a bin round onto the same bin and are flagged."""
        spots = spot_grid(session, [0.1, 0.2, 5, -6], [0, 0, 3, 8])
        with pytest.warns(UserWarning, match="sharing a bin"):
            _, _, amplitudes = session.generate(spots, method="GS-Fourier", n_iterations=2)
        assert amplitudes[-1, 0] == amplitudes[-1, 1]

    def test_distinct_bins_do_not_warn(self, session, spot_grid, recwarn):
        session.generate(spot_grid(session, BINS_X, BINS_Y), method="GS-Fourier", n_iterations=2)
        assert len([w for w in recwarn if "sharing a bin" in str(w.message)]) == 0

    def test_uniformity(self, session, spot_grid):
        _, _, amplitudes = session.generate(
            spot_grid(session, BINS_X, BINS_Y), method="GS-Fourier", n_iterations=40
        )
        assert _uniformity(amplitudes[-1]) > 0.7
        assert np.sum(np.square(amplitudes[-1])) > 0.3

    def test_last_row_matches_evaluator(self, session, spot_grid):
        """Spots on FFT bins receive the same amplitude under both propagators."""
        spots = spot_grid(session, BINS_X, BINS_Y)
        _, _, amplitudes = session.generate(spots, method="GS-Fourier", n_iterations=5)
        assert np.allclose(session.evaluate_amplitudes(spots), amplitudes[-1], atol=1e-3)


class TestWeightUpdate:

    def test_unchanged_when_achieved_is_desired(self):
        intensity = np.array([1.0, 2.0, 3.0, 4.0])
        desired = np.sqrt(intensity / np.sum(intensity))
        achieved = 0.37 * desired
        weights = np.array([0.9, 1.1, 0.7, 1.3])

        updated = HologramSession._update_weights(weights, achieved, desired, xp=np)
        assert np.allclose(updated, weights)

    def test_weak_spots_gain(self):
        desired = np.full(3, np.sqrt(1 / 3))
        achieved = np.array([0.2, 0.4, 0.4])
        updated = HologramSession._update_weights(np.ones(3), achieved, desired, xp=np)
        assert updated[0] > 1
        assert updated[1] < 1
        assert np.isclose(updated[1], updated[2])

    def test_dark_spots(self):
        desired = np.array([0.0, np.sqrt(0.5), np.sqrt(0.5)])
        achieved = np.array([0.1, 0.0, 0.3])
        weights = np.array([2.0, 3.0, 4.0])
        updated = HologramSession._update_weights(weights, achieved, desired, xp=np)
        # A lit spot with zero target is switched off; an unlit spot keeps its weight.
        assert updated[0] == 0
        assert updated[1] == 3.0

    def test_all_dark(self):
        weights = np.array([0.5, 0.25, 0.25])
        updated = HologramSession._update_weights(weights, np.zeros(3), np.full(3, 0.5), xp=np)
        assert np.array_equal(updated, weights)


class TestRestrictedPhaseChange:

    @pytest.mark.parametrize("method", ["GS-Fresnel", "GS-Fourier"])
    @pytest.mark.parametrize("alpha", [0.02, 0.1])
    def test_bounded_change(self, session, spot_grid, method, alpha):
        """Every iteration stays within alpha waves of the phase at the start of the call."""
        spots = spot_grid(session, BINS_X, BINS_Y)
        session.generate(spots, method="LP")
        start = session.get_phase()

        deviations = []

        def record(s):
            reference = _host(s.phase_reference)
            assert np.array_equal(reference, start)
            deviations.append(np.amax(np.abs(wrap_phase(s.get_phase().astype(float) - reference))))

        session.generate(spots, method=method, n_iterations=5, alpha=alpha, callback=record)

        assert len(deviations) == 5
        assert max(deviations) <= 2 * np.pi * alpha + 1e-4

    def test_zero_alpha_freezes(self, session, spot_grid):
        spots = spot_grid(session, BINS_X, BINS_Y)
        session.generate(spots, method="LP")
        start = session.get_phase()

        session.generate(spots, method="GS-Fresnel", n_iterations=3, alpha=0)
        assert np.array_equal(session.get_phase(), start)

    def test_unrestricted_moves(self, session, spot_grid):
        """From the flat starting phase, an unrestricted run reshapes the whole field."""
        spots = spot_grid(session, BINS_X, BINS_Y)
        start = session.get_phase()
        assert np.all(start == 0)

        session.generate(spots, method="GS-Fresnel", n_iterations=3)
        assert np.amax(np.abs(wrap_phase(session.get_phase().astype(float) - start))) > 1


class TestStats:

    def test_stats_recorded(self, session, spot_grid):
        _, _, amplitudes = session.generate(spot_grid(session, BINS_X, BINS_Y), method=1, n_iterations=5)

        assert session.stats["method"] == ["GS-Fresnel"] * 6
        assert len(session.stats["stats"]["uniformity"]) == 6
        assert np.isclose(session.stats["stats"]["efficiency"][-1], np.sum(np.square(amplitudes[-1])))

    def test_calculate_stats_perfect(self):
        stats = HologramSession._calculate_stats(np.full(4, 0.5), np.ones(4))
        assert np.isclose(stats["efficiency"], 1)
        assert np.isclose(stats["uniformity"], 1)
        assert np.isclose(stats["pkpk_err"], 0)
        assert np.isclose(stats["std_err"], 0)

    def test_calculate_stats_dark(self):
        stats = HologramSession._calculate_stats(np.zeros(3), np.ones(3))
        assert stats["efficiency"] == 0
        assert np.isnan(stats["uniformity"])

    def test_save_load(self, session, spot_grid, temp_dir):
        session.generate(spot_grid(session, BINS_X, BINS_Y), method=2, n_iterations=3)
        stats = session.stats

        file_path = session.save_stats(temp_dir, name="run")
        assert file_path.endswith("run_00000.h5")
        assert session.save_stats(temp_dir, name="run").endswith("run_00001.h5")

        loaded = session.load_stats(file_path)
        assert loaded["method"] == stats["method"]
        assert np.allclose(loaded["amplitudes"], stats["amplitudes"])
        assert np.allclose(loaded["stats"]["uniformity"], stats["stats"]["uniformity"], equal_nan=True)
        assert loaded["flags"]["method"] == "GS-Fourier"

    def test_save_without_stats(self, slm, temp_dir):
        with pytest.raises(ValueError):
            HologramSession(slm).save_stats(temp_dir)

    def test_plot(self, session, spot_grid, mpl_test):
        session.generate(spot_grid(session, BINS_X, BINS_Y), method=1, n_iterations=5)
        ax = session.plot_stats()
        assert ax.get_xlabel() == "Iteration"
        mpl_test.show()


class TestVerbose:

    def test_verbose_prints_flags(self, session, spot_grid, capsys):
        session.generate(spot_grid(session, BINS_X, BINS_Y), method=1, n_iterations=2, verbose=2)
        assert "GS-Fresnel" in capsys.readouterr().out
