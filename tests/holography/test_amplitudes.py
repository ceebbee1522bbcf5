"""
Tests for the amplitude evaluator of HologramSession.
"""
import pytest
import numpy as np

from holotweezers.holography.algorithms import AMPLITUDE_BATCH
from holotweezers.holography.toolbox import phase as tphase


def test_perfect_spot_anywhere(session):
    """A lens and prism toward a point focuses all light onto it."""
    vector = np.array([[12.3], [-7.1], [15.0]])
    _, _, amplitudes = session.generate(vector, method="LP")

    assert np.isclose(amplitudes[-1, 0], 1, atol=1e-3)
    assert np.isclose(session.evaluate_amplitudes(vector)[0], 1, atol=1e-3)


def test_zero_phase_center(session):
    """The flat working phase sends everything to the origin."""
    assert np.isclose(session.evaluate_amplitudes([[0], [0]])[0], 1, atol=1e-5)


def test_batches_concatenate(session, random_seed):
    """A query is independent of how the points are grouped into calls."""
    count = 2 * AMPLITUDE_BATCH + 1
    points = np.random.uniform(-30, 30, (3, count))

    session.generate(points[:, :5], method="LP")

    whole = session.evaluate_amplitudes(points)
    parts = np.concatenate([
        session.evaluate_amplitudes(points[:, :AMPLITUDE_BATCH]),
        session.evaluate_amplitudes(points[:, AMPLITUDE_BATCH:2 * AMPLITUDE_BATCH]),
        session.evaluate_amplitudes(points[:, 2 * AMPLITUDE_BATCH:]),
    ])

    assert whole.shape == (count,)
    assert np.allclose(whole, parts, atol=1e-5)


def test_focal_plane_vectors(session):
    """(2, N) vectors are the focal plane of (3, N) vectors."""
    points = np.array([[-10.0, 4.0, 25.0], [3.0, -8.0, 0.0]])
    session.generate(points, method="LP")

    planar = session.evaluate_amplitudes(points)
    volume = session.evaluate_amplitudes(np.vstack((points, np.zeros((1, 3)))))
    assert np.allclose(planar, volume)


def test_float_pattern(session, random_phase):
    """A float pattern is evaluated as phase, without touching the working phase."""
    points = np.array([[-10.0, 4.0, 25.0], [3.0, -8.0, 0.0]])
    before = session.get_phase()

    amplitudes = session.evaluate_amplitudes(points, random_phase)

    assert np.all(amplitudes < 0.2)
    assert np.array_equal(session.get_phase(), before)


def test_quantized_pattern(session):
    """Integer patterns are mapped back through the linear quantizer."""
    points = np.array([[-10.0, 4.0, 25.0], [3.0, -8.0, 0.0]])
    session.generate(points, method="LP")

    phase = session.get_phase()
    pattern = tphase.quantize(phase)
    assert np.allclose(
        session.evaluate_amplitudes(points, pattern),
        session.evaluate_amplitudes(points, phase),
        atol=0.01
    )


def test_pattern_shape(session):
    with pytest.raises(ValueError):
        session.evaluate_amplitudes([[0], [0]], np.zeros((4, 4)))


def test_illumination(slm):
    """Amplitudes are normalized by the illumination, so a perfect spot still reads 1."""
    from holotweezers.holography.algorithms import HologramSession

    w = slm.shape[0]
    x = np.linspace(-1, 1, w)
    gaussian = np.exp(-(x[None, :] ** 2 + x[:, None] ** 2) / 0.5)

    with HologramSession(slm, amp=gaussian, spot_capacity=4, max_iterations=2) as session:
        vector = [[8.0], [-3.0], [0.0]]
        _, _, amplitudes = session.generate(vector, method="LP")
        assert np.isclose(amplitudes[-1, 0], 1, atol=1e-3)
