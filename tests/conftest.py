"""
Shared fixtures for the holotweezers test suite.

Every test runs against a small :class:`SimulatedSLM` so the numpy fallback stays
fast. Each run writes to ``tests/output/YYYYMMDD_HHMMSS/``:

- ``pytest.log``, with one logger per test and every ``warnings.warn`` routed into it,
- one ``.png`` per figure passed to ``plt.show()``.
"""
import os
import logging
import tempfile
from pathlib import Path
from datetime import datetime

import pytest
import numpy as np
import matplotlib
import matplotlib.pyplot as plt

from holotweezers.hardware.slms.simulated import SimulatedSLM
from holotweezers.holography.algorithms import HologramSession

# Modulator width of the fixtures.
TEST_WIDTH = 128

_OUTPUT_DIR = None


@pytest.fixture
def spot_grid():
    """
    Returns ``make(session, bins_x, bins_y, z_um=None)``, which builds spot vectors in
    microns offset from the center by ``bins_x`` and ``bins_y`` FFT bins of ``session``.
    """
    def make(session, bins_x, bins_y, z_um=None):
        delta_um = session.wav_um * session.f_um / (session.data_w * session.pitch_um)
        vectors = delta_um * np.vstack((np.asarray(bins_x, dtype=float), np.asarray(bins_y, dtype=float)))
        if z_um is not None:
            vectors = np.vstack((vectors, np.full(vectors.shape[1], float(z_um))))
        return vectors
    return make


@pytest.fixture(scope="session")
def random_seed():
    """Seeds numpy once per run; the seed is logged so failures can be replayed."""
    seed = int(datetime.now().timestamp() * 1e6) % 2**32
    np.random.seed(seed)
    logging.getLogger("tests.conftest").info(f"numpy seed: {seed}")
    return seed


@pytest.fixture
def slm():
    """A square simulated modulator at 1064 nm with 8 um pixels."""
    device = SimulatedSLM((TEST_WIDTH, TEST_WIDTH), pitch_um=(8.0, 8.0), wav_um=1.064)
    yield device
    device.close()


@pytest.fixture
def session(slm):
    """A started HologramSession on :func:`slm`, without hardware output."""
    hologram_session = HologramSession(slm, spot_capacity=64, max_iterations=50)
    hologram_session.start()
    yield hologram_session
    hologram_session.stop()


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def random_phase(random_seed):
    """Uniform random phase in [-pi, pi) over the fixture modulator."""
    return np.random.uniform(-np.pi, np.pi, (TEST_WIDTH, TEST_WIDTH))


@pytest.fixture(autouse=True)
def test_logger(request):
    """Logger named ``tests.module.Class.test`` bracketing each test in the run log."""
    parts = ["tests", request.module.__name__.split(".")[-1]]
    if request.cls is not None:
        parts.append(request.cls.__name__)
    parts.append(request.node.name)

    logger = logging.getLogger(".".join(parts))
    logger.info("start")
    yield logger

    report = getattr(request.node, "rep_call", None)
    if report is not None:
        logger.info(report.outcome)


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    outcome = yield
    report = outcome.get_result()
    setattr(item, f"rep_{report.when}", report)


@pytest.fixture(scope="session", autouse=True)
def figures_to_files():
    """Non-interactive backend; ``plt.show()`` saves open figures into the run directory."""
    matplotlib.use("Agg")
    original_show = plt.show

    def save_figures(*args, **kwargs):
        test_id = os.environ.get("PYTEST_CURRENT_TEST", "unknown").split(" ")[0]
        stem = test_id.split("/")[-1].replace(".py", "").replace("::", "_")
        for i, number in enumerate(plt.get_fignums()):
            plt.figure(number).savefig(_OUTPUT_DIR / f"{stem}_fig{i}.png", bbox_inches="tight")
        plt.close("all")

    plt.show = save_figures
    yield
    plt.show = original_show


@pytest.fixture
def mpl_test():
    """``matplotlib.pyplot`` with every figure closed before and after the test."""
    plt.close("all")
    yield plt
    plt.close("all")


def pytest_configure(config):
    global _OUTPUT_DIR
    _OUTPUT_DIR = Path("tests/output") / datetime.now().strftime("%Y%m%d_%H%M%S")
    _OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

    config.option.log_file = str(_OUTPUT_DIR / "pytest.log")

    # Truncation and method downgrades are reported through warnings.
    logging.captureWarnings(True)
    logging.getLogger().setLevel(logging.WARNING)
    for name in ["holotweezers", "tests"]:
        logging.getLogger(name).setLevel(logging.INFO)
