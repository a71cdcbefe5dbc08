"""Pytest configuration and shared fixtures for libtmatch tests."""

import numpy as np
import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--run-gpu", action="store_true", default=False,
        help="Run tests that require a CUDA or MPS device",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "gpu: requires a compute-capable GPU device")


def pytest_collection_modifyitems(config, items):
    if not config.getoption("--run-gpu"):
        skip_gpu = pytest.mark.skip(reason="needs --run-gpu option to run")
        for item in items:
            if "gpu" in item.keywords:
                item.add_marker(skip_gpu)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def frame(rng):
    """64x48 (W x H) random frame in [0, 1]."""
    return rng.random((48, 64), dtype=np.float32)


@pytest.fixture
def host_gpu():
    """GPU session running on the torch CPU device (no hardware needed)."""
    from libtmatch.gpu_backend import GPUMatcher
    with GPUMatcher(device="cpu") as gpu:
        yield gpu


def brute_force(frame, template, method):
    """Reference implementation: explicit sliding window in float64."""
    from libtmatch.method import MatchTemplateMethod as M

    frame = np.asarray(frame, dtype=np.float64)
    template = np.asarray(template, dtype=np.float64)
    th, tw = template.shape
    out_h = frame.shape[0] - th + 1
    out_w = frame.shape[1] - tw + 1
    res = np.zeros((out_h, out_w), dtype=np.float64)
    tc = template - template.mean()
    for y in range(out_h):
        for x in range(out_w):
            patch = frame[y:y + th, x:x + tw]
            if method is M.SumOfAbsoluteErrors:
                res[y, x] = np.abs(patch - template).sum()
            elif method is M.SumOfSquaredErrors:
                res[y, x] = ((patch - template) ** 2).sum()
            elif method is M.CrossCorrelation:
                res[y, x] = (patch * template).sum()
            else:
                pc = patch - patch.mean()
                num = (pc * tc).sum()
                if method is M.CCOEFF:
                    res[y, x] = num
                else:
                    res[y, x] = num / np.sqrt((pc ** 2).sum() * (tc ** 2).sum())
    return res


@pytest.fixture
def reference_match():
    return brute_force
