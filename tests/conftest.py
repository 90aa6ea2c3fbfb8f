import logging

import numpy as np
import pytest

import mini_nn
from mini_nn.logging_utils import ROOT_LOGGER_NAME


def numerical_grad(f, x, eps=1e-3):
    """Central differences of scalar f with respect to every entry of x."""
    x = np.array(x, dtype=np.float64)
    grad = np.zeros_like(x)
    for idx in np.ndindex(x.shape):
        orig = x[idx]
        x[idx] = orig + eps
        plus = f(x)
        x[idx] = orig - eps
        minus = f(x)
        x[idx] = orig
        grad[idx] = (plus - minus) / (2 * eps)
    return grad


@pytest.fixture
def gradcheck():
    """
    Compare autograd against finite differences.

    `fn` maps tensors to a scalar tensor; every array in `arrays` is
    checked in turn while the others stay fixed.
    """

    def check(fn, *arrays, rtol=1e-2, atol=1e-3):
        tensors = [mini_nn.tensor(a, requires_grad=True) for a in arrays]
        fn(*tensors).backward()

        for i, array in enumerate(arrays):
            def f(x, i=i):
                inputs = [mini_nn.tensor(x if j == i else a) for j, a in enumerate(arrays)]
                return fn(*inputs).item()

            expected = numerical_grad(f, array)
            np.testing.assert_allclose(tensors[i].grad, expected, rtol=rtol, atol=atol)

    return check


@pytest.fixture(autouse=True)
def seeded():
    mini_nn.manual_seed(1234)


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_mini_nn_handler", False):
            logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
