import numpy as npy
import pytest


@pytest.fixture()
def rng() -> npy.random.Generator:
    return npy.random.default_rng(1234)
