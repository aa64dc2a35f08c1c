import numpy as np
import pytest

from rlmap.image import Image


@pytest.fixture()
def checkerboard_2d():
    """
    5 x 5 checkerboard of intensities 0 and 1, starting with 0 in the corner.
    """
    i, j = np.indices((5, 5))
    return ((i + j) % 2).astype(np.int16)


@pytest.fixture()
def uniform_2d():
    """
    7 x 7 grid of constant intensity 1.
    """
    return np.ones((7, 7), dtype=np.int16)


@pytest.fixture()
def random_3d():
    """
    Small 3D grid of random intensities 0..3 with a fixed seed.
    """
    rng = np.random.default_rng(seed=7)
    return rng.integers(0, 4, size=(4, 5, 6)).astype(np.int32)


@pytest.fixture()
def random_3d_mask(random_3d):
    """
    Mask of the random 3D grid with an inner block set to the inside value 1.
    """
    mask = np.zeros(random_3d.shape, dtype=np.int8)
    mask[1:4, 1:4, 1:5] = 1
    return mask


@pytest.fixture()
def ct_like_image():
    """
    2-slice image in (z, y, x) order with SimpleITK style geometry.
    """
    rng = np.random.default_rng(seed=3)
    return Image(array=rng.integers(-100, 100, size=(2, 6, 5)).astype(np.int16),
                 origin=(-10.0, 5.0, 2.5),
                 spacing=(0.5, 0.75, 3.0),
                 direction=(1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0),
                 shape=(5, 6, 2))
