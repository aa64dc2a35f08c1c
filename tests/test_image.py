import SimpleITK as sitk
import numpy as np
import pytest

from rlmap.image import Image


@pytest.mark.unit
def test_array_spacing_follows_array_axes(ct_like_image):
    assert ct_like_image.array_spacing == (3.0, 0.75, 0.5)
    assert Image(array=np.zeros((3, 4))).array_spacing == (1.0, 1.0)


@pytest.mark.unit
def test_from_sitk_keeps_geometry():
    sitk_image = sitk.GetImageFromArray(np.arange(24, dtype=np.int16).reshape((2, 3, 4)))
    sitk_image.SetSpacing((0.5, 1.0, 2.5))
    sitk_image.SetOrigin((1.0, -2.0, 3.0))

    image = Image.from_sitk(sitk_image)

    assert image.array.shape == (2, 3, 4)
    assert image.shape == (4, 3, 2)
    assert image.array_spacing == (2.5, 1.0, 0.5)
    assert image.origin == pytest.approx((1.0, -2.0, 3.0))
    assert image.sitk_image is sitk_image


@pytest.mark.unit
def test_to_sitk_scalar_roundtrip(ct_like_image):
    sitk_image = ct_like_image.to_sitk()

    assert sitk_image.GetSize() == (5, 6, 2)
    assert sitk_image.GetSpacing() == pytest.approx((0.5, 0.75, 3.0))
    np.testing.assert_array_equal(sitk.GetArrayFromImage(sitk_image), ct_like_image.array)


@pytest.mark.unit
def test_to_sitk_vector_image():
    feature_map = Image(array=np.ones((3, 4, 10)), spacing=(1.5, 2.0))
    sitk_image = feature_map.to_sitk(is_vector=True)

    assert sitk_image.GetDimension() == 2
    assert sitk_image.GetSize() == (4, 3)
    assert sitk_image.GetNumberOfComponentsPerPixel() == 10
