import SimpleITK as sitk
import numpy as np


class Image:
    """
    Array plus the geometry needed to place it in physical space.

    The array is stored in numpy index order (z, y, x) while origin, spacing and direction follow the
    SimpleITK (x, y, z) convention, exactly as SimpleITK hands them out. Feature maps carry one extra,
    trailing array axis holding the per-voxel feature vector.
    """
    def __init__(self, array=None, origin=None, spacing=None, direction=None, shape=None):
        self.sitk_image = None
        self.array = array
        self.origin = origin
        self.spacing = spacing
        self.direction = direction
        self.shape = shape

    @property
    def array_spacing(self):
        """Spacing reordered to follow the array axes, unit spacing when none is set."""
        if self.spacing is None:
            return tuple(1.0 for _ in range(np.ndim(self.array)))
        return tuple(float(s) for s in self.spacing)[::-1]

    @classmethod
    def from_sitk(cls, sitk_image):
        image = cls(array=sitk.GetArrayFromImage(sitk_image),
                    origin=sitk_image.GetOrigin(),
                    spacing=np.array(sitk_image.GetSpacing()),
                    direction=sitk_image.GetDirection(),
                    shape=sitk_image.GetSize())
        image.sitk_image = sitk_image
        return image

    def to_sitk(self, is_vector=False):
        """
        Builds a SimpleITK image with this image's geometry.

        Args:
            is_vector (bool): Interpret the trailing array axis as the pixel vector (feature maps).

        Returns:
            SimpleITK.Image: The converted image.
        """
        img = sitk.GetImageFromArray(self.array, isVector=is_vector)
        if self.origin is not None:
            img.SetOrigin(tuple(float(o) for o in self.origin))
        if self.spacing is not None:
            img.SetSpacing(tuple(float(s) for s in self.spacing))
        if self.direction is not None:
            img.SetDirection(tuple(float(d) for d in self.direction))
        return img
