from .texture import RunLengthTexture, DigitizedGrid, calc_voxel_features
from .texture_definitions import FEATURE_NAMES
