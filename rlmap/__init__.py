from .image import Image
from .texture import RunLengthTexture, FEATURE_NAMES
