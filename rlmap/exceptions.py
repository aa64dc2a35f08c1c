"""Custom warnings and errors used across rlmap."""


class InvalidInputParametersError(ValueError):
    """Custom exception to indicate invalid input parameters."""


class InvalidOffsetError(InvalidInputParametersError):
    """Custom exception to indicate a zero, malformed or mis-dimensioned direction offset."""


class InvalidRangeError(InvalidInputParametersError):
    """Custom exception to indicate an empty, inverted or non-finite intensity or distance range."""


class DataStructureWarning(UserWarning):
    """Custom exception to indicate problems with input data structure."""


class DataStructureError(Exception):
    """Custom exception to indicate invalid input data structure."""


class GeometryMismatchError(DataStructureError):
    """Custom exception to indicate that the mask and the image do not share their geometry."""
