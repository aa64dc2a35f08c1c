import logging
import sys
import warnings
from datetime import datetime
from multiprocessing import cpu_count

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from tqdm import tqdm

from .texture_definitions import FEATURE_NAMES, Digitizer, NeighborhoodView, average_offset_features, \
    build_run_length_histogram, calc_run_length_features, canonicalize_offsets, default_offsets, offset_step_length
from ..exceptions import DataStructureError, DataStructureWarning, GeometryMismatchError, \
    InvalidInputParametersError, InvalidOffsetError, InvalidRangeError
from ..image import Image
from ..toolbox_logic import close_all_loggers, get_logger, handle_uncaught_exception, tqdm_joblib

sys.excepthook = handle_uncaught_exception

logger = logging.getLogger(__name__)


class DigitizedGrid:
    """
    Read-only input of one texture pass, prepared once before any voxel is processed.

    Holds the intensity bin of every voxel, the eligibility (mask) of every voxel and the validated
    configuration. Both arrays are flagged non-writeable, so voxels evaluated in parallel share them safely.
    """

    def __init__(self, bins, eligible, radius, offsets, step_lengths, distance_digitizer, number_of_bins,
                 feature_names=FEATURE_NAMES):
        self.bins = np.array(bins, dtype=np.int64)
        self.bins.setflags(write=False)
        self.eligible = np.array(eligible, dtype=bool)
        self.eligible.setflags(write=False)
        self.radius = tuple(radius)
        self.offsets = tuple(offsets)
        self.step_lengths = tuple(step_lengths)
        self.distance_digitizer = distance_digitizer
        self.number_of_bins = number_of_bins
        self.feature_names = tuple(feature_names)

    @property
    def number_of_features(self):
        return len(self.feature_names)


def calc_voxel_features(grid, index):
    """
    Texture features of a single voxel, averaged over the offsets that produced runs.

    Args:
        grid (DigitizedGrid): Prepared input of the pass.
        index (tuple of int): Voxel index in array axis order.

    Returns:
        np.ndarray: Feature vector, zero if the voxel is not eligible.
    """
    index = tuple(int(i) for i in index)
    if not grid.eligible[index]:
        return np.zeros(grid.number_of_features, dtype=np.float64)

    view = NeighborhoodView(grid.bins, grid.eligible, index, grid.radius)
    offset_features = []
    for offset, step_length in zip(grid.offsets, grid.step_lengths):
        histogram = build_run_length_histogram(view, offset, step_length, grid.distance_digitizer,
                                               grid.number_of_bins)
        if histogram.total_runs == 0:
            continue
        offset_features.append(calc_run_length_features(histogram, grid.feature_names))

    return average_offset_features(offset_features, grid.number_of_features)


def _calc_voxel_chunk(grid, indices):
    return np.array([calc_voxel_features(grid, index) for index in indices], dtype=np.float64)


class RunLengthTexture:

    def __init__(self,
                 neighborhood_radius=2, offsets=None,
                 number_of_bins=256,
                 intensity_range=None, distance_range=None,
                 inside_value=1,
                 feature_names=None,
                 number_of_jobs=1, chunk_size=4096, show_progress=False,
                 log_to_file=False):

        self.logger_date_time = None
        if log_to_file:
            close_all_loggers()
            self.logger_date_time = datetime.now().strftime("%Y-%m-%d_%H%M%S")
            get_logger(self.logger_date_time + '_RunLengthTexture')

        if _is_non_negative_int(neighborhood_radius):
            self._neighborhood_radius = int(neighborhood_radius)
        elif (isinstance(neighborhood_radius, (list, tuple, np.ndarray)) and len(neighborhood_radius) > 0
              and all(_is_non_negative_int(r) for r in neighborhood_radius)):
            self._neighborhood_radius = tuple(int(r) for r in neighborhood_radius)
        else:
            raise InvalidInputParametersError(f'Neighborhood radius {neighborhood_radius} must be a non-negative '
                                              f'integer or a sequence of non-negative integers.')

        if offsets is None:
            self._offsets = None
        else:
            self._offsets = canonicalize_offsets(offsets)

        if not _is_int(number_of_bins) or number_of_bins < 1:
            raise InvalidInputParametersError(f'Number of bins {number_of_bins} must be a positive integer.')
        self._number_of_bins = int(number_of_bins)

        self._intensity_range = None
        if intensity_range is not None:
            self._intensity_range = _validate_range(intensity_range, 'Intensity')

        self._distance_range = None
        if distance_range is not None:
            self._distance_range = _validate_range(distance_range, 'Distance')

        if isinstance(inside_value, bool) or not isinstance(inside_value, (int, float, np.number)):
            raise InvalidInputParametersError(f'Mask inside value {inside_value} must be a number.')
        self._inside_value = inside_value

        if feature_names is None:
            self._feature_names = FEATURE_NAMES
        else:
            feature_names = tuple(feature_names)
            unknown = [name for name in feature_names if name not in FEATURE_NAMES]
            if unknown:
                raise InvalidInputParametersError(f'Unknown features {unknown}, available: {list(FEATURE_NAMES)}.')
            if not feature_names or len(set(feature_names)) != len(feature_names):
                raise InvalidInputParametersError('Feature names must be a non-empty list without duplicates.')
            self._feature_names = feature_names

        if (_is_int(number_of_jobs)
                and (number_of_jobs == -1 or 0 < number_of_jobs <= cpu_count())):
            self._number_of_jobs = int(number_of_jobs)
        else:
            raise InvalidInputParametersError(f'Number of jobs {number_of_jobs} is not an integer or selected number '
                                              f'is greater than maximum number of available CPU. '
                                              f'(Max available {cpu_count()} units)')

        if not _is_int(chunk_size) or chunk_size < 1:
            raise InvalidInputParametersError(f'Chunk size {chunk_size} must be a positive integer.')
        self._chunk_size = int(chunk_size)
        self._show_progress = bool(show_progress)
        logger.info(repr(self))

        self.feature_map_ = None
        self.eligible_ = None

    @property
    def neighborhood_radius(self):
        return self._neighborhood_radius

    @property
    def offsets(self):
        return self._offsets

    @property
    def number_of_bins(self):
        return self._number_of_bins

    @property
    def intensity_range(self):
        return self._intensity_range

    @property
    def distance_range(self):
        return self._distance_range

    @property
    def inside_value(self):
        return self._inside_value

    @property
    def feature_names(self):
        return self._feature_names

    @property
    def number_of_jobs(self):
        return self._number_of_jobs

    @property
    def chunk_size(self):
        return self._chunk_size

    def __repr__(self):
        return (f'RunLengthTexture(neighborhood_radius={self._neighborhood_radius}, offsets={self._offsets}, '
                f'number_of_bins={self._number_of_bins}, intensity_range={self._intensity_range}, '
                f'distance_range={self._distance_range}, inside_value={self._inside_value}, '
                f'feature_names={list(self._feature_names)}, number_of_jobs={self._number_of_jobs}, '
                f'chunk_size={self._chunk_size})')

    def extract_features(self, image, mask=None):
        """
        Computes the run-length texture map of an image.

        Args:
            image (Image or np.ndarray): Integer intensity grid. Plain arrays get unit spacing.
            mask (Image or np.ndarray, optional): Grid of the same geometry; voxels equal to the inside value
                participate.

        Returns:
            Image: Feature map with the geometry of ``image`` and one feature vector per voxel along the
            trailing array axis.

        Raises:
            InvalidInputParametersError: If the configuration does not fit the image dimensionality.
            DataStructureError: If the image is not integer valued or the mask does not match it.
        """
        if not isinstance(image, Image):
            image = Image(array=np.asarray(image))
        intensity_array = self._validate_intensity_array(image.array)

        grid = self._prepare_grid(image, intensity_array, mask)
        logger.info(f'Run-length texture of {intensity_array.ndim}D grid {intensity_array.shape}: '
                    f'{np.count_nonzero(grid.eligible)} eligible voxels, {len(grid.offsets)} offsets.')

        self.eligible_ = grid.eligible
        self.feature_map_ = Image(array=self._calc_feature_map(grid),
                                  origin=image.origin,
                                  spacing=image.spacing,
                                  direction=image.direction,
                                  shape=image.shape)
        return self.feature_map_

    def features_frame(self, feature_map=None, mask=None):
        """
        Tabulates a feature map, one row per eligible voxel, indexed by the voxel index.

        Without arguments the map and eligibility of the last ``extract_features`` call are used. An explicit
        ``mask`` restricts the rows to voxels equal to the inside value.
        """
        if feature_map is None:
            if self.feature_map_ is None:
                raise DataStructureError('No feature map available. Run extract_features first.')
            feature_map = self.feature_map_
            selected = self.eligible_
        else:
            selected = None
        array = feature_map.array if isinstance(feature_map, Image) else np.asarray(feature_map)

        if array.ndim < 2 or array.shape[-1] != len(self._feature_names):
            raise DataStructureError(f'Feature map of shape {array.shape} does not hold '
                                     f'{len(self._feature_names)} features per voxel.')
        spatial_shape = array.shape[:-1]

        if mask is not None:
            mask_array = mask.array if isinstance(mask, Image) else np.asarray(mask)
            if mask_array.shape != spatial_shape:
                raise GeometryMismatchError(f'Mask shape {mask_array.shape} does not match '
                                            f'feature map shape {spatial_shape}.')
            selected = mask_array == self._inside_value
        elif selected is None:
            selected = np.ones(spatial_shape, dtype=bool)

        indices = np.argwhere(selected)
        index_columns = [f'index_{axis}' for axis in range(len(spatial_shape))]
        features_df = pd.DataFrame(array[selected], columns=list(self._feature_names))
        for axis, column in enumerate(index_columns):
            features_df[column] = indices[:, axis]
        features_df.set_index(index_columns, inplace=True)

        return features_df

    def _prepare_grid(self, image, intensity_array, mask):
        ndim = intensity_array.ndim

        if isinstance(self._neighborhood_radius, int):
            radius = (self._neighborhood_radius,) * ndim
        elif len(self._neighborhood_radius) == ndim:
            radius = self._neighborhood_radius
        else:
            raise InvalidInputParametersError(f'Neighborhood radius {self._neighborhood_radius} does not match '
                                              f'the {ndim}D image.')

        offsets = self._offsets if self._offsets is not None else default_offsets(ndim)
        for offset in offsets:
            if len(offset) != ndim:
                raise InvalidOffsetError(f'Offset {offset} does not match the {ndim}D image.')

        spacing = image.array_spacing
        if len(spacing) != ndim:
            raise DataStructureError(f'Spacing {image.spacing} does not match the {ndim}D image.')

        eligible = self._calc_eligibility(image, intensity_array.shape, mask)

        intensity_range = self._intensity_range or _default_intensity_range(image.array.dtype)
        distance_range = self._distance_range or (-np.finfo(np.float64).max, np.finfo(np.float64).max)
        intensity_digitizer = Digitizer(*intensity_range, self._number_of_bins)
        distance_digitizer = Digitizer(*distance_range, self._number_of_bins)

        return DigitizedGrid(bins=intensity_digitizer.digitize(intensity_array),
                             eligible=eligible,
                             radius=radius,
                             offsets=offsets,
                             step_lengths=[offset_step_length(offset, spacing) for offset in offsets],
                             distance_digitizer=distance_digitizer,
                             number_of_bins=self._number_of_bins,
                             feature_names=self._feature_names)

    def _calc_eligibility(self, image, shape, mask):
        if mask is None:
            return np.ones(shape, dtype=bool)

        if isinstance(mask, Image):
            mask_array = np.asarray(mask.array)
            if (mask.spacing is not None and image.spacing is not None
                    and (len(mask.spacing) != len(image.spacing)
                         or not np.allclose(np.asarray(mask.spacing, dtype=np.float64),
                                            np.asarray(image.spacing, dtype=np.float64)))):
                raise GeometryMismatchError(f'Mask spacing {mask.spacing} does not match '
                                            f'image spacing {image.spacing}.')
        else:
            mask_array = np.asarray(mask)

        if mask_array.shape != shape:
            raise GeometryMismatchError(f'Mask shape {mask_array.shape} does not match image shape {shape}.')

        eligible = mask_array == self._inside_value
        if not eligible.any():
            warnings.warn(f'Mask contains no voxel equal to the inside value {self._inside_value}. '
                          f'The feature map is all zeros.', DataStructureWarning)
        return eligible

    def _calc_feature_map(self, grid):
        feature_map = np.zeros(grid.bins.shape + (grid.number_of_features,), dtype=np.float64)

        indices = np.argwhere(grid.eligible)
        chunks = [indices[start:start + self._chunk_size] for start in range(0, len(indices), self._chunk_size)]
        if not chunks:
            return feature_map
        logger.debug(f'{len(indices)} voxels split into {len(chunks)} chunks for {self._number_of_jobs} jobs.')

        if self._show_progress:
            with tqdm_joblib(tqdm(desc="Voxel chunks", total=len(chunks))):
                chunk_features = Parallel(n_jobs=self._number_of_jobs)(
                    delayed(_calc_voxel_chunk)(grid, chunk) for chunk in chunks)
        else:
            chunk_features = Parallel(n_jobs=self._number_of_jobs)(
                delayed(_calc_voxel_chunk)(grid, chunk) for chunk in chunks)

        for chunk, features in zip(chunks, chunk_features):
            feature_map[tuple(chunk.T)] = features

        return feature_map

    @staticmethod
    def _validate_intensity_array(array):
        array = np.asarray(array)
        if array.ndim == 0 or array.size == 0:
            raise DataStructureError(f'Image of shape {array.shape} holds no voxels.')
        if array.dtype == bool:
            return array.astype(np.int64)
        if np.issubdtype(array.dtype, np.integer):
            return array
        if np.issubdtype(array.dtype, np.floating):
            if not np.all(np.isfinite(array)) or not np.all(array == np.round(array)):
                raise DataStructureError('Image samples must be integer valued.')
            return array.astype(np.int64)
        raise DataStructureError(f'Image sample type {array.dtype} is not supported.')


def _is_int(value):
    return isinstance(value, (int, np.integer)) and not isinstance(value, (bool, np.bool_))


def _is_non_negative_int(value):
    return _is_int(value) and value >= 0


def _validate_range(value_range, range_name):
    try:
        lower, upper = value_range
        lower = float(lower)
        upper = float(upper)
    except (TypeError, ValueError):
        raise InvalidRangeError(f'{range_name} range {value_range} must be a pair of numbers.')
    if not (np.isfinite(lower) and np.isfinite(upper)):
        raise InvalidRangeError(f'{range_name} range {value_range} must be finite.')
    if lower >= upper:
        raise InvalidRangeError(f'{range_name} range {value_range}: minimum must be smaller than maximum.')
    return lower, upper


def _default_intensity_range(dtype):
    if dtype == bool:
        return 0.0, 1.0
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
    else:
        info = np.iinfo(np.int64)
    return float(info.min), float(info.max)
