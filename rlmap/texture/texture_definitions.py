import itertools
import logging

import numpy as np

from ..exceptions import InvalidInputParametersError, InvalidOffsetError, InvalidRangeError

logger = logging.getLogger(__name__)

FEATURE_NAMES = ('rlm_sre', 'rlm_lre', 'rlm_glnu', 'rlm_rlnu', 'rlm_lgre', 'rlm_hgre',
                 'rlm_srlge', 'rlm_srhge', 'rlm_lrlge', 'rlm_lrhge')


def canonicalize_offset(offset):
    """
    Normalizes a direction vector so that a direction and its reverse share one representative.

    The last non-zero component of the canonical offset is positive, e.g. (-1, 0) -> (1, 0) and
    (1, -1) -> (-1, 1).

    Args:
        offset (sequence of int): Non-zero integer direction vector in array axis order.

    Returns:
        tuple of int: The canonical offset.

    Raises:
        InvalidOffsetError: If the offset is empty, not integer valued or the zero vector.
    """
    components = np.asarray(offset)
    if components.ndim != 1 or components.size == 0:
        raise InvalidOffsetError(f"Offset {offset} must be a non-empty sequence of integers.")
    if not np.issubdtype(components.dtype, np.integer):
        if (components.dtype == bool or not np.issubdtype(components.dtype, np.number)
                or not np.all(np.isfinite(components)) or not np.all(components == np.round(components))):
            raise InvalidOffsetError(f"Offset {offset} must contain integer components only.")
    components = components.astype(np.int64)

    non_zero = np.flatnonzero(components)
    if non_zero.size == 0:
        raise InvalidOffsetError(f"Offset {tuple(int(c) for c in components)} is a zero vector.")
    if components[non_zero[-1]] < 0:
        components = -components

    return tuple(int(c) for c in components)


def canonicalize_offsets(offsets):
    """
    Canonicalizes a collection of offsets, dropping those that collapse onto an earlier one.

    A single offset (a flat sequence of integers) is accepted as well.
    """
    offsets = list(offsets)
    if len(offsets) > 0 and all(np.isscalar(c) for c in offsets):
        offsets = [offsets]
    if len(offsets) == 0:
        raise InvalidOffsetError("At least one offset is required.")

    canonical_offsets = []
    for offset in offsets:
        canonical = canonicalize_offset(offset)
        if canonical_offsets and len(canonical) != len(canonical_offsets[0]):
            raise InvalidOffsetError(f"Offset {tuple(offset)} has {len(canonical)} components, "
                                     f"expected {len(canonical_offsets[0])}.")
        if canonical in canonical_offsets:
            logger.warning(f"Offset {tuple(offset)} duplicates {canonical} and is dropped.")
            continue
        canonical_offsets.append(canonical)

    return tuple(canonical_offsets)


def default_offsets(ndim):
    """All (3**ndim - 1) / 2 undirected unit-neighbour directions, in canonical form."""
    offsets = []
    for vector in itertools.product((-1, 0, 1), repeat=ndim):
        if any(vector):
            canonical = canonicalize_offset(vector)
            if canonical not in offsets:
                offsets.append(canonical)
    return tuple(offsets)


def offset_step_length(offset, spacing):
    """Physical length of one step along ``offset``, with ``spacing`` in array axis order."""
    return float(np.linalg.norm(np.asarray(offset, dtype=np.float64) * np.asarray(spacing, dtype=np.float64)))


class Digitizer:
    """
    Linear map of real values onto the bin indices 0 .. number_of_bins - 1.

    Bins are half-open, [lower + k * width, lower + (k + 1) * width), except the last one, which also
    holds ``upper``. Values outside [lower, upper] are clamped to the nearest edge bin.
    """

    def __init__(self, lower, upper, number_of_bins):
        if isinstance(number_of_bins, bool) or not isinstance(number_of_bins, (int, np.integer)) \
                or number_of_bins < 1:
            raise InvalidInputParametersError(f"Number of bins {number_of_bins} must be a positive integer.")
        try:
            lower = float(lower)
            upper = float(upper)
        except (TypeError, ValueError):
            raise InvalidRangeError(f"Range bounds ({lower}, {upper}) must be real numbers.")
        if not (np.isfinite(lower) and np.isfinite(upper)):
            raise InvalidRangeError(f"Range bounds ({lower}, {upper}) must be finite.")
        if lower >= upper:
            raise InvalidRangeError(f"Lower bound {lower} must be smaller than upper bound {upper}.")

        self.lower = lower
        self.upper = upper
        self.number_of_bins = int(number_of_bins)

        # Halved operands keep the full float64 range from overflowing
        self._half_lower = lower / 2
        self._half_bin_width = (upper / 2 - lower / 2) / self.number_of_bins
        if self._half_bin_width <= 0:
            raise InvalidRangeError(f"Range ({lower}, {upper}) is too narrow for {number_of_bins} bins.")

    def digitize(self, values):
        scaled = (np.asarray(values, dtype=np.float64) / 2 - self._half_lower) / self._half_bin_width
        bins = np.clip(np.floor(scaled), 0, self.number_of_bins - 1).astype(np.int64)
        if bins.ndim == 0:
            return int(bins)
        return bins

    def __repr__(self):
        return f"Digitizer(lower={self.lower}, upper={self.upper}, number_of_bins={self.number_of_bins})"


class NeighborhoodView:
    """
    Read-only window of digitized samples and eligibility around a center voxel.

    The window spans [center - radius, center + radius] on every axis, clipped to the grid. All lookups
    take offsets relative to the center and report positions outside the window as outside.
    """

    def __init__(self, bins, eligible, center, radius):
        self.center = tuple(int(c) for c in center)
        self.radius = tuple(int(r) for r in radius)

        window = []
        center_position = []
        for c, r, n in zip(self.center, self.radius, bins.shape):
            start = max(c - r, 0)
            stop = min(c + r + 1, n)
            window.append(slice(start, stop))
            center_position.append(c - start)

        self.window = tuple(window)
        self.center_position = tuple(center_position)
        self.window_bins = bins[self.window]
        self.window_eligible = eligible[self.window]

    @property
    def shape(self):
        return self.window_bins.shape

    @property
    def number_of_voxels(self):
        return int(np.count_nonzero(self.window_eligible))

    def _position(self, offset):
        if len(offset) != len(self.center):
            raise InvalidOffsetError(f"Offset {tuple(offset)} does not match the {len(self.center)}D neighborhood.")
        position = tuple(p + int(o) for p, o in zip(self.center_position, offset))
        for o, r, p, n in zip(offset, self.radius, position, self.shape):
            if abs(o) > r or not 0 <= p < n:
                return None
        return position

    def contains(self, offset):
        return self._position(offset) is not None

    def sample(self, offset):
        position = self._position(offset)
        if position is None:
            return None
        return int(self.window_bins[position])

    def is_eligible(self, offset):
        position = self._position(offset)
        if position is None:
            return False
        return bool(self.window_eligible[position])


def _shift(array, offset, fill):
    """Returns ``result`` with ``result[p] == array[p + offset]``, ``fill`` where ``p + offset`` leaves the array."""
    result = np.full(array.shape, fill, dtype=array.dtype)
    source = []
    target = []
    for n, o in zip(array.shape, offset):
        if abs(o) >= n:
            return result
        if o >= 0:
            source.append(slice(o, n))
            target.append(slice(0, n - o))
        else:
            source.append(slice(0, n + o))
            target.append(slice(-o, n))
    result[tuple(target)] = array[tuple(source)]
    return result


class RunLengthHistogram:
    """
    Runs of one voxel and one offset, stored as (intensity bin, run-length bin) pairs.

    ``matrix`` expands the pairs into the dense count table indexed by (intensity bin, run-length bin).
    """

    def __init__(self, number_of_bins, number_of_voxels=0):
        self.number_of_bins = number_of_bins
        self.number_of_voxels = number_of_voxels
        self.intensity_bins = np.empty(0, dtype=np.int64)
        self.distance_bins = np.empty(0, dtype=np.int64)

    @property
    def total_runs(self):
        return int(self.intensity_bins.size)

    @property
    def matrix(self):
        matrix = np.zeros((self.number_of_bins, self.number_of_bins), dtype=np.int64)
        np.add.at(matrix, (self.intensity_bins, self.distance_bins), 1)
        return matrix

    def add_runs(self, intensity_bins, distance_bins):
        intensity_bins = np.asarray(intensity_bins, dtype=np.int64).ravel()
        distance_bins = np.asarray(distance_bins, dtype=np.int64).ravel()
        if intensity_bins.size != distance_bins.size:
            raise ValueError(f"Got {intensity_bins.size} intensity bins for {distance_bins.size} run lengths.")
        self.intensity_bins = np.concatenate([self.intensity_bins, intensity_bins])
        self.distance_bins = np.concatenate([self.distance_bins, distance_bins])


def _calc_run_lengths(bins, eligible, offset):
    """
    Finds the runs of a window along one offset.

    Every voxel lies on exactly one line ``start + t * offset`` through the window. Eligible voxels are
    ordered by (line, t); a cumulative sum over the run starts then labels each voxel with its run.

    Returns:
        tuple of np.ndarray: Intensity bin and length in voxels of every run.
    """
    # True where p and its predecessor p - offset belong to the same run
    backward = tuple(-o for o in offset)
    continues_run = eligible & _shift(eligible, backward, False) & (bins == _shift(bins, backward, -1))
    run_starts = eligible & ~continues_run

    positions = np.indices(bins.shape)
    steps_back = np.full(bins.shape, np.iinfo(np.int64).max, dtype=np.int64)
    for axis, o in enumerate(offset):
        if o > 0:
            steps_back = np.minimum(steps_back, positions[axis] // o)
        elif o < 0:
            steps_back = np.minimum(steps_back, (bins.shape[axis] - 1 - positions[axis]) // -o)
    line_starts = positions - steps_back * np.reshape(offset, (-1,) + (1,) * bins.ndim)
    lines = np.ravel_multi_index(tuple(line_starts), bins.shape)

    order = np.lexsort((steps_back[eligible], lines[eligible]))
    ordered_starts = run_starts[eligible][order]
    run_ids = np.cumsum(ordered_starts) - 1

    run_lengths = np.bincount(run_ids).astype(np.int64)
    run_bins = bins[eligible][order][ordered_starts]
    return run_bins, run_lengths


def build_run_length_histogram(view, offset, step_length, distance_digitizer, number_of_bins):
    """
    Counts the runs of the neighborhood along one canonical offset.

    A run starts at every eligible voxel whose predecessor (p - offset) is outside the neighborhood,
    not eligible or in another intensity bin, and extends while the next voxel is inside, eligible and in
    the same bin. Masked-out voxels therefore terminate runs. A run of L voxels spans L - 1 steps and its
    distance is (L - 1) * step_length.

    Args:
        view (NeighborhoodView): Neighborhood of the center voxel.
        offset (tuple of int): Canonical direction.
        step_length (float): Physical length of one step along ``offset``.
        distance_digitizer (Digitizer): Maps run distances to bins.
        number_of_bins (int): Bins per histogram axis.

    Returns:
        RunLengthHistogram: The filled histogram.
    """
    run_bins, run_lengths = _calc_run_lengths(view.window_bins, view.window_eligible, offset)

    histogram = RunLengthHistogram(number_of_bins, view.number_of_voxels)
    distances = (run_lengths - 1) * step_length
    histogram.add_runs(run_bins, distance_digitizer.digitize(distances))

    return histogram


# Feature functions take the representative values of every run, g for the intensity bin and r for the
# run-length bin, both 1-based bin ordinals.

def calc_short_run_emphasis(g, r):

    return np.sum(1 / r ** 2) / r.size


def calc_long_run_emphasis(g, r):

    return np.sum(r ** 2) / r.size


def calc_gr_lvl_non_uniformity(g, r):

    _, counts = np.unique(g, return_counts=True)

    return np.sum(counts.astype(np.float64) ** 2) / g.size


def calc_run_length_non_uniformity(g, r):

    _, counts = np.unique(r, return_counts=True)

    return np.sum(counts.astype(np.float64) ** 2) / r.size


def calc_low_gr_lvl_run_emphasis(g, r):

    return np.sum(1 / g ** 2) / g.size


def calc_high_gr_lvl_run_emphasis(g, r):

    return np.sum(g ** 2) / g.size


def calc_short_run_low_gr_lvl_emphasis(g, r):

    return np.sum(1 / (g ** 2 * r ** 2)) / g.size


def calc_short_run_high_gr_lvl_emphasis(g, r):

    return np.sum(g ** 2 / r ** 2) / g.size


def calc_long_run_low_gr_lvl_emphasis(g, r):

    return np.sum(r ** 2 / g ** 2) / g.size


def calc_long_run_high_gr_lvl_emphasis(g, r):

    return np.sum(g ** 2 * r ** 2) / g.size


FEATURE_FUNCTIONS = dict(zip(FEATURE_NAMES, (
    calc_short_run_emphasis,
    calc_long_run_emphasis,
    calc_gr_lvl_non_uniformity,
    calc_run_length_non_uniformity,
    calc_low_gr_lvl_run_emphasis,
    calc_high_gr_lvl_run_emphasis,
    calc_short_run_low_gr_lvl_emphasis,
    calc_short_run_high_gr_lvl_emphasis,
    calc_long_run_low_gr_lvl_emphasis,
    calc_long_run_high_gr_lvl_emphasis,
)))


def calc_run_length_features(histogram, feature_names=FEATURE_NAMES):
    """Feature vector of one non-empty histogram, ordered as ``feature_names``."""
    g = histogram.intensity_bins + 1.0
    r = histogram.distance_bins + 1.0
    return np.array([FEATURE_FUNCTIONS[name](g, r) for name in feature_names], dtype=np.float64)


def average_offset_features(feature_vectors, number_of_features):
    """Component-wise mean over the offsets that produced runs; zero vector when none did."""
    if len(feature_vectors) == 0:
        return np.zeros(number_of_features, dtype=np.float64)
    return np.mean(np.asarray(feature_vectors, dtype=np.float64), axis=0)
