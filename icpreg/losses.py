"""Robust loss functions (M-estimators) for outlier handling in ICP."""

import numpy as np

# Consistency constant: MAD / 0.6745 estimates sigma for Gaussian residuals
MAD_TO_SIGMA = 0.6745

# Lower bound on the adaptive scale, in residual units
MIN_SCALE = 1e-6


def huber_loss_weights(residuals, delta=1.345):
    """
    Compute Huber loss weights for robust estimation.

    Good for handling 10-20% outliers. Transitions from quadratic to linear
    penalty at the delta threshold.

    Args:
        residuals: Array of residuals (signed or not, magnitudes are used)
        delta: Threshold for switching from quadratic to linear

    Returns:
        Array of weights (0-1) for each residual
    """
    residuals = np.abs(residuals)
    weights = np.ones_like(residuals, dtype=float)
    outlier_mask = residuals > delta
    weights[outlier_mask] = delta / residuals[outlier_mask]
    return weights


def tukey_loss_weights(residuals, c=4.685):
    """
    Compute Tukey biweight loss weights for robust estimation.

    Very robust to severe outliers (handles 30-50% outliers). Completely
    rejects residuals beyond threshold c.

    Args:
        residuals: Array of residuals
        c: Tuning constant (4.685 for 95% efficiency)

    Returns:
        Array of weights (0-1) for each residual
    """
    normalized = np.abs(residuals) / c
    weights = np.zeros_like(normalized, dtype=float)
    inlier_mask = normalized <= 1.0
    weights[inlier_mask] = (1 - normalized[inlier_mask]**2)**2
    return weights


def percentile_filter_weights(residuals, percentile=90):
    """
    Filter residuals by magnitude percentile.

    Simple outlier rejection: keeps only the best N% of residuals.

    Args:
        residuals: Array of residuals
        percentile: Keep only residuals below this percentile

    Returns:
        Binary weights (0 or 1)
    """
    magnitudes = np.abs(residuals)
    threshold = np.percentile(magnitudes, percentile)
    return (magnitudes <= threshold).astype(float)


def mad_scale(residuals):
    """
    Robust standard deviation of residuals around zero.

    Median of the absolute residuals divided by 0.6745. Residuals of a
    correct fit are centred on zero, so a common offset counts as error.
    """
    residuals = np.asarray(residuals, dtype=float)
    if residuals.size == 0:
        return 0.0
    mad = np.median(np.abs(residuals))
    return float(mad / MAD_TO_SIGMA)


class MEstimator:
    """
    Interface of a robust weighting scheme.

    ``compute_weights`` maps a residual vector to a weight vector of the same
    length. Implementations keep no memory between calls.
    """

    name = None

    def compute_weights(self, residuals):
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}()"


class NoWeighting(MEstimator):
    """Plain least squares."""

    name = 'none'

    def compute_weights(self, residuals):
        return np.ones(np.shape(residuals), dtype=float)


class _ScaledMEstimator(MEstimator):
    """Weights computed on residuals divided by a scale.

    With ``scale=None`` the scale is re-estimated by :func:`mad_scale` on
    every call and clamped below by ``min_scale``. When most residuals are
    already exact the scale sits on that floor, so the remaining ones are
    still down-weighted.
    """

    def __init__(self, scale=None, min_scale=MIN_SCALE):
        if scale is not None and scale <= 0:
            raise ValueError(f"scale must be positive, got {scale}")
        if min_scale <= 0:
            raise ValueError(f"min_scale must be positive, got {min_scale}")
        self.scale = scale
        self.min_scale = min_scale

    def current_scale(self, residuals):
        if self.scale is not None:
            return self.scale
        return max(mad_scale(residuals), self.min_scale)

    def compute_weights(self, residuals):
        residuals = np.asarray(residuals, dtype=float)
        return self._weights(residuals / self.current_scale(residuals))

    def _weights(self, normalized):
        raise NotImplementedError


class HuberWeighting(_ScaledMEstimator):

    name = 'huber'

    def __init__(self, delta=1.345, scale=None, min_scale=MIN_SCALE):
        super().__init__(scale, min_scale)
        self.delta = delta

    def _weights(self, normalized):
        return huber_loss_weights(normalized, delta=self.delta)

    def __repr__(self):
        return f"HuberWeighting(delta={self.delta}, scale={self.scale})"


class TukeyWeighting(_ScaledMEstimator):

    name = 'tukey'

    def __init__(self, c=4.685, scale=None, min_scale=MIN_SCALE):
        super().__init__(scale, min_scale)
        self.c = c

    def _weights(self, normalized):
        return tukey_loss_weights(normalized, c=self.c)

    def __repr__(self):
        return f"TukeyWeighting(c={self.c}, scale={self.scale})"


class PercentileWeighting(MEstimator):

    name = 'percentile'

    def __init__(self, percentile=90):
        self.percentile = percentile

    def compute_weights(self, residuals):
        residuals = np.asarray(residuals, dtype=float)
        if residuals.size == 0:
            return np.ones(0)
        return percentile_filter_weights(residuals, percentile=self.percentile)

    def __repr__(self):
        return f"PercentileWeighting(percentile={self.percentile})"


def get_mestimator(name='none', params=None):
    """
    Get an M-estimator by name.

    Args:
        name: One of 'none', 'huber', 'tukey', 'percentile'
        params: Dictionary of estimator-specific parameters

    Returns:
        MEstimator instance
    """
    if params is None:
        params = {}

    estimators = {
        'none': lambda: NoWeighting(),
        'huber': lambda: HuberWeighting(delta=params.get('delta', 1.345),
                                        scale=params.get('scale'),
                                        min_scale=params.get('min_scale', MIN_SCALE)),
        'tukey': lambda: TukeyWeighting(c=params.get('c', 4.685),
                                        scale=params.get('scale'),
                                        min_scale=params.get('min_scale', MIN_SCALE)),
        'percentile': lambda: PercentileWeighting(percentile=params.get('percentile', 90)),
    }

    if name not in estimators:
        raise ValueError(f"Unknown M-estimator: {name}")
    return estimators[name]()
