from typing import Optional

import numpy as np
from scipy.special import logsumexp


_LN10 = np.log(10.0)

# Responsibilities below this contribute exactly zero entropy
DEFAULT_ENTROPY_FLOOR = 1e-8


class DegenerateLikelihoodsError(FloatingPointError):
    """Every category of a read has log10 weight -inf, so it cannot be normalized."""


class ConvergenceError(RuntimeError):
    """The allele fraction solver hit its iteration cap before converging."""


def log_to_log10(x):
    """Convert natural-log values to log10."""
    return np.asarray(x, dtype=float) / _LN10 if np.ndim(x) else float(x) / _LN10


def log10_to_log(x):
    """Convert log10 values to natural log."""
    return np.asarray(x, dtype=float) * _LN10 if np.ndim(x) else float(x) * _LN10


def log10_sum_log10(log10_values: np.ndarray, axis=None):
    """
    Stable log10(Σ 10^v).

    Uses scipy's logsumexp, which subtracts the maximum before
    exponentiating. Returns -inf when every value is -inf.
    """
    log10_values = np.asarray(log10_values, dtype=float)
    return log_to_log10(logsumexp(log10_to_log(log10_values), axis=axis))


def _check_log10_columns(log10_values: np.ndarray):
    # a column whose maximum is -inf has a zero normalizing sum
    if log10_values.shape[0] == 0:
        raise ValueError("Cannot normalize an empty vector of log10 weights.")
    if np.isnan(log10_values).any():
        raise FloatingPointError("log10 weights contain NaN.")
    col_max = log10_values.max(axis=0)
    if np.any(np.isneginf(col_max)):
        raise DegenerateLikelihoodsError(
            "All log10 weights are -inf; the posterior is undefined."
        )


def log10_normalize(log10_values: np.ndarray) -> np.ndarray:
    """
    Normalize log10 weights so that their powers of ten sum to one.

    Parameters
    ----------
    log10_values : np.ndarray
        Unnormalized log10 weights. A 2-D array is normalized column by
        column (categories along axis 0).

    Returns
    -------
    np.ndarray
        Normalized log10 probabilities, same shape as the input.

    Raises
    ------
    DegenerateLikelihoodsError
        If every weight of a vector (or column) is -inf.
    """
    log10_values = np.asarray(log10_values, dtype=float)
    _check_log10_columns(log10_values)
    return log10_values - log10_sum_log10(log10_values, axis=0)


def log10_posteriors(
    log10_weights: np.ndarray, log10_likelihoods: np.ndarray
) -> np.ndarray:
    """
    Posterior category probabilities from log10 priors and log10 likelihoods.

    For each category i:
        p_i = 10^(w_i + l_i) / Σ_j 10^(w_j + l_j)

    Parameters
    ----------
    log10_weights : np.ndarray
        Log10 category weights, length K.
    log10_likelihoods : np.ndarray
        Log10 likelihoods of one observation (length K) or of many
        observations (K x R, one column per observation).

    Returns
    -------
    np.ndarray
        Probabilities summing to one over axis 0, same shape as
        ``log10_likelihoods``.
    """
    log10_weights = np.asarray(log10_weights, dtype=float)
    log10_likelihoods = np.asarray(log10_likelihoods, dtype=float)

    if log10_likelihoods.shape[0] != log10_weights.shape[0]:
        raise ValueError(
            f"Weights have {log10_weights.shape[0]} categories but likelihoods "
            f"have {log10_likelihoods.shape[0]}."
        )

    if log10_likelihoods.ndim == 2:
        log10_joint = log10_weights[:, None] + log10_likelihoods
    else:
        log10_joint = log10_weights + log10_likelihoods

    return np.power(10.0, log10_normalize(log10_joint))


def x_log10_x(x, floor: float = DEFAULT_ENTROPY_FLOOR):
    """x * log10(x), taken as exactly zero for x below ``floor``."""
    x = np.asarray(x, dtype=float)
    out = np.zeros_like(x)
    # log10(0) is undefined, so zero is excluded even when floor is 0
    mask = (x >= floor) & (x > 0)
    out[mask] = x[mask] * np.log10(x[mask])
    return out if out.ndim else float(out)



def sum_array_function(arrays, length: Optional[int] = None) -> np.ndarray:
    """
    Element-wise sum of equal-length vectors.

    Parameters
    ----------
    arrays : iterable of np.ndarray
        Vectors to add, e.g. one responsibility vector per read.
    length : int, optional
        Length of the result when ``arrays`` is empty.

    Returns
    -------
    np.ndarray
        Sum over the sequence.
    """
    arrays = [np.asarray(a, dtype=float) for a in arrays]
    if not arrays:
        if length is None:
            raise ValueError("Cannot sum an empty sequence without a length.")
        return np.zeros(length)
    return np.sum(np.stack(arrays), axis=0)
