"""
Dirichlet distribution over allele fractions.

A Dirichlet(α) with K categories is the conjugate prior (and, after
observing reads, the variational posterior) of the allele fraction vector
f = (f_1, ..., f_K). Two quantities are needed downstream:

    E[ln f_i] = ψ(α_i) - ψ(Σ α)             (effective multinomial weights)
    ln Z(α)   = ln Γ(Σ α) - Σ ln Γ(α_i)      (normalization constant)

Both are reported in log10 space.
"""

from dataclasses import dataclass

import numpy as np
from scipy.special import digamma, gammaln

from .utils import log_to_log10


def _as_concentration(alpha) -> np.ndarray:
    alpha = np.array(alpha, dtype=float, ndmin=1)
    if alpha.ndim != 1 or alpha.size == 0:
        raise ValueError("Dirichlet parameters must be a non-empty 1-D vector.")
    if not np.all(np.isfinite(alpha)):
        raise ValueError("Dirichlet parameters must be finite.")
    if np.any(alpha <= 0):
        raise ValueError("Dirichlet parameters must be strictly positive.")
    return alpha


def log10_dirichlet_normalization(alpha) -> float:
    """
    Log10 of the Dirichlet normalizing constant.

        log10( Γ(Σ α) / Π Γ(α_i) )

    Computed with log-gamma so that large parameters do not overflow.

    Parameters
    ----------
    alpha : array-like
        Concentration parameters (all > 0).

    Returns
    -------
    float
        Log10 normalization constant.
    """
    alpha = _as_concentration(alpha)
    log_numerator = gammaln(alpha.sum())
    log_denominator = gammaln(alpha).sum()
    return log_to_log10(log_numerator - log_denominator)


@dataclass(frozen=True, eq=False)
class Dirichlet:
    """
    Dirichlet distribution with concentration parameters ``alpha``.

    Parameters
    ----------
    alpha : np.ndarray
        Concentration parameters, one per category, all strictly positive.
    """

    alpha: np.ndarray

    def __post_init__(self):
        alpha = _as_concentration(self.alpha)
        alpha.flags.writeable = False
        object.__setattr__(self, "alpha", alpha)

    @classmethod
    def flat(cls, n_categories: int) -> "Dirichlet":
        """Uniform Dirichlet (all parameters equal to one)."""
        return cls.symmetric(n_categories, 1.0)

    @classmethod
    def symmetric(cls, n_categories: int, value: float) -> "Dirichlet":
        if n_categories < 1:
            raise ValueError("Need at least one category.")
        return cls(np.full(n_categories, float(value)))

    @property
    def size(self) -> int:
        return self.alpha.size

    def effective_log10_multinomial_weights(self) -> np.ndarray:
        """
        Log10 of the effective multinomial weights, exp(E[ln f_i]).

        This is the variational surrogate for the category probabilities:
        when averaging a categorical log-likelihood over f ~ Dirichlet(α),
        f_i enters only through E[ln f_i] = ψ(α_i) - ψ(Σ α).

        Returns
        -------
        np.ndarray
            Vector of K log10 weights (they do not sum to one in linear
            space).
        """
        return log_to_log10(digamma(self.alpha) - digamma(self.alpha.sum()))

    def effective_multinomial_weights(self) -> np.ndarray:
        return np.power(10.0, self.effective_log10_multinomial_weights())

    def mean_weights(self) -> np.ndarray:
        """Posterior mean E[f] = α / Σ α."""
        return self.alpha / self.alpha.sum()

    def log10_mean_weights(self) -> np.ndarray:
        return np.log10(self.mean_weights())

    def log10_normalization(self) -> float:
        return log10_dirichlet_normalization(self.alpha)
