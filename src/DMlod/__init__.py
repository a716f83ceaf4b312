"""
Dirichlet-Multinomial Log-Odds for Somatic Allele Detection.
...
"""

from .utils import (
    # Log-space arithmetic
    log10_posteriors,
    log10_normalize,
    log10_sum_log10,
    log_to_log10,
    log10_to_log,
    x_log10_x,
    sum_array_function,
    # Errors
    DegenerateLikelihoodsError,
    ConvergenceError,
)

from .dirichlet import (
    Dirichlet,
    log10_dirichlet_normalization,
)

from .params import SomaticLikelihoodsSpec

from .matrix import LikelihoodMatrix

from .engine import (
    AlleleFractionsFit,
    allele_fractions_posterior,
    fit_allele_fractions,
    get_effective_counts,
    log10_evidence,
    somatic_log10_odds,
    somatic_log10_odds_from_array,
)

__all__ = [
    # Classes
    "Dirichlet",
    "LikelihoodMatrix",
    # Inference
    "allele_fractions_posterior",
    "fit_allele_fractions",
    "get_effective_counts",
    "log10_evidence",
    "log10_dirichlet_normalization",
    "somatic_log10_odds",
    "somatic_log10_odds_from_array",
    # Data classes
    "SomaticLikelihoodsSpec",
    "AlleleFractionsFit",
    # Utilities
    "log10_posteriors",
    "log10_normalize",
    "log10_sum_log10",
    "log_to_log10",
    "log10_to_log",
    "x_log10_x",
    "sum_array_function",
    # Errors
    "DegenerateLikelihoodsError",
    "ConvergenceError",
]

__version__ = "0.1.0"
