"""
Allele fraction posterior, model evidence and somatic log-odds.

Generative model for a sample containing K alleles and R reads:

    f ~ Dirichlet(α)                      allele fractions
    z_r | f ~ Categorical(f)              allele that generated read r
    read_r | z_r = a ~ L[a, r]            given log10 likelihood matrix

The posterior on f is approximated by a Dirichlet q(f) = Dir(β) found by a
fixed-point (variational EM) iteration:

    E-step: responsibilities  z̄_r ∝ exp(E_q[ln f]) * 10^L[:, r]
    M-step: β = α + Σ_r z̄_r

The log10 evidence is the converged lower bound

    log10 Z(α) - log10 Z(β) + Σ_r [ Σ_a z̄_ra L[a, r] - Σ_a z̄_ra log10 z̄_ra ]

and the somatic log-odds of an alternate allele is the evidence with all
alleles minus the evidence with that allele removed.
"""

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Hashable, Optional, Sequence

import numpy as np

from .dirichlet import Dirichlet, log10_dirichlet_normalization
from .matrix import LikelihoodMatrix
from .params import SomaticLikelihoodsSpec
from .utils import (
    ConvergenceError,
    log10_posteriors,
    sum_array_function,
    x_log10_x,
)

logger = logging.getLogger(__name__)


@dataclass
class AlleleFractionsFit:
    """
    Result of the allele fraction fixed-point iteration.
    """

    # Dirichlet parameters
    prior: np.ndarray
    posterior: np.ndarray

    # Expected number of reads per allele at the final iterate
    effective_counts: np.ndarray = field(repr=False)

    # Diagnostics
    n_iterations: int
    converged: bool

    @property
    def n_reads(self) -> float:
        return float(self.effective_counts.sum())

    @property
    def allele_fractions(self) -> np.ndarray:
        """Posterior mean allele fractions."""
        return self.posterior / self.posterior.sum()


def _resolve_spec(spec: Optional[SomaticLikelihoodsSpec]) -> SomaticLikelihoodsSpec:
    return spec if spec is not None else SomaticLikelihoodsSpec()


def _as_log10_matrix(log10_likelihoods) -> np.ndarray:
    if isinstance(log10_likelihoods, LikelihoodMatrix):
        return log10_likelihoods.values
    values = np.asarray(log10_likelihoods, dtype=float)
    if values.ndim != 2:
        raise ValueError("log10_likelihoods must be a 2-D (alleles x reads) array")
    if values.shape[0] < 1:
        raise ValueError("Need at least one allele")
    return values


def _validate_inputs(log10_likelihoods, prior_pseudocounts):
    values = _as_log10_matrix(log10_likelihoods)
    n_alleles = values.shape[0]

    if prior_pseudocounts is None:
        prior = Dirichlet.flat(n_alleles).alpha
    else:
        prior = np.array(prior_pseudocounts, dtype=float)
        if prior.ndim != 1 or prior.size != n_alleles:
            raise ValueError("Must have one pseudocount per allele.")
        if np.any(prior < 0) or not np.all(np.isfinite(prior)):
            raise ValueError("Pseudocounts must be finite and non-negative.")

    return values, prior


def get_effective_counts(log10_likelihoods, dirichlet_prior) -> np.ndarray:
    """
    Total responsibility of each allele summed over reads.

    Parameters
    ----------
    log10_likelihoods : np.ndarray
        Alleles x reads log10 likelihoods.
    dirichlet_prior : np.ndarray
        Dirichlet parameters defining the effective allele weights.

    Returns
    -------
    np.ndarray
        Expected number of reads generated by each allele.
    """
    values = _as_log10_matrix(log10_likelihoods)
    log10_weights = Dirichlet(dirichlet_prior).effective_log10_multinomial_weights()
    responsibilities = log10_posteriors(log10_weights, values)
    return sum_array_function(responsibilities.T, length=values.shape[0])


def fit_allele_fractions(
    log10_likelihoods,
    prior_pseudocounts=None,
    spec: Optional[SomaticLikelihoodsSpec] = None,
) -> AlleleFractionsFit:
    """
    Run the allele fraction fixed-point iteration and keep diagnostics.

    Parameters
    ----------
    log10_likelihoods : np.ndarray or LikelihoodMatrix
        Alleles x reads log10 likelihoods.
    prior_pseudocounts : np.ndarray, optional
        Dirichlet prior, one pseudocount per allele. Flat (all ones) if None.
    spec : SomaticLikelihoodsSpec, optional
        Numerical settings.

    Returns
    -------
    AlleleFractionsFit
        Converged (or, with ``on_nonconvergence="warn"``, last) iterate.

    Raises
    ------
    ValueError
        If the prior length does not match the number of alleles.
    ConvergenceError
        If ``spec.max_iterations`` is exceeded and the policy is "raise".
    """
    spec = _resolve_spec(spec)
    values, prior = _validate_inputs(log10_likelihoods, prior_pseudocounts)

    posterior = Dirichlet.flat(values.shape[0]).alpha.copy()
    iteration = 0

    while True:
        iteration += 1
        counts = get_effective_counts(values, posterior)
        new_posterior = counts + prior
        distance = np.abs(new_posterior - posterior).sum()
        posterior = new_posterior

        if distance < spec.convergence_threshold:
            converged = True
            break

        if spec.max_iterations is not None and iteration >= spec.max_iterations:
            message = (
                f"Allele fraction posterior did not converge after {iteration} "
                f"iterations (L1 change {distance:.3g})"
            )
            if spec.on_nonconvergence == "raise":
                raise ConvergenceError(message)
            logger.warning(message)
            converged = False
            break

    logger.debug(
        "Allele fraction posterior for %d alleles x %d reads: %d iterations",
        values.shape[0],
        values.shape[1],
        iteration,
    )

    return AlleleFractionsFit(
        prior=prior,
        posterior=posterior,
        effective_counts=counts,
        n_iterations=iteration,
        converged=converged,
    )


def allele_fractions_posterior(
    log10_likelihoods,
    prior_pseudocounts=None,
    spec: Optional[SomaticLikelihoodsSpec] = None,
) -> np.ndarray:
    """
    Dirichlet posterior parameters of the allele fractions.

    Parameters
    ----------
    log10_likelihoods : np.ndarray or LikelihoodMatrix
        Alleles x reads log10 likelihoods.
    prior_pseudocounts : np.ndarray, optional
        Dirichlet prior, one pseudocount per allele. Flat (all ones) if None.
    spec : SomaticLikelihoodsSpec, optional
        Numerical settings.

    Returns
    -------
    np.ndarray
        Posterior Dirichlet parameters, one per allele.
    """
    return fit_allele_fractions(log10_likelihoods, prior_pseudocounts, spec).posterior


def log10_evidence(
    log10_likelihoods,
    prior_pseudocounts=None,
    spec: Optional[SomaticLikelihoodsSpec] = None,
) -> float:
    """
    Log10 marginal evidence of the reads under the Dirichlet-multinomial model.

    Parameters
    ----------
    log10_likelihoods : np.ndarray or LikelihoodMatrix
        Alleles x reads log10 likelihoods.
    prior_pseudocounts : np.ndarray, optional
        Dirichlet prior, one pseudocount per allele. Flat (all ones) if None.
    spec : SomaticLikelihoodsSpec, optional
        Numerical settings.

    Returns
    -------
    float
        Log10 evidence. Exactly zero when there are no reads.
    """
    spec = _resolve_spec(spec)
    values, prior = _validate_inputs(log10_likelihoods, prior_pseudocounts)
    fit = fit_allele_fractions(values, prior, spec)

    prior_contribution = log10_dirichlet_normalization(prior)
    posterior_contribution = -log10_dirichlet_normalization(fit.posterior)

    log10_allele_fractions = Dirichlet(fit.posterior).effective_log10_multinomial_weights()
    responsibilities = log10_posteriors(log10_allele_fractions, values)

    # reads impossible under an allele get zero responsibility; 0 * -inf counts as 0
    weighted = np.zeros_like(values)
    np.multiply(responsibilities, values, out=weighted, where=responsibilities > 0)
    likelihoods_contribution = weighted.sum()
    entropy_contribution = x_log10_x(responsibilities, spec.entropy_floor).sum()

    evidence = (
        prior_contribution
        + posterior_contribution
        + likelihoods_contribution
        - entropy_contribution
    )
    logger.debug(
        "log10 evidence %.4f (prior %.4f, posterior %.4f, likelihood %.4f, entropy %.4f)",
        evidence,
        prior_contribution,
        posterior_contribution,
        likelihoods_contribution,
        entropy_contribution,
    )
    return float(evidence)


def _evidence_or_zero(matrix: LikelihoodMatrix, spec: SomaticLikelihoodsSpec) -> float:
    return 0.0 if matrix.number_of_reads == 0 else log10_evidence(matrix, spec=spec)


def _evidence_without_allele(args) -> float:
    """Worker: log10 evidence of a matrix with one allele removed."""
    matrix, allele, spec = args
    return _evidence_or_zero(matrix.excluding_allele(allele), spec)


def somatic_log10_odds(
    matrix: LikelihoodMatrix,
    spec: Optional[SomaticLikelihoodsSpec] = None,
) -> Dict[Hashable, float]:
    """
    Log10 odds that each alternate allele is present at some allele fraction.

    For every non-reference allele a:
        lod[a] = log10 evidence(all alleles) - log10 evidence(all but a)

    Parameters
    ----------
    matrix : LikelihoodMatrix
        Alleles x reads log10 likelihoods with a designated reference.
    spec : SomaticLikelihoodsSpec, optional
        Numerical settings. ``n_jobs`` other than 1 evaluates the
        leave-one-out evidences in worker processes.

    Returns
    -------
    dict
        Alternate allele -> log10 odds, in matrix allele order. The
        reference allele has no entry.
    """
    spec = _resolve_spec(spec)
    evidence_with_all_alleles = _evidence_or_zero(matrix, spec)

    alt_alleles = matrix.alt_alleles
    tasks = [(matrix, allele, spec) for allele in alt_alleles]
    n_workers = min(spec.workers, len(tasks))

    if n_workers <= 1:
        evidences_without = [_evidence_without_allele(task) for task in tasks]
    else:
        with ProcessPoolExecutor(max_workers=n_workers) as executor:
            future_to_index = {
                executor.submit(_evidence_without_allele, task): i
                for i, task in enumerate(tasks)
            }
            # collect by submission index so the result matches the serial order
            evidences_without = [None] * len(tasks)
            for future in as_completed(future_to_index):
                evidences_without[future_to_index[future]] = future.result()

    lods = {
        allele: evidence_with_all_alleles - evidence_without
        for allele, evidence_without in zip(alt_alleles, evidences_without)
    }
    logger.debug("Somatic log10 odds for %r: %s", matrix, lods)
    return lods


def somatic_log10_odds_from_array(
    log10_likelihoods,
    ref_index: int = 0,
    alleles: Optional[Sequence[Hashable]] = None,
    spec: Optional[SomaticLikelihoodsSpec] = None,
) -> Dict[Hashable, float]:
    """
    Convenience wrapper around :func:`somatic_log10_odds` for plain arrays.

    Parameters
    ----------
    log10_likelihoods : np.ndarray
        Alleles x reads log10 likelihoods.
    ref_index : int
        Row of the reference allele.
    alleles : sequence, optional
        Allele identifiers; row indices if None.
    spec : SomaticLikelihoodsSpec, optional
        Numerical settings.

    Returns
    -------
    dict
        Alternate allele -> log10 odds.
    """
    matrix = LikelihoodMatrix(log10_likelihoods, alleles=alleles, ref_index=ref_index)
    return somatic_log10_odds(matrix, spec)
