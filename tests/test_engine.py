import logging

import numpy as np
import pytest

from DMlod.dirichlet import log10_dirichlet_normalization
from DMlod.engine import (
    AlleleFractionsFit,
    allele_fractions_posterior,
    fit_allele_fractions,
    get_effective_counts,
    log10_evidence,
    somatic_log10_odds,
    somatic_log10_odds_from_array,
)
from DMlod.matrix import LikelihoodMatrix
from DMlod.params import SomaticLikelihoodsSpec
from DMlod.utils import ConvergenceError, DegenerateLikelihoodsError


@pytest.fixture
def two_by_two():
    """Read 1 favours allele 0, read 2 favours allele 1."""
    return np.log10(np.array([[0.9, 0.1], [0.1, 0.9]]))


@pytest.fixture
def random_log10_likelihoods():
    rng = np.random.default_rng(42)
    return np.log10(rng.uniform(0.01, 1.0, size=(3, 40)))


@pytest.fixture
def somatic_matrix():
    """
    10 reads supporting the reference, 5 supporting C, none supporting T.
    """
    ref_reads = np.array([[0.0], [-3.0], [-3.0]]) * np.ones((3, 10))
    c_reads = np.array([[-3.0], [0.0], [-3.0]]) * np.ones((3, 5))
    values = np.hstack([ref_reads, c_reads])
    return LikelihoodMatrix(values, alleles=["A", "C", "T"], ref_index=0)


class TestAlleleFractionsPosterior:
    """Tests for the fixed-point posterior iteration."""

    def test_symmetric_example(self, two_by_two):
        """One effective count is added to each allele."""
        posterior = allele_fractions_posterior(two_by_two)
        np.testing.assert_allclose(posterior, [2.0, 2.0], atol=1e-3)

    def test_flat_prior_counts_every_read(self, random_log10_likelihoods):
        """Each read contributes total responsibility one."""
        n_alleles, n_reads = random_log10_likelihoods.shape
        posterior = allele_fractions_posterior(random_log10_likelihoods)

        assert np.all(posterior >= 1.0)
        assert posterior.sum() == pytest.approx(n_alleles + n_reads)

    def test_read_order_invariant(self, random_log10_likelihoods):
        rng = np.random.default_rng(0)
        shuffled = random_log10_likelihoods[:, rng.permutation(40)]

        np.testing.assert_allclose(
            allele_fractions_posterior(shuffled),
            allele_fractions_posterior(random_log10_likelihoods),
            atol=1e-3,
        )

    def test_zero_reads_returns_prior(self):
        prior = np.array([0.5, 2.0, 3.0])
        posterior = allele_fractions_posterior(np.empty((3, 0)), prior)
        np.testing.assert_array_equal(posterior, prior)

    def test_deterministic(self, random_log10_likelihoods):
        first = allele_fractions_posterior(random_log10_likelihoods)
        second = allele_fractions_posterior(random_log10_likelihoods)
        np.testing.assert_array_equal(first, second)

    def test_prior_monotonicity(self, random_log10_likelihoods):
        """Raising an allele's pseudocount does not lower its posterior share."""
        shares = []
        for pseudocount in [1.0, 2.0, 5.0, 20.0]:
            prior = np.array([pseudocount, 1.0, 1.0])
            posterior = allele_fractions_posterior(random_log10_likelihoods, prior)
            shares.append(posterior[0] / posterior.sum())

        assert all(b >= a for a, b in zip(shares, shares[1:]))

    def test_converges_to_dominant_allele(self):
        """Reads all favouring allele 1 pull its posterior mass."""
        values = np.log10(np.array([[0.01] * 20, [0.99] * 20]))
        posterior = allele_fractions_posterior(values)

        assert posterior[1] > 19.0
        assert posterior[0] < 3.0

    def test_accepts_likelihood_matrix(self, two_by_two):
        matrix = LikelihoodMatrix(two_by_two)
        np.testing.assert_allclose(
            allele_fractions_posterior(matrix), allele_fractions_posterior(two_by_two)
        )

    def test_prior_length_mismatch(self, two_by_two):
        with pytest.raises(ValueError, match="one pseudocount per allele"):
            allele_fractions_posterior(two_by_two, np.ones(3))

    def test_negative_prior(self, two_by_two):
        with pytest.raises(ValueError, match="non-negative"):
            allele_fractions_posterior(two_by_two, np.array([1.0, -1.0]))

    def test_needs_two_dimensions(self):
        with pytest.raises(ValueError, match="2-D"):
            allele_fractions_posterior(np.zeros(3))

    def test_degenerate_read_raises(self):
        values = np.array([[0.0, -np.inf], [-1.0, -np.inf]])
        with pytest.raises(DegenerateLikelihoodsError):
            allele_fractions_posterior(values)


class TestGetEffectiveCounts:
    """Tests for get_effective_counts."""

    def test_symmetric_example(self, two_by_two):
        np.testing.assert_allclose(get_effective_counts(two_by_two, [1.0, 1.0]), [1.0, 1.0])

    def test_sums_to_read_count(self, random_log10_likelihoods):
        counts = get_effective_counts(random_log10_likelihoods, [2.0, 1.0, 0.5])
        assert counts.sum() == pytest.approx(40.0)

    def test_zero_reads(self):
        np.testing.assert_array_equal(
            get_effective_counts(np.empty((2, 0)), [1.0, 1.0]), [0.0, 0.0]
        )


class TestFitAlleleFractions:
    """Tests for the diagnostic fit result and the iteration cap."""

    def test_result(self, two_by_two):
        fit = fit_allele_fractions(two_by_two)

        assert isinstance(fit, AlleleFractionsFit)
        assert fit.converged
        assert fit.n_iterations >= 1
        assert fit.n_reads == pytest.approx(2.0)
        np.testing.assert_allclose(fit.allele_fractions, [0.5, 0.5], atol=1e-3)
        np.testing.assert_array_equal(fit.prior, [1.0, 1.0])

    def test_zero_reads_single_iteration(self):
        fit = fit_allele_fractions(np.empty((2, 0)))
        assert fit.n_iterations == 1
        assert fit.converged

    def test_zero_reads_non_flat_prior_two_iterations(self):
        """
        The first iterate already equals the prior; a second pass is needed
        to see that it no longer moves.
        """
        prior = np.array([0.5, 2.0, 3.0])
        fit = fit_allele_fractions(np.empty((3, 0)), prior)

        assert fit.n_iterations == 2
        assert fit.converged
        np.testing.assert_array_equal(fit.posterior, prior)

    def test_prior_is_copied(self, two_by_two):
        prior = np.array([1.0, 3.0])
        fit = fit_allele_fractions(two_by_two, prior)
        prior[0] = 100.0

        np.testing.assert_array_equal(fit.prior, [1.0, 3.0])

    def test_cap_raises(self, two_by_two):
        spec = SomaticLikelihoodsSpec(max_iterations=1)
        with pytest.raises(ConvergenceError, match="did not converge"):
            fit_allele_fractions(two_by_two, spec=spec)

    def test_cap_warns_and_returns_last_iterate(self, two_by_two, caplog):
        spec = SomaticLikelihoodsSpec(max_iterations=1, on_nonconvergence="warn")
        with caplog.at_level(logging.WARNING, logger="DMlod.engine"):
            fit = fit_allele_fractions(two_by_two, spec=spec)

        assert not fit.converged
        assert fit.n_iterations == 1
        np.testing.assert_allclose(fit.posterior, [2.0, 2.0])
        assert "did not converge" in caplog.text

    def test_tighter_threshold_needs_more_iterations(self, random_log10_likelihoods):
        loose = fit_allele_fractions(
            random_log10_likelihoods, spec=SomaticLikelihoodsSpec(convergence_threshold=0.1)
        )
        tight = fit_allele_fractions(
            random_log10_likelihoods, spec=SomaticLikelihoodsSpec(convergence_threshold=1e-8)
        )
        assert tight.n_iterations >= loose.n_iterations


class TestLog10Evidence:
    """Tests for the log10 evidence."""

    def test_symmetric_example(self, two_by_two):
        """
        Responsibilities equal the likelihoods, so likelihood and entropy
        terms cancel and the evidence is -log10 Z(2, 2) = -log10(6).
        """
        evidence = log10_evidence(two_by_two)

        assert np.isfinite(evidence)
        assert evidence < 0
        assert evidence == pytest.approx(-np.log10(6.0), abs=1e-4)

    def test_lower_bound_on_exact_marginal(self, two_by_two):
        """
        Exact marginal: ∫ (0.1 + 0.8f)(0.9 - 0.8f) df = 0.09 + 0.32 - 0.64 / 3.
        """
        exact = np.log10(0.09 + 0.32 - 0.64 / 3.0)
        assert log10_evidence(two_by_two) <= exact

    def test_zero_reads_is_zero(self):
        prior = np.array([0.3, 4.0, 2.5])
        assert log10_evidence(np.empty((3, 0)), prior) == 0.0

    def test_single_allele_is_row_sum(self):
        values = np.array([[-0.3, -1.2, -0.05, -2.0]])
        assert log10_evidence(values) == pytest.approx(values.sum())

    def test_prior_normalization_terms(self, random_log10_likelihoods):
        """Evidence shifts by the change in prior normalization."""
        prior = np.array([2.0, 1.0, 1.0])
        fit = fit_allele_fractions(random_log10_likelihoods, prior)
        evidence = log10_evidence(random_log10_likelihoods, prior)

        remainder = (
            evidence
            - log10_dirichlet_normalization(prior)
            + log10_dirichlet_normalization(fit.posterior)
        )
        # Gibbs: expected log-likelihood plus entropy <= log10 Σ_a 10^L per read
        bound = np.log10((10.0 ** random_log10_likelihoods).sum(axis=0)).sum()
        assert remainder <= bound + 1e-9

    def test_better_data_higher_evidence(self):
        good = np.log10(np.array([[0.9] * 5, [0.1] * 5]))
        bad = np.log10(np.array([[0.2] * 5, [0.1] * 5]))
        assert log10_evidence(good) > log10_evidence(bad)

    def test_impossible_allele_for_read(self):
        """A -inf likelihood gets zero responsibility and no NaN."""
        values = np.array([[0.0, -np.inf], [-np.inf, 0.0]])
        assert np.isfinite(log10_evidence(values))

    def test_impossible_allele_without_entropy_floor(self):
        """Exact-zero responsibilities stay finite when the entropy floor is 0."""
        values = np.array([[0.0, -np.inf], [-np.inf, 0.0]])
        spec = SomaticLikelihoodsSpec(entropy_floor=0.0)

        evidence = log10_evidence(values, spec=spec)

        assert np.isfinite(evidence)
        assert evidence == pytest.approx(log10_evidence(values))

    def test_prior_length_mismatch(self, two_by_two):
        with pytest.raises(ValueError, match="one pseudocount per allele"):
            log10_evidence(two_by_two, np.ones(1))


class TestSomaticLog10Odds:
    """Tests for the leave-one-allele-out log odds."""

    def test_keys(self, somatic_matrix):
        lods = somatic_log10_odds(somatic_matrix)

        assert "A" not in lods
        assert list(lods) == ["C", "T"]

    def test_supported_allele_positive(self, somatic_matrix):
        lods = somatic_log10_odds(somatic_matrix)

        assert lods["C"] > 5.0
        assert lods["T"] < 0.0

    def test_matches_evidence_difference(self, somatic_matrix):
        lods = somatic_log10_odds(somatic_matrix)
        full = log10_evidence(somatic_matrix.values)
        without_c = log10_evidence(somatic_matrix.excluding_allele("C").values)

        assert lods["C"] == pytest.approx(full - without_c)

    def test_zero_reads(self):
        matrix = LikelihoodMatrix(np.empty((3, 0)), alleles=["A", "C", "G"])
        assert somatic_log10_odds(matrix) == {"C": 0.0, "G": 0.0}

    def test_reference_only(self):
        matrix = LikelihoodMatrix(np.zeros((1, 4)), alleles=["A"])
        assert somatic_log10_odds(matrix) == {}

    def test_non_first_reference(self, somatic_matrix):
        values = somatic_matrix.values
        lods = somatic_log10_odds_from_array(
            values, ref_index=1, alleles=["A", "C", "T"]
        )
        assert set(lods) == {"A", "T"}

    def test_default_allele_ids(self, two_by_two):
        lods = somatic_log10_odds_from_array(two_by_two)
        assert list(lods) == [1]

    def test_parallel_matches_serial(self, somatic_matrix):
        serial = somatic_log10_odds(somatic_matrix)
        parallel = somatic_log10_odds(somatic_matrix, SomaticLikelihoodsSpec(n_jobs=2))

        assert list(parallel) == list(serial)
        for allele in serial:
            assert parallel[allele] == pytest.approx(serial[allele])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
