from dataclasses import dataclass
from typing import Optional
import os

from .utils import DEFAULT_ENTROPY_FLOOR


_DEFAULT_CONVERGENCE_THRESHOLD = 0.001
_NONCONVERGENCE_POLICIES = ("raise", "warn")


@dataclass
class SomaticLikelihoodsSpec:
    """
    Numerical settings for the Dirichlet-multinomial allele fraction model.
    Owns *all* tolerances and execution defaults.
    """

    # Solver
    convergence_threshold: float = _DEFAULT_CONVERGENCE_THRESHOLD
    max_iterations: Optional[int] = None  # None = iterate until converged
    on_nonconvergence: str = "raise"

    # Evidence
    entropy_floor: float = DEFAULT_ENTROPY_FLOOR

    # Execution (leave-one-allele-out evaluations)
    n_jobs: int = 1

    def __post_init__(self):
        self.convergence_threshold = float(self.convergence_threshold)
        self.entropy_floor = float(self.entropy_floor)
        if not self.convergence_threshold > 0:
            raise ValueError("convergence_threshold must be positive")
        if self.max_iterations is not None and self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1 or None")
        if self.on_nonconvergence not in _NONCONVERGENCE_POLICIES:
            raise ValueError(
                f"on_nonconvergence must be one of {_NONCONVERGENCE_POLICIES}"
            )
        if not 0 <= self.entropy_floor < 1:
            raise ValueError("entropy_floor must be in [0, 1)")
        if self.n_jobs == 0 or self.n_jobs < -1:
            raise ValueError("n_jobs must be -1 or a positive integer")

    @property
    def workers(self) -> int:
        """Resolved worker count (-1 means every available CPU)."""
        return (os.cpu_count() or 1) if self.n_jobs == -1 else self.n_jobs
