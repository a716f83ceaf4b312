from typing import Hashable, Optional, Sequence

import numpy as np


class LikelihoodMatrix:
    """
    Log10 likelihoods of reads given alleles, annotated with allele identities.

    Rows are alleles and columns are reads. One allele is the reference; the
    rest are candidate alternate alleles. The underlying array is read-only;
    subsetting returns a new matrix.

    Parameters
    ----------
    log10_likelihoods : array-like
        Array of shape (n_alleles, n_reads). Zero reads is allowed.
    alleles : sequence of hashable, optional
        Allele identifiers, one per row. Defaults to row indices.
    ref_index : int
        Row of the reference allele.
    """

    def __init__(
        self,
        log10_likelihoods,
        alleles: Optional[Sequence[Hashable]] = None,
        ref_index: int = 0,
    ):
        values = np.array(log10_likelihoods, dtype=float)
        if values.ndim != 2:
            raise ValueError("log10_likelihoods must be a 2-D (alleles x reads) array")
        if values.shape[0] < 1:
            raise ValueError("Need at least one allele")

        if alleles is None:
            alleles = tuple(range(values.shape[0]))
        alleles = tuple(alleles)
        if len(alleles) != values.shape[0]:
            raise ValueError(
                f"Got {len(alleles)} alleles for a matrix with {values.shape[0]} rows"
            )
        if len(set(alleles)) != len(alleles):
            raise ValueError("Allele identifiers must be unique")
        if not 0 <= ref_index < len(alleles):
            raise ValueError(f"Reference index {ref_index} out of range")

        values.flags.writeable = False
        self._values = values
        self._alleles = alleles
        self._ref_index = int(ref_index)
        self._index = {allele: i for i, allele in enumerate(alleles)}

    @property
    def values(self) -> np.ndarray:
        """Read-only (n_alleles x n_reads) log10 likelihood array."""
        return self._values

    @property
    def alleles(self) -> tuple:
        return self._alleles

    @property
    def number_of_alleles(self) -> int:
        return self._values.shape[0]

    @property
    def number_of_reads(self) -> int:
        return self._values.shape[1]

    @property
    def ref_index(self) -> int:
        return self._ref_index

    @property
    def reference_allele(self) -> Hashable:
        return self._alleles[self._ref_index]

    @property
    def alt_alleles(self) -> tuple:
        return tuple(a for i, a in enumerate(self._alleles) if i != self._ref_index)

    def get_allele(self, index: int) -> Hashable:
        return self._alleles[index]

    def index_of_allele(self, allele: Hashable) -> int:
        try:
            return self._index[allele]
        except KeyError:
            raise ValueError(f"Allele {allele!r} not in matrix") from None

    def get_column(self, read: int) -> np.ndarray:
        """Log10 likelihoods of one read under every allele."""
        return self._values[:, read]

    def excluding_allele(self, allele: Hashable) -> "LikelihoodMatrix":
        """
        Copy of this matrix without one allele's row.

        All reads are kept. The reference allele cannot be excluded.

        Parameters
        ----------
        allele : hashable
            Identifier of the allele to drop.

        Returns
        -------
        LikelihoodMatrix
            New matrix with ``number_of_alleles - 1`` rows.
        """
        drop = self.index_of_allele(allele)
        if drop == self._ref_index:
            raise ValueError("Cannot exclude the reference allele")

        keep = [i for i in range(self.number_of_alleles) if i != drop]
        ref_index = self._ref_index - (1 if drop < self._ref_index else 0)
        return LikelihoodMatrix(
            self._values[keep, :],
            alleles=[self._alleles[i] for i in keep],
            ref_index=ref_index,
        )

    def __repr__(self) -> str:
        return (
            f"LikelihoodMatrix(n_alleles={self.number_of_alleles}, "
            f"n_reads={self.number_of_reads}, ref={self.reference_allele!r})"
        )
