from __future__ import annotations

import abc
import copy
from typing import List, Optional, Tuple, Union

import numpy as np

Shape = Union[int, Tuple[int, ...]]


class RandomSource(abc.ABC):
    """Injectable standard-normal sampler.

    Implementations must be spawnable into independent child streams so a
    simulation can be split into batches without sharing mutable state.
    """

    @abc.abstractmethod
    def standard_normal(self, size: Shape) -> np.ndarray:
        """Draw standard-normal samples of the given shape."""

    @abc.abstractmethod
    def spawn(self, n: int) -> List["RandomSource"]:
        """Return ``n`` statistically independent child sources."""

    def fresh(self) -> "RandomSource":
        """Copy in the state this source was created in, ready to spawn again."""
        return copy.deepcopy(self)


class NumpyRandomSource(RandomSource):
    """numpy ``Generator`` (PCG64, ziggurat normals) seeded through a SeedSequence.

    With ``seed=None`` fresh OS entropy is drawn; the resulting entropy is kept
    on ``self.seed`` so the run can be replayed.
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        *,
        seed_sequence: Optional[np.random.SeedSequence] = None,
    ) -> None:
        self._seq = seed_sequence or np.random.SeedSequence(seed)
        self.seed = seed if seed is not None else int(self._seq.entropy)
        self._rng = np.random.default_rng(self._seq)

    def standard_normal(self, size: Shape) -> np.ndarray:
        return self._rng.standard_normal(size)

    def spawn(self, n: int) -> List[RandomSource]:
        return [
            NumpyRandomSource(self.seed, seed_sequence=child)
            for child in self._seq.spawn(n)
        ]

    def fresh(self) -> "NumpyRandomSource":
        seq = np.random.SeedSequence(self._seq.entropy, spawn_key=self._seq.spawn_key)
        return NumpyRandomSource(self.seed, seed_sequence=seq)


__all__ = ["RandomSource", "NumpyRandomSource"]
