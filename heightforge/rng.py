"""Deterministic splittable RNG streams."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib

import numpy as np


_NAMESPACE = "heightforge-v1"


def _normalize_seed(seed: int) -> int:
    return int(seed) & ((1 << 64) - 1)


def derive_seed(parent_seed: int, key: str, *, namespace: str = _NAMESPACE) -> int:
    """Derive a deterministic child seed from a parent seed and label."""

    payload = f"{namespace}:{_normalize_seed(parent_seed)}:{key}".encode("utf-8")
    digest = hashlib.blake2b(payload, digest_size=8, person=b"hforge-rng").digest()
    return int.from_bytes(digest, byteorder="big", signed=False)


@dataclass(frozen=True)
class RngStream:
    """Immutable RNG state passed explicitly into every stochastic entry point.

    Stages never share a generator: each one forks a child stream by name, so
    adding a stage does not shift the random draws of the others.
    """

    seed: int
    namespace: str = _NAMESPACE

    @classmethod
    def coerce(cls, value: "RngStream | int") -> "RngStream":
        if isinstance(value, RngStream):
            return value
        return cls(_normalize_seed(value))

    def fork(self, key: str) -> "RngStream":
        if not key:
            raise ValueError("fork key must be non-empty")
        return RngStream(derive_seed(self.seed, key, namespace=self.namespace), self.namespace)

    def generator(self) -> np.random.Generator:
        return np.random.Generator(np.random.PCG64(_normalize_seed(self.seed)))

    def permutation_table(self, size: int = 256) -> np.ndarray:
        """Shuffled lattice hash table, doubled to avoid index wrapping."""

        perm = self.generator().permutation(size).astype(np.int64)
        return np.concatenate((perm, perm))
