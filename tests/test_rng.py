from __future__ import annotations

import numpy as np
import pytest

from heightforge.rng import RngStream, derive_seed


def test_derive_seed_is_stable_and_key_sensitive() -> None:
    assert derive_seed(42, "height") == derive_seed(42, "height")
    assert derive_seed(42, "height") != derive_seed(42, "warp")
    assert derive_seed(42, "height") != derive_seed(43, "height")


def test_forks_are_independent_of_call_order() -> None:
    root = RngStream(1234)
    a_first = root.fork("a").generator().random(4)
    root.fork("b").generator().random(100)
    a_again = root.fork("a").generator().random(4)
    assert np.array_equal(a_first, a_again)


def test_permutation_table_is_doubled() -> None:
    perm = RngStream(5).permutation_table()
    assert perm.shape == (512,)
    assert np.array_equal(perm[:256], perm[256:])
    assert sorted(perm[:256].tolist()) == list(range(256))


def test_coerce_accepts_int_and_stream() -> None:
    stream = RngStream(9)
    assert RngStream.coerce(stream) is stream
    assert RngStream.coerce(9) == stream
    assert RngStream.coerce(-1).seed == (1 << 64) - 1


def test_empty_fork_key_rejected() -> None:
    with pytest.raises(ValueError):
        RngStream(1).fork("")
