from __future__ import annotations

import threading

import numpy as np
import pytest

from heightforge.config import ErosionConfig, NoiseConfig
from heightforge.errors import InvalidConfig
from heightforge.refine import circle_region
from heightforge.session import TerrainSession

NOISE = NoiseConfig(seed=11, octaves=4, frequency=0.05)


def _session(**kwargs) -> TerrainSession:
    return TerrainSession.from_noise(32, 24, NOISE, **kwargs)


def test_undo_redo_walks_revisions() -> None:
    session = _session()
    original = session.current.elevations.copy()

    session.refine("clamp", minimum=0.3, maximum=0.6)
    clamped = session.current.elevations.copy()
    session.refine("terrace", step_height=0.1)
    assert session.revision == 2
    assert session.history == ["generate seed=11", "refine clamp", "refine terrace"]

    assert session.undo()
    assert np.array_equal(session.current.elevations, clamped)
    assert session.undo()
    assert np.array_equal(session.current.elevations, original)
    assert not session.undo()

    assert session.redo()
    assert np.array_equal(session.current.elevations, clamped)
    assert session.can_redo


def test_edit_after_undo_discards_redo_tail() -> None:
    session = _session()
    session.refine("smooth", radius=1)
    session.refine("smooth", radius=2)
    session.undo()
    session.refine("terrace", step_height=0.25)

    assert session.revision_count == 3
    assert not session.can_redo
    assert session.history[-1] == "refine terrace"


def test_revisions_are_immutable() -> None:
    session = _session()
    snapshot = session.current
    snapshot.set(0, 0, 99.0)
    assert session.current.get(0, 0) != 99.0

    returned = session.refine("clamp", minimum=0.0, maximum=0.5)
    returned.set(1, 1, -7.0)
    assert session.revision_at(1).get(1, 1) != -7.0


def test_failed_refinement_adds_no_revision() -> None:
    session = _session()
    with pytest.raises(InvalidConfig):
        session.refine("terrace", step_height=-1.0)
    assert session.revision_count == 1


def test_masked_refinement_and_regenerate() -> None:
    session = _session()
    before = session.current.elevations.copy()
    session.refine_region(circle_region(5.0, 5.0, 3.0), "clamp", minimum=0.0, maximum=0.0)
    after = session.current.elevations
    assert after[5, 5] == 0.0
    assert np.array_equal(after[20:, 20:], before[20:, 20:])

    session.regenerate(NoiseConfig(seed=12, octaves=4, frequency=0.05), overlay_strength=0.5)
    assert session.revision == 2
    assert session.current.shape == (24, 32)


def test_erode_pushes_revision_and_caches_flow() -> None:
    session = _session()
    flow = session.flow()
    assert session.flow() is flow

    config = ErosionConfig(model="grid")
    diag = session.erode(config, 2, rng=1)
    assert diag.iterations_run == 2
    assert session.revision == 1
    assert session.flow() is not flow

    session.undo()
    assert session.flow() is flow


def test_cancelled_erosion_adds_no_revision() -> None:
    session = _session()
    cancel = threading.Event()
    cancel.set()
    diag = session.erode(ErosionConfig(model="grid"), 3, cancel=cancel)
    assert diag.aborted
    assert session.revision_count == 1


def test_max_revisions_drops_oldest() -> None:
    session = _session(max_revisions=2)
    session.refine("smooth", radius=1)
    session.refine("smooth", radius=1)
    assert session.revision_count == 2
    assert session.revision == 1
    assert session.history == ["refine smooth", "refine smooth"]

    with pytest.raises(InvalidConfig):
        _session(max_revisions=0)
