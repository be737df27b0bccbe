import pytest

from ltengine.engine.batch import Batch


def test_add_tracks_positions_and_output_flags() -> None:
    batch = Batch(capacity=4)
    batch.add(7, 0)
    batch.add(8, 1, (0,), logits=True)

    assert batch.n_tokens == 2
    assert batch.space_left == 2
    assert batch.tokens == [7, 8]
    assert batch.positions == [0, 1]
    assert batch.seq_ids == [(0,), (0,)]
    assert batch.output_indices() == [1]


def test_add_beyond_capacity_raises() -> None:
    batch = Batch(capacity=2)
    batch.add_sequence([1, 2], 0, logits_last=True)
    with pytest.raises(ValueError):
        batch.add(3, 2)


def test_unknown_sequence_id_raises() -> None:
    batch = Batch(capacity=2, n_seq_max=1)
    with pytest.raises(ValueError):
        batch.add(1, 0, (1,))


def test_clear_allows_reuse() -> None:
    batch = Batch(capacity=2)
    batch.add_sequence([1, 2], 0, logits_last=True)
    batch.clear()
    assert len(batch) == 0
    batch.add(3, 2, logits=True)
    assert batch.positions == [2]
    assert batch.output_flags == [True]


def test_invalid_capacity_rejected() -> None:
    with pytest.raises(ValueError):
        Batch(capacity=0)
