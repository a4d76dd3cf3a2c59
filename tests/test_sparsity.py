"""Tests for sparsity patterns."""

import numpy as np

from symdae.core.sparsity import Sparsity


def test_dense_pattern():
    sp = Sparsity.dense(2, 3)

    assert sp.shape == (2, 3)
    assert sp.colind == (0, 2, 4, 6)
    assert sp.row == (0, 1, 0, 1, 0, 1)
    assert sp.is_dense()
    assert not sp.is_empty()


def test_empty_pattern():
    sp = Sparsity.empty(3, 2)

    assert sp.shape == (3, 2)
    assert sp.nnz == 0
    assert sp.is_empty()
    assert sp.numel == 6


def test_zero_row_dense_pattern():
    sp = Sparsity.dense(0, 3)
    assert sp.colind == (0, 0, 0, 0)
    assert sp.is_empty()


def test_from_mask_roundtrip():
    mask = np.array([[1, 0, 0], [1, 1, 0], [0, 0, 1]], dtype=bool)
    sp = Sparsity.from_mask(mask)

    assert sp.nnz == 4
    assert sp.colind == (0, 2, 3, 4)
    assert sp.row == (0, 1, 1, 2)
    np.testing.assert_array_equal(sp.to_mask(), mask)


def test_bandwidth_tridiagonal():
    n = 5
    mask = np.eye(n) + np.eye(n, k=1) + np.eye(n, k=-1)
    assert Sparsity.from_mask(mask).bandwidth() == (1, 1)


def test_bandwidth_lower_triangular():
    mask = np.tril(np.ones((4, 4)))
    assert Sparsity.from_mask(mask).bandwidth() == (0, 3)


def test_equality_and_hash():
    a = Sparsity.from_mask(np.eye(3))
    b = Sparsity.from_mask(np.eye(3))
    c = Sparsity.dense(3, 3)

    assert a == b
    assert hash(a) == hash(b)
    assert a != c
    assert len({a, b, c}) == 2
