from __future__ import annotations

import pytest

from solana_exporter.context import Context
from solana_exporter.types import ContextCancelledError


def test_cancel_propagates_to_children_only():
    root = Context()
    a = root.child()
    b = root.child()
    grandchild = a.child()

    a.cancel()
    assert a.cancelled and grandchild.cancelled
    assert not root.cancelled and not b.cancelled

    root.cancel()
    assert b.cancelled


def test_child_of_cancelled_parent_starts_cancelled():
    root = Context()
    root.cancel()
    assert root.child().cancelled


def test_with_block_cancels_on_exit():
    with Context() as ctx:
        ctx.raise_if_cancelled()
    assert ctx.cancelled
    with pytest.raises(ContextCancelledError):
        ctx.raise_if_cancelled()


def test_with_block_cancels_on_error():
    with pytest.raises(RuntimeError):
        with Context() as ctx:
            raise RuntimeError("boom")
    assert ctx.cancelled


def test_wait():
    ctx = Context()
    assert ctx.wait(0.01) is False
    ctx.cancel()
    assert ctx.wait(0.01) is True
