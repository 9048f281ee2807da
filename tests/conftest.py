"""Shared fixtures: a controllable millisecond clock and deterministic session ids."""

import itertools

import pytest


class FakeClock:
    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, ms: float) -> float:
        self.t += ms
        return self.t


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ids():
    counter = itertools.count(1)
    return lambda: f"s{next(counter)}"


def leaves(node, prefix=""):
    """Yield (path, value) for every non-dict leaf of a nested report dict."""
    if isinstance(node, dict):
        for key, val in node.items():
            yield from leaves(val, f"{prefix}.{key}" if prefix else key)
    else:
        yield prefix, node
