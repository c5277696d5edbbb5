"""Shared fixtures: the standard 5x5 taxi world and a small 3x3 bench world."""

import pytest

from taxirl.config import STANDARD_MAP
from taxirl.world import Costs, World

# Three rows, a wall east of R, locations R, G, Y, B.
BENCH_MAP = """\
┌─┬───┐
│R│. G│
│ │   │
│. . .│
│     │
│Y B .│
└─────┘"""


@pytest.fixture
def costs():
    return Costs(successful_dropoff=0.0)


@pytest.fixture
def standard_world(costs):
    return World.from_str(STANDARD_MAP, costs)


@pytest.fixture
def rewarding_world():
    """The standard map with a positive reward for a successful dropoff."""
    return World.from_str(STANDARD_MAP, Costs(successful_dropoff=20.0))


@pytest.fixture
def bench_world(costs):
    return World.from_str(BENCH_MAP, costs)


@pytest.fixture
def bench_map_file(tmp_path):
    path = tmp_path / "bench.txt"
    path.write_text(BENCH_MAP, encoding="utf-8")
    return path
