import math

import pytest

from mswell import (
    PerforationSpec,
    SegmentSpec,
    build_segment_network,
    build_single_segment_network,
)
from mswell.errors import InvalidTopologyError, ValidationError


def test_segments_are_sorted_root_first():
    # Inlets declared before their outlets
    segments = [
        SegmentSpec(number=3, outlet=2, depth=1020.0),
        SegmentSpec(number=2, outlet=1, depth=1010.0),
        SegmentSpec(number=1, outlet=None, depth=1000.0),
    ]
    network = build_segment_network(segments, [])
    assert [segment.number for segment in network.segments] == [1, 2, 3]
    assert network.root.number == 1
    assert network.outlet(network.index_of(3)) == network.index_of(2)
    assert network.inlets(0) == (1,)
    assert list(network.leaves_to_root()) == [2, 1, 0]
    assert network.depth_difference(2) == pytest.approx(10.0)
    assert network.depth_difference(0) == 0.0


def test_branched_network(branched_network):
    network = branched_network
    assert network.num_segments == 4
    assert set(network.inlets(1)) == {2, 3}
    assert network.segment_perforations(0) == ()
    assert network.cells == (1, 2, 3)
    lateral = network.segment(network.index_of(4))
    assert lateral.area == pytest.approx(math.pi * 0.08**2 / 4.0)
    assert lateral.volume == pytest.approx(lateral.area * 50.0)


def test_perforation_depth_differences():
    network = build_segment_network(
        [SegmentSpec(number=1, outlet=None, depth=1000.0)],
        [
            PerforationSpec(
                cell=0, segment=1, transmissibility_factor=1e-12, depth=1002.0, cell_depth=1005.0
            )
        ],
    )
    assert network.perforation_segment_depth_difference(0) == pytest.approx(2.0)
    assert network.cell_perforation_depth_difference(0) == pytest.approx(-3.0)


@pytest.mark.parametrize(
    "segments",
    [
        [],
        [SegmentSpec(number=1, outlet=None, depth=0.0), SegmentSpec(number=1, outlet=None, depth=1.0)],
        [SegmentSpec(number=1, outlet=None, depth=0.0), SegmentSpec(number=2, outlet=None, depth=1.0)],
        [SegmentSpec(number=1, outlet=None, depth=0.0), SegmentSpec(number=2, outlet=7, depth=1.0)],
        [SegmentSpec(number=1, outlet=None, depth=0.0), SegmentSpec(number=2, outlet=2, depth=1.0)],
        [
            SegmentSpec(number=1, outlet=None, depth=0.0),
            SegmentSpec(number=2, outlet=3, depth=1.0),
            SegmentSpec(number=3, outlet=2, depth=2.0),
        ],
    ],
    ids=["empty", "duplicate", "two-roots", "unknown-outlet", "self-outlet", "cycle"],
)
def test_invalid_topologies(segments):
    with pytest.raises(InvalidTopologyError):
        build_segment_network(segments, [])


def test_perforation_on_unknown_segment():
    with pytest.raises(InvalidTopologyError):
        build_segment_network(
            [SegmentSpec(number=1, outlet=None, depth=0.0)],
            [PerforationSpec(cell=0, segment=5, transmissibility_factor=1.0, depth=0.0)],
        )


def test_unknown_segment_number(two_segment_network):
    with pytest.raises(InvalidTopologyError):
        two_segment_network.index_of(42)


def test_single_segment_network():
    perforations = [
        PerforationSpec(cell=0, segment=0, transmissibility_factor=1e-12, depth=1010.0),
        PerforationSpec(cell=1, segment=0, transmissibility_factor=1e-12, depth=1005.0),
    ]
    network = build_single_segment_network(perforations, diameter=0.15)
    assert network.num_segments == 1
    assert network.root.depth == 1005.0
    assert network.segment_perforations(0) == (0, 1)
    assert network.root.diameter == 0.15

    with pytest.raises(ValidationError):
        build_single_segment_network([])
