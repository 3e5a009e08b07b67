"""Segment tree and perforation layout of a multisegment well."""

import collections
import logging
import math
import typing

import attrs

from mswell.errors import InvalidTopologyError, ValidationError

logger = logging.getLogger(__name__)

__all__ = [
    "SegmentSpec",
    "PerforationSpec",
    "Segment",
    "Perforation",
    "SegmentNetwork",
    "build_segment_network",
    "build_single_segment_network",
]


@attrs.frozen(slots=True)
class SegmentSpec:
    """Segment as given by input data, identified by an external number."""

    number: int
    """External segment number."""
    outlet: typing.Optional[int]
    """External number of the outlet segment. None for the top segment."""
    depth: float
    """True vertical depth of the segment node (m)."""
    length: float = attrs.field(default=1.0, validator=attrs.validators.gt(0.0))
    """Segment length (m)."""
    diameter: float = attrs.field(default=0.1, validator=attrs.validators.gt(0.0))
    """Internal diameter (m)."""
    roughness: float = attrs.field(default=1e-5, validator=attrs.validators.ge(0.0))
    """Absolute roughness (m)."""
    area: typing.Optional[float] = None
    """Cross-sectional area (m²). Defaults to the area of the diameter."""
    volume: typing.Optional[float] = None
    """Segment volume (m³). Defaults to `area * length`."""


@attrs.frozen(slots=True)
class PerforationSpec:
    """Connection between a reservoir cell and a segment, as given by input data."""

    cell: int = attrs.field(validator=attrs.validators.ge(0))
    """Reservoir cell index."""
    segment: int
    """External number of the segment the perforation belongs to."""
    transmissibility_factor: float = attrs.field(validator=attrs.validators.ge(0.0))
    """Connection transmissibility factor (well index) (m³)."""
    depth: float
    """Depth of the perforation (m)."""
    cell_depth: typing.Optional[float] = None
    """Depth of the cell centre (m). Defaults to the perforation depth."""


@attrs.frozen(slots=True)
class Segment:
    index: int
    """Internal index. Outlets always have smaller indices than their inlets; the top segment is 0."""
    number: int
    """External segment number."""
    outlet: typing.Optional[int]
    """Internal index of the outlet segment, None for the top segment."""
    inlets: typing.Tuple[int, ...]
    """Internal indices of the inlet segments."""
    perforations: typing.Tuple[int, ...]
    """Indices of the perforations attached to this segment, in well order."""
    depth: float
    length: float
    diameter: float
    roughness: float
    area: float
    volume: float


@attrs.frozen(slots=True)
class Perforation:
    index: int
    """Position in the well's perforation order."""
    cell: int
    segment: int
    """Internal index of the owning segment."""
    transmissibility_factor: float
    depth: float
    cell_depth: float


class SegmentNetwork:
    """
    Immutable segment tree of a well with its perforations.

    Segments are stored so that every outlet precedes its inlets, which
    makes index order a valid root-to-leaves traversal. Perforations keep the
    order in which they were given.
    """

    def __init__(
        self,
        segments: typing.Sequence[Segment],
        perforations: typing.Sequence[Perforation],
    ) -> None:
        self._segments = tuple(segments)
        self._perforations = tuple(perforations)
        self._index_of = {segment.number: segment.index for segment in self._segments}

    @property
    def num_segments(self) -> int:
        return len(self._segments)

    @property
    def num_perforations(self) -> int:
        return len(self._perforations)

    @property
    def segments(self) -> typing.Tuple[Segment, ...]:
        return self._segments

    @property
    def perforations(self) -> typing.Tuple[Perforation, ...]:
        return self._perforations

    @property
    def root(self) -> Segment:
        return self._segments[0]

    @property
    def cells(self) -> typing.Tuple[int, ...]:
        """Perforated cells in perforation order."""
        return tuple(perforation.cell for perforation in self._perforations)

    def segment(self, index: int) -> Segment:
        return self._segments[index]

    def perforation(self, index: int) -> Perforation:
        return self._perforations[index]

    def outlet(self, index: int) -> typing.Optional[int]:
        return self._segments[index].outlet

    def inlets(self, index: int) -> typing.Tuple[int, ...]:
        return self._segments[index].inlets

    def segment_perforations(self, index: int) -> typing.Tuple[int, ...]:
        return self._segments[index].perforations

    def index_of(self, number: int) -> int:
        """
        Internal index of an external segment number.

        :raises InvalidTopologyError: If the number is unknown.
        """
        try:
            return self._index_of[number]
        except KeyError:
            raise InvalidTopologyError(f"Unknown segment number {number}") from None

    def depth_difference(self, index: int) -> float:
        """Depth of a segment minus the depth of its outlet (zero for the top segment)."""
        segment = self._segments[index]
        if segment.outlet is None:
            return 0.0
        return segment.depth - self._segments[segment.outlet].depth

    def perforation_segment_depth_difference(self, perforation: int) -> float:
        perf = self._perforations[perforation]
        return perf.depth - self._segments[perf.segment].depth

    def cell_perforation_depth_difference(self, perforation: int) -> float:
        perf = self._perforations[perforation]
        return perf.depth - perf.cell_depth

    def leaves_to_root(self) -> typing.Iterator[int]:
        """Segment indices ordered so that every inlet comes before its outlet."""
        return reversed(range(len(self._segments)))

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(segments={self.num_segments}, "
            f"perforations={self.num_perforations})"
        )


def build_segment_network(
    segments: typing.Sequence[SegmentSpec],
    perforations: typing.Sequence[PerforationSpec],
) -> SegmentNetwork:
    """
    Build a segment network from input data.

    Segments may be given in any order; they are sorted breadth-first from the
    top segment so that outlets precede inlets.

    :param segments: Segment specifications.
    :param perforations: Perforation specifications, in well order.
    :return: The segment network.
    :raises InvalidTopologyError: If segment numbers are duplicated, an outlet or
        perforation refers to an unknown segment, there is not exactly one top
        segment, or the segments contain a cycle.
    """
    if not segments:
        raise InvalidTopologyError("A well needs at least one segment")

    specs: typing.Dict[int, SegmentSpec] = {}
    for spec in segments:
        if spec.number in specs:
            raise InvalidTopologyError(f"Duplicate segment number {spec.number}")
        specs[spec.number] = spec

    roots = [spec.number for spec in segments if spec.outlet is None]
    if len(roots) != 1:
        raise InvalidTopologyError(
            f"Expected exactly one top segment (without outlet), found {len(roots)}: {roots}"
        )

    children: typing.Dict[int, typing.List[int]] = collections.defaultdict(list)
    for spec in segments:
        if spec.outlet is None:
            continue
        if spec.outlet not in specs:
            raise InvalidTopologyError(
                f"Segment {spec.number} has unknown outlet segment {spec.outlet}"
            )
        if spec.outlet == spec.number:
            raise InvalidTopologyError(f"Segment {spec.number} is its own outlet")
        children[spec.outlet].append(spec.number)

    order: typing.List[int] = []
    queue = collections.deque([roots[0]])
    while queue:
        number = queue.popleft()
        order.append(number)
        queue.extend(children[number])
    if len(order) != len(specs):
        unreachable = sorted(set(specs) - set(order))
        raise InvalidTopologyError(
            f"Segments {unreachable} are not connected to the top segment (cycle in outlets)"
        )

    index_of = {number: index for index, number in enumerate(order)}

    segment_perforations: typing.Dict[int, typing.List[int]] = collections.defaultdict(list)
    built_perforations = []
    for index, spec in enumerate(perforations):
        if spec.segment not in index_of:
            raise InvalidTopologyError(
                f"Perforation {index} (cell {spec.cell}) refers to unknown segment {spec.segment}"
            )
        segment_index = index_of[spec.segment]
        segment_perforations[segment_index].append(index)
        built_perforations.append(
            Perforation(
                index=index,
                cell=spec.cell,
                segment=segment_index,
                transmissibility_factor=float(spec.transmissibility_factor),
                depth=float(spec.depth),
                cell_depth=float(spec.depth if spec.cell_depth is None else spec.cell_depth),
            )
        )

    built_segments = []
    for index, number in enumerate(order):
        spec = specs[number]
        area = spec.area if spec.area is not None else math.pi * spec.diameter**2 / 4.0
        if area <= 0.0:
            raise ValidationError(f"Segment {number} must have a positive cross-sectional area")
        volume = spec.volume if spec.volume is not None else area * spec.length
        if volume <= 0.0:
            raise ValidationError(f"Segment {number} must have a positive volume")
        built_segments.append(
            Segment(
                index=index,
                number=number,
                outlet=None if spec.outlet is None else index_of[spec.outlet],
                inlets=tuple(index_of[child] for child in children[number]),
                perforations=tuple(segment_perforations[index]),
                depth=float(spec.depth),
                length=float(spec.length),
                diameter=float(spec.diameter),
                roughness=float(spec.roughness),
                area=float(area),
                volume=float(volume),
            )
        )

    network = SegmentNetwork(built_segments, built_perforations)
    logger.debug(f"Built {network!r} with top segment {roots[0]}")
    return network


def build_single_segment_network(
    perforations: typing.Sequence[PerforationSpec],
    depth: typing.Optional[float] = None,
    **geometry: typing.Any,
) -> SegmentNetwork:
    """
    Build the one-segment network of a standard (non-segmented) well.

    All perforations are attached to the single segment, whose depth defaults
    to the shallowest perforation.

    :param perforations: Perforation specifications, in well order.
    :param depth: Reference depth of the well (m).
    :param geometry: Extra `SegmentSpec` fields (length, diameter, roughness, ...).
    """
    if depth is None:
        if not perforations:
            raise ValidationError("Depth is required for a well without perforations")
        depth = min(perforation.depth for perforation in perforations)
    segment = SegmentSpec(number=1, outlet=None, depth=depth, **geometry)
    return build_segment_network(
        [segment], [attrs.evolve(perforation, segment=1) for perforation in perforations]
    )
