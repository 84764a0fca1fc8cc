# Copyright 2021 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Integer index-space boxes and the set algebra used on them.

A block-structured hierarchy describes every patch by a `Box`: an axis aligned
rectangle of cell indices with inclusive lower and upper corners. Collections
of boxes (`BoxList`) describe the footprint of a whole refinement level. The
operations needed by the rest of the package are

- intersection (`box_a * box_b`, `intersect`),
- union of two box lists (`union`), and
- removal of one box list from another (`subtract`),

all of which are exact: they never drop a cell that should survive and never
introduce a cell that was not there before. A `BoxList` never stores a box with
a non-positive extent, so an empty intersection simply disappears.

Box lists are small (tens to thousands of boxes per level) and this module is
pure Python over tuples of ints; nothing here is traced by JAX.
"""
from __future__ import annotations

import dataclasses
import itertools
import operator
from typing import Iterable, Iterator, List, Sequence, Tuple, Union

import numpy as np

Index = Tuple[int, ...]
IntOrSequence = Union[int, Sequence[int]]


def _as_index(values: Sequence[int]) -> Index:
  return tuple(operator.index(v) for v in values)


def broadcast_index(value: IntOrSequence, ndim: int) -> Index:
  if isinstance(value, (int, np.integer)):
    return (int(value),) * ndim
  value = _as_index(value)
  if len(value) != ndim:
    raise ValueError(f'expected {ndim} entries, got {value}')
  return value


@dataclasses.dataclass(frozen=True)
class Box:
  """
  An axis aligned rectangle of cell indices.

  Both corners are inclusive, so `Box((0, 0), (3, 3))` holds 16 cells. A box
  whose upper corner is below its lower corner along any axis is empty.

  Attributes:
    lower: index of the first cell along every axis.
    upper: index of the last cell along every axis.
  """
  lower: Index
  upper: Index

  def __post_init__(self):
    lower = _as_index(self.lower)
    upper = _as_index(self.upper)
    if len(lower) != len(upper):
      raise ValueError(
          f'box corners have different dimensions: {lower} vs {upper}')
    # The dataclass is frozen, so normalise the corners in place.
    object.__setattr__(self, 'lower', lower)
    object.__setattr__(self, 'upper', upper)

  @classmethod
  def from_shape(cls, shape: Sequence[int], lower: Sequence[int] = None) -> Box:
    """Returns the box with the given number of cells per axis."""
    if lower is None:
      lower = (0,) * len(shape)
    return cls(lower, tuple(l + n - 1 for l, n in zip(lower, shape)))

  @property
  def ndim(self) -> int:
    return len(self.lower)

  @property
  def shape(self) -> Index:
    """Number of cells along every axis (zero for empty axes)."""
    return tuple(max(u - l + 1, 0) for l, u in zip(self.lower, self.upper))

  @property
  def size(self) -> int:
    return int(np.prod(self.shape, dtype=np.int64))

  @property
  def empty(self) -> bool:
    return any(u < l for l, u in zip(self.lower, self.upper))

  def __mul__(self, other: Box) -> Box:
    """Intersection. The result is empty if the boxes are disjoint."""
    if not isinstance(other, Box):
      return NotImplemented
    if other.ndim != self.ndim:
      raise ValueError(
          f'cannot intersect boxes of dimension {self.ndim} and {other.ndim}')
    return Box(tuple(max(a, b) for a, b in zip(self.lower, other.lower)),
               tuple(min(a, b) for a, b in zip(self.upper, other.upper)))

  def intersects(self, other: Box) -> bool:
    return not (self * other).empty

  def contains(self, index: Sequence[int]) -> bool:
    return all(l <= i <= u for l, i, u in zip(self.lower, index, self.upper))

  def contains_box(self, other: Box) -> bool:
    """True if every cell of `other` lies in this box."""
    if other.empty:
      return True
    return self.contains(other.lower) and self.contains(other.upper)

  def coarsen(self, ratio: IntOrSequence) -> Box:
    """Maps the box to the index space of a level coarser by `ratio`.

    Floor division is used on both corners so a fine cell always lands in the
    coarse cell that contains it, including for negative indices.
    """
    ratio = broadcast_index(ratio, self.ndim)
    return Box(tuple(l // r for l, r in zip(self.lower, ratio)),
               tuple(u // r for u, r in zip(self.upper, ratio)))

  def refine(self, ratio: IntOrSequence) -> Box:
    """Maps the box to the index space of a level finer by `ratio`."""
    ratio = broadcast_index(ratio, self.ndim)
    return Box(tuple(l * r for l, r in zip(self.lower, ratio)),
               tuple((u + 1) * r - 1 for u, r in zip(self.upper, ratio)))

  def grow(self, width: IntOrSequence) -> Box:
    width = broadcast_index(width, self.ndim)
    return Box(tuple(l - w for l, w in zip(self.lower, width)),
               tuple(u + w for u, w in zip(self.upper, width)))

  def shift(self, offset: Sequence[int]) -> Box:
    offset = _as_index(offset)
    return Box(tuple(l + o for l, o in zip(self.lower, offset)),
               tuple(u + o for u, o in zip(self.upper, offset)))

  def __iter__(self) -> Iterator[Index]:
    """Iterates over the cells of the box, axis 0 varying fastest."""
    if self.empty:
      return iter(())
    ranges = [range(l, u + 1) for l, u in zip(self.lower, self.upper)]
    return (tuple(reversed(cell))
            for cell in itertools.product(*reversed(ranges)))

  def slices(self, origin: Sequence[int]) -> Tuple[slice, ...]:
    """Slices selecting this box from an array whose element 0 is `origin`."""
    return tuple(slice(l - o, u - o + 1)
                 for l, u, o in zip(self.lower, self.upper, origin))


def _burst(box: Box, takeaway: Box) -> List[Box]:
  """Returns disjoint boxes covering exactly `box` minus `takeaway`.

  Slabs outside of `takeaway` are peeled off one axis at a time; whatever is
  left after the last axis is the overlap and is discarded.
  """
  if not box.intersects(takeaway):
    return [box]
  pieces = []
  lower = list(box.lower)
  upper = list(box.upper)
  for d in range(box.ndim):
    if lower[d] < takeaway.lower[d]:
      piece_upper = list(upper)
      piece_upper[d] = takeaway.lower[d] - 1
      pieces.append(Box(tuple(lower), tuple(piece_upper)))
      lower[d] = takeaway.lower[d]
    if upper[d] > takeaway.upper[d]:
      piece_lower = list(lower)
      piece_lower[d] = takeaway.upper[d] + 1
      pieces.append(Box(tuple(piece_lower), tuple(upper)))
      upper[d] = takeaway.upper[d]
  return pieces


class BoxList:
  """
  An ordered collection of boxes.

  The list silently discards empty boxes so that every stored box has a
  positive extent along every axis. The in-place operations mirror the usual
  block-structured AMR vocabulary (`union_boxes`, `intersect_boxes`,
  `remove_intersections`); the module-level functions `intersect`, `union`
  and `subtract` return new lists instead.
  """

  def __init__(self, boxes: Iterable[Box] = ()):
    self._boxes = []
    for box in boxes:
      self.append(box)

  def append(self, box: Box):
    if not isinstance(box, Box):
      raise TypeError(f'expected a Box, got {type(box)}')
    if not box.empty:
      self._boxes.append(box)

  def __iter__(self) -> Iterator[Box]:
    return iter(self._boxes)

  def __len__(self) -> int:
    return len(self._boxes)

  def __getitem__(self, i: int) -> Box:
    return self._boxes[i]

  def __repr__(self) -> str:
    return f'BoxList({self._boxes!r})'

  def __eq__(self, other) -> bool:
    if not isinstance(other, BoxList):
      return NotImplemented
    key = lambda b: (b.lower, b.upper)
    return sorted(self._boxes, key=key) == sorted(other._boxes, key=key)

  @property
  def empty(self) -> bool:
    return not self._boxes

  @property
  def size(self) -> int:
    """Total number of cells, counting overlapping cells once per box."""
    return sum(box.size for box in self._boxes)

  def copy(self) -> BoxList:
    return BoxList(self._boxes)

  def cells(self) -> Iterator[Index]:
    """Iterates over the cells of every box in order."""
    for box in self._boxes:
      yield from box

  def contains(self, index: Sequence[int]) -> bool:
    return any(box.contains(index) for box in self._boxes)

  def bounding_box(self) -> Box:
    if not self._boxes:
      raise ValueError('an empty BoxList has no bounding box')
    ndim = self._boxes[0].ndim
    return Box(tuple(min(b.lower[d] for b in self._boxes) for d in range(ndim)),
               tuple(max(b.upper[d] for b in self._boxes) for d in range(ndim)))

  def union_boxes(self, boxes: Union[Box, Iterable[Box]]):
    """Appends boxes to the list. Overlaps are kept as they are."""
    if isinstance(boxes, Box):
      boxes = (boxes,)
    for box in boxes:
      self.append(box)

  def intersect_boxes(self, region: Union[Box, Iterable[Box]]):
    """Replaces the list by its intersection with `region`."""
    if isinstance(region, Box):
      region = (region,)
    region = list(region)
    self._boxes = [
        piece for piece in (box * other for box in self._boxes
                            for other in region)
        if not piece.empty
    ]

  def remove_intersections(self, takeaway: Union[Box, Iterable[Box]]):
    """Removes every cell of `takeaway` from the list."""
    if isinstance(takeaway, Box):
      takeaway = (takeaway,)
    for other in takeaway:
      self._boxes = [piece for box in self._boxes
                     for piece in _burst(box, other)]

  def coarsen(self, ratio: IntOrSequence) -> BoxList:
    return BoxList(box.coarsen(ratio) for box in self._boxes)

  def refine(self, ratio: IntOrSequence) -> BoxList:
    return BoxList(box.refine(ratio) for box in self._boxes)


def _as_box_list(boxes: Union[Box, Iterable[Box]]) -> BoxList:
  if isinstance(boxes, BoxList):
    return boxes
  if isinstance(boxes, Box):
    return BoxList((boxes,))
  return BoxList(boxes)


def intersect(a: Union[Box, Iterable[Box]],
              b: Union[Box, Iterable[Box]]) -> BoxList:
  """Returns the pairwise intersections of two box lists."""
  result = _as_box_list(a).copy()
  result.intersect_boxes(_as_box_list(b))
  return result


def subtract(a: Union[Box, Iterable[Box]],
             b: Union[Box, Iterable[Box]]) -> BoxList:
  """Returns the cells of `a` that are not in `b` as a list of boxes.

  Boxes of `a` that do not touch `b` are returned unchanged, which makes the
  operation idempotent: `subtract(subtract(a, b), b) == subtract(a, b)`.
  """
  result = _as_box_list(a).copy()
  result.remove_intersections(_as_box_list(b))
  return result


def union(a: Union[Box, Iterable[Box]],
          b: Union[Box, Iterable[Box]]) -> BoxList:
  """Returns a list covering the cells of `a` and `b`.

  The boxes of `b` are trimmed against `a` first so that no cell shared by
  the two inputs is listed twice.
  """
  result = _as_box_list(a).copy()
  result.union_boxes(subtract(b, a))
  return result
