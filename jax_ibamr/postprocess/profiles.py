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
Sampling of a velocity component along a line through the hierarchy.

A line is given by two physical end points that agree in every coordinate but
one. The line is mapped to cells from the finest level to the coarsest, and
every level leaves out the stretches of the line that finer levels cover, so
that each point of the line is sampled on the finest level that contains it
and on no other. A line lying on the boundary of a finer level belongs to the
finer level. Every rank then samples the cells of its local patches.

For every remaining cell the side-centered component is interpolated linearly
between the lower and upper faces of the cell along the component's axis,
evaluated at the line's coordinate on that axis, and emitted together with the
cell-center coordinate along the line (the ordinate).
"""
import dataclasses
import itertools
import logging
from typing import Optional, Sequence, Tuple

import numpy as np

from jax_ibamr.base import boxes as box_utils
from jax_ibamr.base import hierarchy as hier
from jax_ibamr.base.boxes import Box, BoxList

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class LineQuery:
  """
  A segment parallel to one coordinate axis.

  Attributes:
    lower: physical coordinates of the first end point.
    upper: physical coordinates of the second end point.
  """
  lower: Tuple[float, ...]
  upper: Tuple[float, ...]

  def __post_init__(self):
    lower = tuple(float(x) for x in self.lower)
    upper = tuple(float(x) for x in self.upper)
    if len(lower) != len(upper):
      raise ValueError(
          f'end points have different dimensions: {lower} vs {upper}')
    differing = [d for d, (a, b) in enumerate(zip(lower, upper)) if a != b]
    if len(differing) != 1:
      raise ValueError(
          'a line query needs end points that differ in exactly one '
          f'coordinate, got {lower} and {upper}')
    axis, = differing
    if lower[axis] > upper[axis]:
      lower, upper = upper, lower
    object.__setattr__(self, 'lower', lower)
    object.__setattr__(self, 'upper', upper)

  @property
  def axis(self) -> int:
    """The axis along which the line extends."""
    for d, (a, b) in enumerate(zip(self.lower, self.upper)):
      if a != b:
        return d


@dataclasses.dataclass
class ProfileSamples:
  """(ordinate, value) pairs in the order in which they were produced."""
  ordinates: np.ndarray
  values: np.ndarray

  def __post_init__(self):
    self.ordinates = np.asarray(self.ordinates, dtype=np.float64).ravel()
    self.values = np.asarray(self.values, dtype=np.float64).ravel()
    if self.ordinates.shape != self.values.shape:
      raise ValueError('ordinates and values must have the same length')

  def __len__(self) -> int:
    return self.ordinates.size

  @classmethod
  def empty(cls) -> 'ProfileSamples':
    return cls(np.zeros(0), np.zeros(0))

  @classmethod
  def concatenate(cls, parts: Sequence['ProfileSamples']) -> 'ProfileSamples':
    if not parts:
      return cls.empty()
    return cls(np.concatenate([p.ordinates for p in parts]),
               np.concatenate([p.values for p in parts]))

  def interleaved(self) -> np.ndarray:
    """Array of shape `(n, 2)` holding `(ordinate, value)` rows."""
    return np.stack([self.ordinates, self.values], axis=-1)


def _flatten(boxes: BoxList, axis: int) -> BoxList:
  """Projects cells onto the line: every index off `axis` becomes 0."""
  return BoxList(
      Box(tuple(l if d == axis else 0 for d, l in enumerate(box.lower)),
          tuple(u if d == axis else 0 for d, u in enumerate(box.upper)))
      for box in boxes)


def _extrude(boxes: BoxList, axis: int, like: Box) -> BoxList:
  """Places projected cells back on the line of cells through `like`."""
  return BoxList(
      Box(tuple(l if d == axis else k for d, (l, k) in
                enumerate(zip(box.lower, like.lower))),
          tuple(u if d == axis else k for d, (u, k) in
                enumerate(zip(box.upper, like.upper))))
      for box in boxes)


def line_cells(level: hier.PatchLevel,
               query: LineQuery,
               covered: Optional[BoxList] = None) -> Tuple[BoxList, BoxList]:
  """
  Cells of `level` that sample the line.

  Off the line's axis the line normally crosses a single row of cells. Where
  it lies exactly on a cell face, each stretch of the line goes to the cell
  above the face if the level has one there, and to the cell below it
  otherwise. A line on the upper face of a patch is thus sampled by that
  patch unless a neighbour on the same level starts at the face.

  Args:
    level: the level to sample.
    query: the sampling line.
    covered: stretches of the line, projected by `_flatten` into this level's
      index space, that finer levels already sample.

  Returns:
    The cells of `level` to sample, and `covered` extended by the stretches
    they add.
  """
  axis = query.axis
  lower = list(level.cell_index(query.lower))
  upper = list(level.cell_index(query.upper))
  shifts = []
  for d in range(level.domain_box.ndim):
    on_face = d != axis and level.cell_coordinate(query.lower[d], d)[1]
    shifts.append((0, -1) if on_face else (0,))
  base = Box(tuple(lower), tuple(upper))
  taken = BoxList() if covered is None else covered.copy()
  cells = BoxList()
  for shift in itertools.product(*shifts):
    candidate = base.shift(shift)
    found = box_utils.subtract(
        _flatten(box_utils.intersect(level.boxes, candidate), axis), taken)
    cells.union_boxes(_extrude(found, axis, candidate))
    taken.union_boxes(found)
  return cells, taken


def _sample_cell(patch: hier.Patch, arrays, cell, query: LineQuery,
                 component: int, centering: str) -> Tuple[float, float]:
  axis = query.axis
  local = tuple(i - l for i, l in zip(cell, patch.box.lower))
  ordinate = patch.x_lower[axis] + patch.dx[axis] * (local[axis] + 0.5)
  if centering == hier.Centering.CELL:
    return ordinate, float(arrays[0][local])
  faces = arrays[component]
  upper = list(local)
  upper[component] += 1
  u0 = float(faces[local])
  u1 = float(faces[tuple(upper)])
  h = patch.dx[component]
  x0 = patch.x_lower[component] + h * local[component]
  if component == axis:
    X = ordinate
  else:
    X = query.lower[component]
  return ordinate, u0 + (u1 - u0) * (X - x0) / h


def extract_line_profile(hierarchy: hier.PatchHierarchy,
                         name: str,
                         query: LineQuery,
                         component: int = 0) -> ProfileSamples:
  """
  Samples variable `name` along `query` on the local patches.

  Args:
    hierarchy: the patch hierarchy.
    name: patch data name of a side- or cell-centered variable.
    query: the sampling line.
    component: for side-centered data, the velocity component to sample.

  Returns:
    The local samples, finest level first. A line that misses every local
    patch yields no samples.
  """
  centering = hierarchy.variables[name].centering
  if centering == hier.Centering.SIDE and not 0 <= component < hierarchy.ndim:
    raise ValueError(f'invalid component {component}')
  ordinates = []
  values = []
  finest_ln = hierarchy.finest_level_number
  covered = None
  for ln in range(finest_ln, -1, -1):
    level = hierarchy.get_level(ln)
    if covered is not None:
      covered = covered.coarsen(hierarchy.get_level(ln + 1).ratio_to_coarser)
    cells, covered = line_cells(level, query, covered)
    if cells.empty:
      continue
    for patch in level.local_patches():
      mine = box_utils.intersect(cells, patch.box)
      if mine.empty:
        continue
      arrays = tuple(np.asarray(a.interior) for a in patch[name])
      for cell in mine.cells():
        ordinate, value = _sample_cell(patch, arrays, cell, query, component,
                                       centering)
        ordinates.append(ordinate)
        values.append(value)
  logger.debug('extracted %d samples of %s along axis %d', len(ordinates),
               name, query.axis)
  return ProfileSamples(np.asarray(ordinates), np.asarray(values))
