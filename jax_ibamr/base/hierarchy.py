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
A distributed, block-structured hierarchy of uniform patches.

The hierarchy is an ordered list of levels; level 0 is the coarsest and covers
the whole physical domain. Every finer level is a set of non-overlapping boxes
that nests inside the next coarser level, refined by an integer ratio. Each box
is a `Patch` that owns ghosted field data for the variables registered with
the hierarchy.

The box layout of every level is known on every rank, but the data of a patch
is only allocated on the rank that owns it. Patches are assigned to ranks in
contiguous chunks, in the order in which the boxes of a level are given.

Generating the boxes (tagging, clustering, load balancing) is not done here:
levels are built from explicit box lists.
"""
from __future__ import annotations

import dataclasses
import logging
import math
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from jax_ibamr.base import boxes as box_utils
from jax_ibamr.base import grids
from jax_ibamr.base.boxes import Box, BoxList
from jax_ibamr.base.communication import ExecutionContext

logger = logging.getLogger(__name__)

# Relative distance to a cell face below which a coordinate lies on it.
FACE_TOLERANCE = 1e-10


class Centering:
  """Supported data centerings."""
  # One value per cell.
  CELL = 'cell'
  # One value per face normal to each axis (one component per axis).
  SIDE = 'side'


@dataclasses.dataclass(frozen=True)
class Variable:
  """
  Description of a field stored on the patches of a hierarchy.

  Attributes:
    name: key under which the data is stored on every patch.
    centering: `Centering.CELL` or `Centering.SIDE`.
    ghosts: width of the ghost layer.
    wall_bc: boundary condition type applied on non-periodic domain
      boundaries when ghosts are filled (see `boundaries.BCType`).
  """
  name: str
  centering: str = Centering.CELL
  ghosts: int = 1
  wall_bc: str = 'dirichlet'

  def __post_init__(self):
    if self.centering not in (Centering.CELL, Centering.SIDE):
      raise ValueError(f'unknown centering: {self.centering}')
    if self.ghosts < 0:
      raise ValueError(f'ghost width must be non-negative: {self.ghosts}')

  def offsets(self, grid: grids.Grid) -> Tuple[Tuple[float, ...], ...]:
    """Offsets of the data components of this variable on `grid`."""
    if self.centering == Centering.CELL:
      return (grid.cell_center,)
    return grid.cell_faces

  def renamed(self, name: str) -> Variable:
    return dataclasses.replace(self, name=name)


class CartesianGridGeometry:
  """
  Physical description of the level-0 index space.

  Attributes:
    x_lo: physical coordinates of the lower domain corner.
    x_up: physical coordinates of the upper domain corner.
    domain_box: the level-0 index box of the domain.
    periodic: per-axis periodicity flags.
  """

  def __init__(self,
               x_lo: Sequence[float],
               x_up: Sequence[float],
               n_cells: Sequence[int],
               periodic: Optional[Sequence[bool]] = None):
    if not len(x_lo) == len(x_up) == len(n_cells):
      raise ValueError('x_lo, x_up and n_cells must have the same length')
    self.x_lo = tuple(float(x) for x in x_lo)
    self.x_up = tuple(float(x) for x in x_up)
    self.domain_box = Box.from_shape(n_cells)
    if periodic is None:
      periodic = (False,) * len(n_cells)
    self.periodic = tuple(bool(p) for p in periodic)
    if len(self.periodic) != self.ndim:
      raise ValueError(f'periodic must have {self.ndim} entries')

  @property
  def ndim(self) -> int:
    return self.domain_box.ndim

  @property
  def dx(self) -> Tuple[float, ...]:
    """Level-0 grid spacing."""
    return tuple((u - l) / n for l, u, n in
                 zip(self.x_lo, self.x_up, self.domain_box.shape))

  def level_dx(self, ratio_to_level_zero: Sequence[int]) -> Tuple[float, ...]:
    return tuple(h / r for h, r in zip(self.dx, ratio_to_level_zero))


class Patch:
  """
  One box of a level, together with the data stored on it.

  Data is keyed by variable name. Each entry is a tuple of ghosted
  `GridArray`s: one for cell-centered data and one per axis for
  side-centered data.
  """

  def __init__(self, index: int, box: Box, level_number: int,
               x_lo: Sequence[float], dx: Sequence[float], owner: int):
    self.index = index
    self.box = box
    self.level_number = level_number
    self.owner = owner
    self.dx = tuple(dx)
    self.x_lower = tuple(x0 + l * h for x0, l, h in zip(x_lo, box.lower, dx))
    self.x_upper = tuple(
        x0 + (u + 1) * h for x0, u, h in zip(x_lo, box.upper, dx))
    self.grid = grids.Grid(box.shape,
                           domain=tuple(zip(self.x_lower, self.x_upper)))
    self._data: Dict[str, Tuple[grids.GridArray, ...]] = {}

  def __repr__(self) -> str:
    return (f'Patch(level={self.level_number}, index={self.index}, '
            f'box={self.box}, owner={self.owner})')

  def allocate(self, variable: Variable):
    self._data[variable.name] = tuple(
        grids.GridArray.zeros(offset, self.grid, variable.ghosts)
        for offset in variable.offsets(self.grid))

  def deallocate(self, name: str):
    self._data.pop(name, None)

  def has_data(self, name: str) -> bool:
    return name in self._data

  def __getitem__(self, name: str) -> Tuple[grids.GridArray, ...]:
    return self._data[name]

  def __setitem__(self, name: str, arrays: Sequence[grids.GridArray]):
    arrays = tuple(arrays)
    current = self._data.get(name)
    if current is None:
      raise KeyError(f'no data named {name!r} is allocated on {self}')
    for old, new in zip(current, arrays):
      if old.shape != new.shape or old.offset != new.offset:
        raise ValueError(
            f'data for {name!r} does not match its allocation on {self}')
    if len(current) != len(arrays):
      raise ValueError(f'expected {len(current)} components for {name!r}')
    self._data[name] = arrays


class PatchLevel:
  """All patches that share one resolution."""

  def __init__(self, level_number: int, boxes: BoxList,
               ratio_to_coarser: Tuple[int, ...],
               ratio_to_level_zero: Tuple[int, ...],
               geometry: CartesianGridGeometry,
               context: ExecutionContext):
    self.level_number = level_number
    self.boxes = boxes
    self.ratio_to_coarser = ratio_to_coarser
    self.ratio_to_level_zero = ratio_to_level_zero
    self.domain_box = geometry.domain_box.refine(ratio_to_level_zero)
    self.x_lo = geometry.x_lo
    self.dx = geometry.level_dx(ratio_to_level_zero)
    self._context = context
    owners = _contiguous_owners(len(boxes), context.size)
    self.patches = [
        Patch(i, box, level_number, geometry.x_lo, self.dx, owner)
        for i, (box, owner) in enumerate(zip(boxes, owners))
    ]

  def __len__(self) -> int:
    return len(self.patches)

  def local_patches(self) -> Iterator[Patch]:
    """Yields the patches owned by the calling rank."""
    rank = self._context.rank
    for patch in self.patches:
      if patch.owner == rank:
        yield patch

  def cell_coordinate(self, x: float, axis: int) -> Tuple[int, bool]:
    """Index along `axis` of the cell holding coordinate `x`.

    A coordinate on a cell face belongs to the cell above the face.

    Returns:
      The index, and whether `x` lies on the lower face of that cell.
    """
    t = float((x - self.x_lo[axis]) / self.dx[axis])
    k = round(t)
    if abs(t - k) <= FACE_TOLERANCE * max(1.0, abs(t)):
      return k, True
    return math.floor(t), False

  def cell_index(self, X: Sequence[float]) -> Tuple[int, ...]:
    """Index of the cell of this level that contains point `X`.

    Points outside the domain map to indices outside of `domain_box`.
    """
    return tuple(self.cell_coordinate(x, d)[0] for d, x in enumerate(X))


def _contiguous_owners(num_patches: int, num_ranks: int) -> List[int]:
  owners = np.zeros(num_patches, dtype=int)
  for rank, chunk in enumerate(
      np.array_split(np.arange(num_patches), num_ranks)):
    owners[chunk] = rank
  return owners.tolist()


class PatchHierarchy:
  """
  The ordered set of refinement levels.

  Attributes:
    geometry: the `CartesianGridGeometry` of level 0.
    context: the `ExecutionContext` of the run.
    variables: registered variables, keyed by name.
  """

  def __init__(self, geometry: CartesianGridGeometry,
               context: Optional[ExecutionContext] = None):
    self.geometry = geometry
    self.context = context if context is not None else ExecutionContext()
    self.variables: Dict[str, Variable] = {}
    self._levels: List[PatchLevel] = []

  @property
  def ndim(self) -> int:
    return self.geometry.ndim

  @property
  def number_of_levels(self) -> int:
    return len(self._levels)

  @property
  def finest_level_number(self) -> int:
    return len(self._levels) - 1

  def get_level(self, ln: int) -> PatchLevel:
    return self._levels[ln]

  def levels(self) -> Iterator[PatchLevel]:
    """Yields the levels, coarsest first."""
    yield from self._levels

  def make_level(self,
                 boxes: Optional[Sequence[Box]] = None,
                 ratio: Optional[Sequence[int]] = None) -> PatchLevel:
    """
    Appends a level finer than the current finest level.

    Args:
      boxes: boxes of the new level, in its own index space. Defaults to the
        whole domain, which is only meaningful for level 0.
      ratio: refinement ratio to the next coarser level (ignored for level 0).

    Returns:
      The new `PatchLevel`.

    Raises:
      ValueError: if the boxes overlap, leave the domain, or do not nest in the
        coarser level.
    """
    ln = self.number_of_levels
    ndim = self.ndim
    if ln == 0:
      ratio_to_coarser = (1,) * ndim
      ratio_to_level_zero = (1,) * ndim
    else:
      if ratio is None:
        raise ValueError(f'level {ln} requires a refinement ratio')
      ratio_to_coarser = box_utils.broadcast_index(ratio, ndim)
      coarser = self._levels[-1]
      ratio_to_level_zero = tuple(
          a * b for a, b in zip(coarser.ratio_to_level_zero, ratio_to_coarser))
    domain_box = self.geometry.domain_box.refine(ratio_to_level_zero)
    if boxes is None:
      boxes = [domain_box]
    boxes = BoxList(boxes)
    if boxes.empty:
      raise ValueError(f'level {ln} has no boxes')

    for i, box in enumerate(boxes):
      if not domain_box.contains_box(box):
        raise ValueError(f'box {box} of level {ln} leaves the domain')
      for other in list(boxes)[i + 1:]:
        if box.intersects(other):
          raise ValueError(f'boxes {box} and {other} of level {ln} overlap')
    if ln > 0:
      coarse_footprint = self._levels[-1].boxes.refine(ratio_to_coarser)
      if not box_utils.subtract(boxes, coarse_footprint).empty:
        raise ValueError(f'level {ln} is not nested in level {ln - 1}')

    level = PatchLevel(ln, boxes, ratio_to_coarser, ratio_to_level_zero,
                       self.geometry, self.context)
    for patch in level.local_patches():
      for variable in self.variables.values():
        patch.allocate(variable)
    self._levels.append(level)
    logger.info('created level %d with %d patches (%d cells)',
                ln, len(boxes), boxes.size)
    return level

  def register_variable(self, variable: Variable):
    """Registers `variable` and allocates it on every local patch."""
    existing = self.variables.get(variable.name)
    if existing is not None:
      if existing != variable:
        raise ValueError(
            f'variable {variable.name!r} is already registered differently')
      return
    self.variables[variable.name] = variable
    for level in self._levels:
      for patch in level.local_patches():
        patch.allocate(variable)

  def remove_variable(self, name: str):
    """Deallocates the data of `name` on every local patch."""
    if self.variables.pop(name, None) is None:
      return
    for level in self._levels:
      for patch in level.local_patches():
        patch.deallocate(name)
