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
Core data structures for the staggered data stored on a single patch.

Every patch of the hierarchy owns a small uniform grid. The quantities stored
on it live either at cell centers (pressure) or on the cell faces normal to
one axis (the components of a side-centered velocity). The key concepts are:

- `Grid`: the physical extent, number of cells and spacing of one patch.
- `GridArray`: a JAX array annotated with its location on a `Grid` (offset)
  and the width of the ghost layer that surrounds the patch interior.

Unlike a fully periodic single-grid solver, a patch does not know how to fill
its own ghost layer; that needs the neighbouring patches and the coarser
level, and is done by `jax_ibamr.base.boundaries`.
"""
# This import allows a class to use its own name in type hints before it is fully defined.
from __future__ import annotations

import dataclasses
import numbers
import operator
from typing import Any, Optional, Sequence, Tuple, Union

import jax
import jax.numpy as jnp
from jax.tree_util import register_pytree_node_class
import numpy as np

# --- Type Aliases ---
Array = Union[np.ndarray, jax.Array]
IntOrSequence = Union[int, Sequence[int]]
PyTree = Any


@dataclasses.dataclass(init=False, frozen=True)
class Grid:
  """
  Describes the size, shape, and physical extent of one patch.

  The grid is immutable and hashable so that it can be used as static
  auxiliary data of a JAX PyTree.

  Attributes:
    shape: number of cells in each dimension.
    step: physical size of a cell in each dimension.
    domain: `((x_min, x_max), (y_min, y_max), ...)` physical bounds.
  """
  shape: Tuple[int, ...]
  step: Tuple[float, ...]
  domain: Tuple[Tuple[float, float], ...]

  def __init__(
      self,
      shape: Sequence[int],
      step: Optional[Union[float, Sequence[float]]] = None,
      domain: Optional[Sequence[Tuple[float, float]]] = None,
  ):
    """Constructs a grid. Provide `shape` and EITHER `step` OR `domain`."""
    shape = tuple(operator.index(s) for s in shape)
    object.__setattr__(self, 'shape', shape)

    if step is not None and domain is not None:
      raise TypeError('Cannot provide both `step` and `domain` to Grid constructor')
    elif domain is not None:
      if len(domain) != self.ndim:
        raise ValueError(f'length of domain does not match ndim: {len(domain)} vs {self.ndim}')
      for bounds in domain:
        if len(bounds) != 2:
          raise ValueError(f'domain must be a sequence of (lower, upper) pairs: {domain}')
      domain = tuple((float(lower), float(upper)) for lower, upper in domain)
      # Re-derive the step from the bounds so the two never disagree.
      step = tuple(
          (upper - lower) / size for (lower, upper), size in zip(domain, shape))
    else:
      if step is None: step = 1.0
      if isinstance(step, numbers.Number):
        step = (step,) * self.ndim
      elif len(step) != self.ndim:
        raise ValueError(f'length of step does not match ndim: {len(step)} vs {self.ndim}')
      step = tuple(float(s) for s in step)
      domain = tuple((0.0, s * n) for s, n in zip(step, shape))

    object.__setattr__(self, 'domain', domain)
    object.__setattr__(self, 'step', step)

  @property
  def ndim(self) -> int:
    return len(self.shape)

  @property
  def cell_center(self) -> Tuple[float, ...]:
    """Offset `(0.5, 0.5, ...)` of the cell centers."""
    return self.ndim * (0.5,)

  @property
  def cell_faces(self) -> Tuple[Tuple[float, ...], ...]:
    """
    Offsets of the faces normal to each axis.

    For 2D this is `((0.0, 0.5), (0.5, 0.0))`: the faces normal to x sit on
    the lower x edge of their cell. A side-centered array stores both the
    lower and the upper boundary face of the grid, so along its normal axis it
    has one more point than there are cells.
    """
    d = self.ndim
    offsets = (np.ones([d, d]) - np.eye(d)) / 2.
    return tuple(tuple(float(o) for o in offset) for offset in offsets)

  def data_shape(self, offset: Sequence[float]) -> Tuple[int, ...]:
    """Number of data points along every axis for data at `offset`."""
    if len(offset) != self.ndim:
      raise ValueError(f'unexpected offset length: {len(offset)} vs {self.ndim}')
    return tuple(n + 1 if o == 0.0 else n for n, o in zip(self.shape, offset))

  def axes(self, offset: Optional[Sequence[float]] = None) -> Tuple[Array, ...]:
    """
    Returns 1D arrays with the physical coordinates of the data points along
    every axis, `x_i = x_lower + (i + offset) * dx`.
    """
    if offset is None: offset = self.cell_center
    shape = self.data_shape(offset)
    return tuple(lower + (jnp.arange(length) + offset_i) * step
                 for (lower, _), offset_i, length, step in zip(
                     self.domain, offset, shape, self.step))

  def mesh(self, offset: Optional[Sequence[float]] = None) -> Tuple[Array, ...]:
    """N-D coordinate arrays, equivalent to `jnp.meshgrid(..., indexing='ij')`."""
    axes = self.axes(offset)
    return tuple(jnp.meshgrid(*axes, indexing='ij'))


@register_pytree_node_class
@dataclasses.dataclass
class GridArray(np.lib.mixins.NDArrayOperatorsMixin):
  """
  A data array associated with a location (offset) on a patch grid.

  The stored array includes `ghosts` layers of ghost points on every side.
  Arithmetic through NumPy operators is forwarded to `jax.numpy` and applies
  to the whole ghosted array; ghost values only become meaningful again after
  the next ghost fill.

  Attributes:
    data: ghosted data, of shape `grid.data_shape(offset) + 2 * ghosts`.
    offset: location of the data points within a cell.
    grid: the patch `Grid`.
    ghosts: width of the ghost layer.
  """
  data: Array
  offset: Tuple[float, ...]
  grid: Grid
  ghosts: int = 0

  def tree_flatten(self):
    """The `data` array is the only traced child; the rest is static."""
    children = (self.data,)
    aux_data = (self.offset, self.grid, self.ghosts)
    return children, aux_data

  @classmethod
  def tree_unflatten(cls, aux_data, children):
    return cls(*children, *aux_data)

  @classmethod
  def zeros(cls, offset: Sequence[float], grid: Grid, ghosts: int = 0,
            dtype=jnp.float64) -> GridArray:
    shape = tuple(n + 2 * ghosts for n in grid.data_shape(offset))
    return cls(jnp.zeros(shape, dtype=dtype), tuple(offset), grid, ghosts)

  @property
  def dtype(self):
    return self.data.dtype

  @property
  def shape(self) -> Tuple[int, ...]:
    return self.data.shape

  @property
  def interior_slices(self) -> Tuple[slice, ...]:
    g = self.ghosts
    return tuple(slice(g, g + n) for n in self.grid.data_shape(self.offset))

  @property
  def interior(self) -> Array:
    """The data points owned by the patch, without the ghost layer."""
    return self.data[self.interior_slices]

  def with_interior(self, values: Array) -> GridArray:
    """Returns a copy whose interior is `values` and whose ghosts are zero."""
    data = jnp.zeros_like(self.data).at[self.interior_slices].set(values)
    return GridArray(data, self.offset, self.grid, self.ghosts)

  # Types allowed in arithmetic with this class. Tracers are `jax.Array`s.
  _HANDLED_TYPES = (numbers.Number, np.ndarray, jax.Array)

  def __array_ufunc__(self, ufunc, method, *inputs, **kwargs):
    """Maps NumPy ufuncs (`+`, `*`, `sqrt`, ...) onto their `jnp` versions."""
    for x in inputs:
      if not isinstance(x, self._HANDLED_TYPES + (GridArray,)):
        return NotImplemented
    if method != '__call__':
      return NotImplemented
    try:
      func = getattr(jnp, ufunc.__name__)
    except AttributeError:
      return NotImplemented

    # Operations on several arrays are only meaningful when they share the
    # same location, grid and ghost width.
    grid_array_inputs = [x for x in inputs if isinstance(x, GridArray)]
    offset = consistent_offset(*grid_array_inputs)
    grid = consistent_grid(*grid_array_inputs)
    ghosts = consistent_ghosts(*grid_array_inputs)

    arrays = [x.data if isinstance(x, GridArray) else x for x in inputs]
    result = func(*arrays)

    if isinstance(result, tuple):
      return tuple(GridArray(r, offset, grid, ghosts) for r in result)
    else:
      return GridArray(result, offset, grid, ghosts)


# A side-centered field is one GridArray per axis.
GridArrayVector = Tuple[GridArray, ...]


class InconsistentOffsetError(Exception):
  """Raised when combining arrays that have different offsets."""


def consistent_offset(*arrays: GridArray) -> Tuple[float, ...]:
  """Returns the unique offset of `arrays` or raises InconsistentOffsetError."""
  if not arrays: return ()
  offsets = {array.offset for array in arrays}
  if len(offsets) != 1:
    raise InconsistentOffsetError(
        f'arrays do not have a unique offset: {offsets}')
  offset, = offsets
  return offset


class InconsistentGridError(Exception):
  """Raised when combining arrays defined on different grids."""


def consistent_grid(*arrays: GridArray) -> Grid:
  """Returns the unique grid of `arrays` or raises InconsistentGridError."""
  if not arrays: return None
  grids = {array.grid for array in arrays}
  if len(grids) != 1:
    raise InconsistentGridError(f'arrays do not have a unique grid: {grids}')
  grid, = grids
  return grid


def consistent_ghosts(*arrays: GridArray) -> int:
  if not arrays: return 0
  widths = {array.ghosts for array in arrays}
  if len(widths) != 1:
    raise InconsistentGridError(
        f'arrays do not have a unique ghost width: {widths}')
  width, = widths
  return width
