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
Second-order finite-difference operators on the staggered patch layout.

All operators take ghosted `GridArray`s whose ghost layers have already been
filled (see `boundaries.fill_ghosts`) and return plain arrays with the
interior shape of the result:

- `laplacian`: same location as the input.
- `divergence`: side-centered input, cell-centered output.
- `gradient`: cell-centered input, one side-centered component per axis,
  including both boundary faces of the patch.
"""
from typing import Tuple

import jax.numpy as jnp

from jax_ibamr.base import grids

Array = grids.Array
GridArray = grids.GridArray


def _window(u: GridArray, axis: int, start: int, extra: int = 0) -> Array:
  """The interior of `u`, shifted by `start` and extended by `extra` along `axis`."""
  slices = list(u.interior_slices)
  s = slices[axis]
  slices[axis] = slice(s.start + start, s.stop + start + extra)
  return u.data[tuple(slices)]


def _require_ghosts(u: GridArray, width: int):
  if u.ghosts < width:
    raise ValueError(
        f'stencil needs {width} ghost layers, array has {u.ghosts}')


def laplacian(u: GridArray) -> Array:
  """Standard (2 * ndim + 1)-point Laplacian at the interior points of `u`."""
  _require_ghosts(u, 1)
  center = u.interior
  result = jnp.zeros_like(center)
  for axis, h in enumerate(u.grid.step):
    result = result + (_window(u, axis, 1) - 2 * center
                       + _window(u, axis, -1)) / h**2
  return result


def divergence(v: Tuple[GridArray, ...]) -> Array:
  """Cell-centered divergence of a side-centered field."""
  result = None
  for axis, u in enumerate(v):
    faces = u.interior
    n = faces.shape[axis]
    upper = jnp.take(faces, jnp.arange(1, n), axis=axis)
    lower = jnp.take(faces, jnp.arange(0, n - 1), axis=axis)
    term = (upper - lower) / u.grid.step[axis]
    result = term if result is None else result + term
  return result


def gradient(p: GridArray) -> Tuple[Array, ...]:
  """Side-centered gradient of a cell-centered field.

  Component `d` lives on every face normal to axis `d` of the patch, lower
  and upper boundary faces included, so one ghost layer is required.
  """
  _require_ghosts(p, 1)
  components = []
  for axis, h in enumerate(p.grid.step):
    # Cells lower - 1 .. upper + 1 along `axis`.
    cells = _window(p, axis, -1, extra=2)
    n = cells.shape[axis]
    upper = jnp.take(cells, jnp.arange(1, n), axis=axis)
    lower = jnp.take(cells, jnp.arange(0, n - 1), axis=axis)
    components.append((upper - lower) / h)
  return tuple(components)
