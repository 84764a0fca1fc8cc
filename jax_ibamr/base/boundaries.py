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
Ghost filling for the patches of a hierarchy.

Finite-difference stencils need values just outside every patch. Those come
from three places:

1.  neighbouring patches of the same level,
2.  the next coarser level, where no patch of the same level exists, and
3.  the physical boundary conditions of the domain.

The ghost fill builds, for every level, a "canvas": a host (NumPy) array that
spans the whole refined domain of that level. The canvas starts from the
prolonged canvas of the coarser level (zeros on level 0), is overwritten with
the interiors of all patches of the level (gathered from every rank), and is
then padded according to the boundary conditions. Every local patch finally
copies its ghost layer out of the padded canvas.

The homogeneous conditions implemented here are the ones the implicit Stokes
operator needs: the operator is linear only if its ghost fill is.
"""
from typing import Dict, List, Optional, Sequence, Tuple

import jax.numpy as jnp
import numpy as np

from jax_ibamr.base import grids
from jax_ibamr.base import hierarchy as hier


class BCType:
  """
  String constants for the supported boundary conditions.
  """
  # The domain wraps around on itself.
  PERIODIC = 'periodic'
  # Homogeneous Dirichlet: the value is zero on the boundary (no-slip walls).
  DIRICHLET = 'dirichlet'
  # Homogeneous Neumann: the normal derivative is zero on the boundary.
  NEUMANN = 'neumann'


def _is_face_axis(offset: Sequence[float], axis: int) -> bool:
  return offset[axis] == 0.0


def prolong(coarse: np.ndarray, ratio: Sequence[int],
            offset: Sequence[float]) -> np.ndarray:
  """
  Maps level data to the index space of a finer level.

  Cell axes are injected (every fine cell takes the value of the coarse cell
  that contains it); face axes are interpolated linearly between the two
  coarse faces that bracket the fine face.

  Args:
    coarse: coarse data spanning the whole coarse domain.
    ratio: refinement ratio per axis.
    offset: location of the data in a cell.

  Returns:
    Data spanning the whole fine domain.
  """
  fine = coarse
  for axis, r in enumerate(ratio):
    if r == 1:
      continue
    if not _is_face_axis(offset, axis):
      fine = np.repeat(fine, r, axis=axis)
      continue
    n_coarse = fine.shape[axis] - 1
    faces = np.arange(n_coarse * r + 1)
    i0 = faces // r
    i1 = np.minimum(i0 + 1, n_coarse)
    weight_shape = [1] * fine.ndim
    weight_shape[axis] = -1
    w = ((faces % r) / r).reshape(weight_shape)
    fine = ((1.0 - w) * np.take(fine, i0, axis=axis)
            + w * np.take(fine, i1, axis=axis))
  return fine


def _pad_axis(array: np.ndarray, width: int, axis: int, bc_type: str,
              face_axis: bool) -> np.ndarray:
  """Adds `width` ghost layers on both ends of `axis`."""
  if width == 0:
    return array
  pad_width = [(0, 0)] * array.ndim
  if bc_type == BCType.PERIODIC:
    if face_axis:
      # The upper boundary face is the lower boundary face.
      core = np.take(array, np.arange(array.shape[axis] - 1), axis=axis)
      pad_width[axis] = (width, width + 1)
      return np.pad(core, pad_width, mode='wrap')
    pad_width[axis] = (width, width)
    return np.pad(array, pad_width, mode='wrap')

  # Mirror about the boundary face: 'reflect' for data on the boundary face,
  # 'symmetric' for data half a cell inside it.
  pad_width[axis] = (width, width)
  mode = 'reflect' if face_axis else 'symmetric'
  padded = np.pad(array, pad_width, mode=mode)
  if bc_type == BCType.DIRICHLET:
    lower = [slice(None)] * array.ndim
    upper = [slice(None)] * array.ndim
    lower[axis] = slice(0, width)
    upper[axis] = slice(-width, None)
    padded[tuple(lower)] *= -1.0
    padded[tuple(upper)] *= -1.0
  elif bc_type != BCType.NEUMANN:
    raise ValueError(f'unsupported boundary condition: {bc_type}')
  return padded


def pad_physical(array: np.ndarray, width: int, offset: Sequence[float],
                 bc_types: Sequence[str]) -> np.ndarray:
  """Pads a whole-domain array with ghost layers on every axis."""
  for axis, bc_type in enumerate(bc_types):
    array = _pad_axis(array, width, axis, bc_type, _is_face_axis(offset, axis))
  return array


def _gather_interiors(hierarchy: hier.PatchHierarchy, level: hier.PatchLevel,
                      name: str) -> Dict[int, Tuple[np.ndarray, ...]]:
  """Collective. Returns the interior data of every patch of `level`."""
  local = {
      patch.index: tuple(np.asarray(a.interior) for a in patch[name])
      for patch in level.local_patches()
  }
  merged = {}
  for part in hierarchy.context.allgather(local):
    merged.update(part)
  return merged


def level_canvases(hierarchy: hier.PatchHierarchy, name: str,
                   finest_ln: Optional[int] = None
                   ) -> List[Tuple[np.ndarray, ...]]:
  """
  Collective. Builds the unpadded canvas of every level up to `finest_ln`.

  Returns:
    A list indexed by level number; each entry holds one whole-domain array
    per data component of variable `name`.
  """
  if finest_ln is None:
    finest_ln = hierarchy.finest_level_number
  variable = hierarchy.variables[name]
  canvases = []
  for ln in range(finest_ln + 1):
    level = hierarchy.get_level(ln)
    domain_grid = grids.Grid(level.domain_box.shape)
    offsets = variable.offsets(domain_grid)
    if ln == 0:
      canvas = [np.zeros(domain_grid.data_shape(o)) for o in offsets]
    else:
      canvas = [prolong(c, level.ratio_to_coarser, o)
                for c, o in zip(canvases[-1], offsets)]
    for index, interiors in _gather_interiors(hierarchy, level, name).items():
      box = level.patches[index].box
      for c, values in enumerate(interiors):
        slices = tuple(slice(l, l + n) for l, n in zip(box.lower, values.shape))
        canvas[c][slices] = values
    canvases.append(tuple(canvas))
  return canvases


def boundary_types(hierarchy: hier.PatchHierarchy, name: str) -> Tuple[str, ...]:
  """Per-axis boundary condition types of variable `name`."""
  wall = hierarchy.variables[name].wall_bc
  return tuple(BCType.PERIODIC if periodic else wall
               for periodic in hierarchy.geometry.periodic)


def fill_ghosts(hierarchy: hier.PatchHierarchy, name: str,
                coarsest_ln: int = 0, finest_ln: Optional[int] = None):
  """
  Collective. Fills the ghost layers of variable `name` on the given levels.

  Interiors are left untouched. Ghosts inside the domain are copied from the
  same level where it has data and prolonged from the coarser level elsewhere.
  Ghosts outside the domain follow `boundary_types(hierarchy, name)`.
  """
  if finest_ln is None:
    finest_ln = hierarchy.finest_level_number
  variable = hierarchy.variables[name]
  width = variable.ghosts
  bc_types = boundary_types(hierarchy, name)
  canvases = level_canvases(hierarchy, name, finest_ln)
  for ln in range(coarsest_ln, finest_ln + 1):
    level = hierarchy.get_level(ln)
    padded = None
    for patch in level.local_patches():
      arrays = patch[name]
      if padded is None:
        padded = [pad_physical(c, width, a.offset, bc_types)
                  for c, a in zip(canvases[ln], arrays)]
      filled = []
      for a, canvas in zip(arrays, padded):
        slices = tuple(slice(l, l + n) for l, n in zip(patch.box.lower, a.shape))
        data = jnp.asarray(canvas[slices]).at[a.interior_slices].set(a.interior)
        filled.append(grids.GridArray(data, a.offset, a.grid, a.ghosts))
      patch[name] = filled
