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
Distributed vectors whose entries are the patch data of a hierarchy.

A `HierarchyVector` is a list of components (e.g. a side-centered velocity and
a cell-centered pressure) over a range of levels. Its storage is ordinary
patch data registered with the hierarchy under the name `<vector>::<component>`,
so operators can read and write the vector through the patches, the same way
they access any other field.

Locally the vector is handled as a PyTree keyed by `(level, patch, component)`
and all the arithmetic is done with `tree_math.Vector`. Reductions (`dot`,
norms) only count interior data and are summed over ranks, so they are
collective and return the same value everywhere.
"""
import math
from typing import Dict, Iterator, Optional, Sequence, Tuple

import jax.numpy as jnp
import numpy as np
import tree_math

from jax_ibamr.base import boundaries
from jax_ibamr.base import grids
from jax_ibamr.base import hierarchy as hier

# PyTree key of one entry of a vector.
EntryKey = Tuple[int, int, int]


class HierarchyVector:
  """
  A vector over levels `coarsest_ln..finest_ln` of a hierarchy.

  Attributes:
    name: name of the vector, used as a prefix for its patch data.
    hierarchy: the `PatchHierarchy` it lives on.
    variables: the component variables, with their unprefixed names.
    coarsest_ln: coarsest level number.
    finest_ln: finest level number.
  """

  def __init__(self,
               name: str,
               hierarchy: hier.PatchHierarchy,
               variables: Sequence[hier.Variable],
               coarsest_ln: int = 0,
               finest_ln: Optional[int] = None):
    if finest_ln is None:
      finest_ln = hierarchy.finest_level_number
    if not 0 <= coarsest_ln <= finest_ln <= hierarchy.finest_level_number:
      raise ValueError(
          f'invalid level range [{coarsest_ln}, {finest_ln}] for a hierarchy '
          f'with {hierarchy.number_of_levels} levels')
    self.name = name
    self.hierarchy = hierarchy
    self.variables = tuple(variables)
    self.coarsest_ln = coarsest_ln
    self.finest_ln = finest_ln
    self._keys = tuple(f'{name}::{v.name}' for v in self.variables)
    for variable, key in zip(self.variables, self._keys):
      hierarchy.register_variable(variable.renamed(key))

  def __repr__(self) -> str:
    names = ', '.join(v.name for v in self.variables)
    return (f'HierarchyVector({self.name!r}, [{names}], '
            f'levels {self.coarsest_ln}..{self.finest_ln})')

  @property
  def num_components(self) -> int:
    return len(self.variables)

  def data_name(self, component) -> str:
    """Patch data name of a component given by index or variable name."""
    if isinstance(component, str):
      names = [v.name for v in self.variables]
      component = names.index(component)
    return self._keys[component]

  def patches(self) -> Iterator[hier.Patch]:
    """Yields the local patches of every level of the vector."""
    for ln in range(self.coarsest_ln, self.finest_ln + 1):
      yield from self.hierarchy.get_level(ln).local_patches()

  def component(self, patch: hier.Patch, c) -> Tuple[grids.GridArray, ...]:
    return patch[self.data_name(c)]

  def set_component(self, patch: hier.Patch, c,
                    arrays: Sequence[grids.GridArray]):
    patch[self.data_name(c)] = arrays

  def fill_ghosts(self, c):
    """Collective. Fills the ghost layers of component `c`."""
    boundaries.fill_ghosts(self.hierarchy, self.data_name(c),
                           self.coarsest_ln, self.finest_ln)

  # --- PyTree views --------------------------------------------------------

  def _tree(self) -> Dict[EntryKey, Tuple[grids.GridArray, ...]]:
    return {(patch.level_number, patch.index, c): patch[key]
            for patch in self.patches()
            for c, key in enumerate(self._keys)}

  def _interior_tree(self) -> Dict[EntryKey, Tuple[grids.Array, ...]]:
    return {k: tuple(a.interior for a in arrays)
            for k, arrays in self._tree().items()}

  def _assign(self, tree: Dict[EntryKey, Tuple[grids.GridArray, ...]]):
    for patch in self.patches():
      for c, key in enumerate(self._keys):
        patch[key] = tree[(patch.level_number, patch.index, c)]

  # --- Structure -----------------------------------------------------------

  def same_structure(self, other: 'HierarchyVector') -> bool:
    """True if `other` matches the hierarchy, levels and component layout."""
    return (isinstance(other, HierarchyVector)
            and other.hierarchy is self.hierarchy
            and other.coarsest_ln == self.coarsest_ln
            and other.finest_ln == self.finest_ln
            and len(other.variables) == len(self.variables)
            and all((a.name, a.centering, a.ghosts) ==
                    (b.name, b.centering, b.ghosts)
                    for a, b in zip(other.variables, self.variables)))

  def shares_storage(self, other: 'HierarchyVector') -> bool:
    return other.hierarchy is self.hierarchy and other.name == self.name

  def clone(self, name: str) -> 'HierarchyVector':
    """A new zero vector with the same structure."""
    return HierarchyVector(name, self.hierarchy, self.variables,
                           self.coarsest_ln, self.finest_ln)

  def free(self):
    """Releases the patch data of the vector."""
    for key in self._keys:
      self.hierarchy.remove_variable(key)

  # --- Arithmetic ----------------------------------------------------------

  def copy_from(self, other: 'HierarchyVector'):
    self._assign(other._tree())

  def set_to_scalar(self, alpha: float):
    self._assign(_filled(self._tree(), alpha))

  def set_component_to_scalar(self, c, alpha):
    """Sets component `c` to `alpha`, or to `alpha[d]` on the faces normal to d."""
    for patch in self.patches():
      arrays = self.component(patch, c)
      if np.ndim(alpha) == 0:
        values = (alpha,) * len(arrays)
      else:
        values = tuple(alpha)
      self.set_component(patch, c, tuple(
          grids.GridArray(jnp.full_like(a.data, v), a.offset, a.grid, a.ghosts)
          for a, v in zip(arrays, values)))

  def linear_sum(self, a: float, x: 'HierarchyVector', b: float,
                 y: 'HierarchyVector'):
    """self = a * x + b * y."""
    result = a * tree_math.Vector(x._tree()) + b * tree_math.Vector(y._tree())
    self._assign(result.tree)

  def axpy(self, a: float, x: 'HierarchyVector', y: 'HierarchyVector'):
    """self = a * x + y."""
    self.linear_sum(a, x, 1.0, y)

  def add(self, x: 'HierarchyVector', y: 'HierarchyVector'):
    self.linear_sum(1.0, x, 1.0, y)

  def subtract(self, x: 'HierarchyVector', y: 'HierarchyVector'):
    self.linear_sum(1.0, x, -1.0, y)

  def scale(self, alpha: float, x: 'HierarchyVector'):
    self._assign((alpha * tree_math.Vector(x._tree())).tree)

  # --- Reductions (collective) ---------------------------------------------

  def dot(self, other: 'HierarchyVector') -> float:
    """Collective. Sum over ranks of the products of interior entries."""
    mine = self._interior_tree()
    local = 0.0
    if mine:
      local = float(tree_math.Vector(mine) @ tree_math.Vector(
          other._interior_tree()))
    return float(self.hierarchy.context.global_reduce(local, 'sum'))

  def l2_norm(self) -> float:
    """Collective. Euclidean norm of the interior entries."""
    return math.sqrt(max(self.dot(self), 0.0))

  def max_norm(self) -> float:
    """Collective. Largest absolute interior entry."""
    local = 0.0
    for arrays in self._interior_tree().values():
      for a in arrays:
        if a.size:
          local = max(local, float(jnp.max(jnp.abs(a))))
    return float(self.hierarchy.context.global_reduce(local, 'max'))

  # --- Flat views for serial Krylov solvers --------------------------------

  def to_flat(self) -> np.ndarray:
    """Local interior entries as one float64 array, in PyTree key order."""
    interiors = self._interior_tree()
    parts = [np.asarray(a, dtype=np.float64).ravel()
             for k in sorted(interiors) for a in interiors[k]]
    if not parts:
      return np.zeros(0)
    return np.concatenate(parts)

  def from_flat(self, flat: np.ndarray):
    """Inverse of `to_flat`. Ghost layers are reset to zero."""
    flat = np.asarray(flat, dtype=np.float64)
    tree = self._tree()
    start = 0
    result = {}
    for k in sorted(tree):
      arrays = []
      for a in tree[k]:
        shape = a.interior.shape
        n = int(np.prod(shape))
        arrays.append(a.with_interior(
            jnp.asarray(flat[start:start + n].reshape(shape))))
        start += n
      result[k] = tuple(arrays)
    if start != flat.size:
      raise ValueError(f'expected {start} entries, got {flat.size}')
    self._assign(result)


def _filled(tree, value: float):
  """A copy of `tree` with every GridArray data entry set to `value`."""
  return {k: tuple(grids.GridArray(jnp.full_like(a.data, value), a.offset,
                                   a.grid, a.ghosts) for a in arrays)
          for k, arrays in tree.items()}
