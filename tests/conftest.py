"""Shared fixtures for the jax_ibamr test suite."""
import numpy as np
import pytest

import jax_ibamr  # noqa: F401  (enables float64)
from jax_ibamr.base import grids
from jax_ibamr.base.boundaries import BCType
from jax_ibamr.base.boxes import Box
from jax_ibamr.base.communication import ExecutionContext
from jax_ibamr.base.hierarchy import (CartesianGridGeometry, Centering,
                                      PatchHierarchy, Variable)
from jax_ibamr.base.vectors import HierarchyVector


class EmulatedContext(ExecutionContext):
  """A serial context that pretends to be rank `rank` of `size`.

  `allgather` returns `gathered` when given, so that the collective
  bookkeeping of one rank can be reproduced without MPI.
  """

  def __init__(self, rank, size, gathered=None):
    super().__init__(None)
    self._rank = rank
    self._size = size
    self._gathered = gathered

  @property
  def rank(self):
    return self._rank

  @property
  def size(self):
    return self._size

  def allgather(self, value):
    if self._gathered is None:
      return [value]
    return list(self._gathered)


@pytest.fixture
def emulated_context():
  return EmulatedContext


@pytest.fixture
def make_hierarchy():
  """Factory for small hierarchies.

  Args of the factory:
    n_cells: level-0 cells per axis.
    x_up: upper domain corner (the lower corner is the origin).
    periodic: per-axis periodicity.
    patches: level-0 boxes, default one patch over the domain.
    fine: list of `(boxes, ratio)` for the finer levels.
    context: execution context.
  """

  def factory(n_cells=(4, 4), x_up=(4.0, 4.0), periodic=(True, True),
              patches=None, fine=(), context=None):
    geometry = CartesianGridGeometry((0.0,) * len(n_cells), x_up, n_cells,
                                     periodic)
    hierarchy = PatchHierarchy(geometry, context)
    hierarchy.make_level(patches)
    for boxes, ratio in fine:
      hierarchy.make_level(boxes, ratio)
    return hierarchy

  return factory


@pytest.fixture
def stokes_variables():
  return [
      Variable('u', Centering.SIDE, ghosts=1, wall_bc=BCType.DIRICHLET),
      Variable('p', Centering.CELL, ghosts=1, wall_bc=BCType.NEUMANN),
  ]


@pytest.fixture
def make_stokes_vector(stokes_variables):
  def factory(hierarchy, name='x'):
    return HierarchyVector(name, hierarchy, stokes_variables)
  return factory


@pytest.fixture
def set_from_function():
  """Sets component `c` of a vector from `fn(axis, *coordinates)`."""

  def setter(vec, c, fn):
    for patch in vec.patches():
      arrays = vec.component(patch, c)
      vec.set_component(patch, c, tuple(
          a.with_interior(fn(axis, *patch.grid.mesh(a.offset)))
          for axis, a in enumerate(arrays)))

  return setter


@pytest.fixture
def random_fill():
  """Fills every component of a vector with reproducible random values."""

  def filler(vec, seed):
    rng = np.random.default_rng(seed)
    for patch in vec.patches():
      for c in range(vec.num_components):
        arrays = vec.component(patch, c)
        vec.set_component(patch, c, tuple(
            a.with_interior(rng.standard_normal(a.interior.shape))
            for a in arrays))

  return filler


def box(lower, upper):
  return Box(tuple(lower), tuple(upper))


@pytest.fixture
def grid_4x4():
  return grids.Grid((4, 4), domain=((0.0, 4.0), (0.0, 4.0)))
