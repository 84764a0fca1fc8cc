"""Tests for ghost filling across patches, levels and domain boundaries."""
import jax.numpy as jnp
import numpy as np
import pytest

from jax_ibamr.base import boundaries
from jax_ibamr.base.boundaries import BCType
from jax_ibamr.base.boxes import Box
from jax_ibamr.base.hierarchy import Centering, Variable


def _set(patch, name, values):
  patch[name] = tuple(a.with_interior(v) for a, v in zip(patch[name], values))


def _cell_hierarchy(make_hierarchy, periodic, wall_bc, patches=None):
  hierarchy = make_hierarchy(periodic=periodic, patches=patches)
  hierarchy.register_variable(Variable('p', Centering.CELL, 1, wall_bc))
  return hierarchy


def test_prolong_cells_are_injected():
  fine = boundaries.prolong(np.array([1.0, 2.0]), (2,), (0.5,))
  np.testing.assert_array_equal(fine, [1.0, 1.0, 2.0, 2.0])


def test_prolong_faces_are_interpolated():
  fine = boundaries.prolong(np.array([0.0, 1.0, 2.0]), (2,), (0.0,))
  np.testing.assert_allclose(fine, [0.0, 0.5, 1.0, 1.5, 2.0])


def test_prolong_two_dimensional_face_data():
  coarse = np.arange(6.0).reshape(3, 2)
  fine = boundaries.prolong(coarse, (2, 2), (0.0, 0.5))
  assert fine.shape == (5, 4)
  np.testing.assert_allclose(fine[:, 0], [0.0, 1.0, 2.0, 3.0, 4.0])
  np.testing.assert_allclose(fine[1, :], [1.0, 1.0, 2.0, 2.0])


def test_unknown_boundary_type():
  with pytest.raises(ValueError):
    boundaries.pad_physical(np.zeros((2, 2)), 1, (0.5, 0.5),
                            ('robin', 'robin'))


def test_periodic_cell_ghosts(make_hierarchy):
  hierarchy = _cell_hierarchy(make_hierarchy, (True, True), BCType.DIRICHLET)
  patch, = hierarchy.get_level(0).patches
  values = np.arange(16.0).reshape(4, 4)
  _set(patch, 'p', [values])
  boundaries.fill_ghosts(hierarchy, 'p')
  data = np.asarray(patch['p'][0].data)
  np.testing.assert_array_equal(data[1:5, 1:5], values)
  np.testing.assert_array_equal(data[0, 1:5], values[3])
  np.testing.assert_array_equal(data[5, 1:5], values[0])
  np.testing.assert_array_equal(data[1:5, 0], values[:, 3])
  assert data[0, 0] == values[3, 3]


@pytest.mark.parametrize('wall_bc, sign', [(BCType.DIRICHLET, -1.0),
                                           (BCType.NEUMANN, 1.0)])
def test_wall_cell_ghosts(make_hierarchy, wall_bc, sign):
  hierarchy = _cell_hierarchy(make_hierarchy, (False, True), wall_bc)
  patch, = hierarchy.get_level(0).patches
  values = np.arange(1.0, 17.0).reshape(4, 4)
  _set(patch, 'p', [values])
  boundaries.fill_ghosts(hierarchy, 'p')
  data = np.asarray(patch['p'][0].data)
  np.testing.assert_array_equal(data[0, 1:5], sign * values[0])
  np.testing.assert_array_equal(data[5, 1:5], sign * values[3])
  # The periodic axis still wraps.
  np.testing.assert_array_equal(data[1:5, 0], values[:, 3])


def test_side_ghosts_along_normal_axis(make_hierarchy):
  hierarchy = make_hierarchy(periodic=(False, True))
  hierarchy.register_variable(
      Variable('u', Centering.SIDE, 1, BCType.DIRICHLET))
  patch, = hierarchy.get_level(0).patches
  u0 = np.arange(20.0).reshape(5, 4)
  u1 = np.arange(20.0).reshape(4, 5)
  _set(patch, 'u', [u0, u1])
  boundaries.fill_ghosts(hierarchy, 'u')
  d0 = np.asarray(patch['u'][0].data)
  d1 = np.asarray(patch['u'][1].data)
  # Wall normal to x: odd reflection about the boundary face.
  np.testing.assert_array_equal(d0[0, 1:5], -u0[1])
  np.testing.assert_array_equal(d0[6, 1:5], -u0[3])
  # Periodic axis normal to y: the upper boundary face is the lower one.
  np.testing.assert_array_equal(d1[1:5, 0], u1[:, 3])
  np.testing.assert_array_equal(d1[1:5, 6], u1[:, 1])
  # Interiors are never modified.
  np.testing.assert_array_equal(d0[1:6, 1:5], u0)
  np.testing.assert_array_equal(d1[1:5, 1:6], u1)


def test_ghosts_from_neighbouring_patch(make_hierarchy):
  hierarchy = _cell_hierarchy(
      make_hierarchy, (True, True), BCType.DIRICHLET,
      patches=[Box((0, 0), (1, 3)), Box((2, 0), (3, 3))])
  left, right = hierarchy.get_level(0).patches
  values = np.arange(16.0).reshape(4, 4)
  _set(left, 'p', [values[:2]])
  _set(right, 'p', [values[2:]])
  boundaries.fill_ghosts(hierarchy, 'p')
  left_data = np.asarray(left['p'][0].data)
  right_data = np.asarray(right['p'][0].data)
  np.testing.assert_array_equal(left_data[3, 1:5], values[2])
  np.testing.assert_array_equal(left_data[0, 1:5], values[3])
  np.testing.assert_array_equal(right_data[0, 1:5], values[1])
  np.testing.assert_array_equal(right_data[3, 1:5], values[0])


def test_coarse_fine_ghosts_preserve_constants(make_hierarchy):
  hierarchy = make_hierarchy(fine=[([Box((2, 2), (5, 5))], 2)])
  hierarchy.register_variable(Variable('u', Centering.SIDE, 1))
  for level in hierarchy.levels():
    for patch in level.patches:
      patch['u'] = tuple(a.with_interior(jnp.full(a.interior.shape, 2.5))
                         for a in patch['u'])
  boundaries.fill_ghosts(hierarchy, 'u')
  fine, = hierarchy.get_level(1).patches
  for a in fine['u']:
    np.testing.assert_allclose(np.asarray(a.data), 2.5)


def test_coarse_fine_ghosts_come_from_coarse_level(make_hierarchy):
  hierarchy = make_hierarchy(fine=[([Box((2, 2), (5, 5))], 2)])
  hierarchy.register_variable(Variable('p', Centering.CELL, 1))
  coarse, = hierarchy.get_level(0).patches
  fine, = hierarchy.get_level(1).patches
  values = np.arange(16.0).reshape(4, 4)
  _set(coarse, 'p', [values])
  _set(fine, 'p', [np.zeros((4, 4))])
  boundaries.fill_ghosts(hierarchy, 'p', coarsest_ln=1)
  data = np.asarray(fine['p'][0].data)
  # Fine ghost cell 1 along x lies in coarse cell 0.
  np.testing.assert_array_equal(data[0, 1:5], values[0, [1, 1, 2, 2]])
  np.testing.assert_array_equal(data[5, 1:5], values[3, [1, 1, 2, 2]])
  # Level 0 was not part of the fill.
  assert float(np.asarray(coarse['p'][0].data)[0, 1]) == 0.0
