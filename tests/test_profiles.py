"""Tests for line profile extraction over the hierarchy."""
import jax.numpy as jnp
import numpy as np
import pytest

from jax_ibamr.base.boxes import Box, BoxList
from jax_ibamr.base.hierarchy import Centering, Variable
from jax_ibamr.postprocess.profiles import (LineQuery, ProfileSamples,
                                            extract_line_profile, line_cells)


def _fill(hierarchy, name, fn):
  """Sets every local patch of `name` from `fn(level, axis, *coordinates)`."""
  for level in hierarchy.levels():
    for patch in level.local_patches():
      patch[name] = tuple(
          a.with_interior(fn(level.level_number, axis,
                             *patch.grid.mesh(a.offset)))
          for axis, a in enumerate(patch[name]))


def _velocity_hierarchy(make_hierarchy, **kwargs):
  hierarchy = make_hierarchy(**kwargs)
  hierarchy.register_variable(Variable('u', Centering.SIDE))
  return hierarchy


def test_line_query_validation():
  with pytest.raises(ValueError):
    LineQuery((0.0, 0.0), (1.0, 1.0))
  with pytest.raises(ValueError):
    LineQuery((0.5, 0.5), (0.5, 0.5))
  with pytest.raises(ValueError):
    LineQuery((0.5, 0.0), (0.5, 1.0, 0.0))
  query = LineQuery((2.0, 4.0), (2.0, 0.0))
  assert query.axis == 1
  assert query.lower == (2.0, 0.0)
  assert query.upper == (2.0, 4.0)


def test_line_cells(make_hierarchy):
  level = make_hierarchy().get_level(0)
  cells, covered = line_cells(level, LineQuery((2.0, -1.0), (2.0, 9.0)))
  assert cells == BoxList([Box((2, 0), (2, 3))])
  assert covered == BoxList([Box((0, 0), (0, 3))])
  cells, covered = line_cells(level, LineQuery((5.0, 0.0), (5.0, 1.0)))
  assert cells.empty
  assert covered.empty


def test_profile_samples_container():
  samples = ProfileSamples([0.5, 1.5], [3.0, 4.0])
  assert len(samples) == 2
  np.testing.assert_array_equal(samples.interleaved(),
                                [[0.5, 3.0], [1.5, 4.0]])
  assert len(ProfileSamples.empty()) == 0
  joined = ProfileSamples.concatenate([samples, ProfileSamples.empty(), samples])
  np.testing.assert_array_equal(joined.ordinates, [0.5, 1.5, 0.5, 1.5])
  with pytest.raises(ValueError):
    ProfileSamples([0.5], [1.0, 2.0])


def test_constant_field_on_one_patch(make_hierarchy):
  hierarchy = _velocity_hierarchy(make_hierarchy)
  _fill(hierarchy, 'u', lambda ln, axis, X, Y: jnp.full(X.shape, 3.0))
  samples = extract_line_profile(hierarchy, 'u',
                                 LineQuery((2.0, 0.0), (2.0, 4.0)))
  np.testing.assert_array_equal(samples.ordinates, [0.5, 1.5, 2.5, 3.5])
  np.testing.assert_array_equal(samples.values, [3.0, 3.0, 3.0, 3.0])


def test_line_between_patches_is_sampled_once(make_hierarchy):
  hierarchy = _velocity_hierarchy(
      make_hierarchy, patches=[Box((0, 0), (1, 3)), Box((2, 0), (3, 3))])
  _fill(hierarchy, 'u', lambda ln, axis, X, Y: jnp.full(X.shape, 3.0))
  samples = extract_line_profile(hierarchy, 'u',
                                 LineQuery((2.0, 0.0), (2.0, 4.0)))
  np.testing.assert_array_equal(samples.ordinates, [0.5, 1.5, 2.5, 3.5])


def test_interpolation_across_the_cell(make_hierarchy):
  hierarchy = _velocity_hierarchy(make_hierarchy)
  _fill(hierarchy, 'u', lambda ln, axis, X, Y: X if axis == 0 else Y)
  query = LineQuery((2.25, 0.0), (2.25, 4.0))
  samples = extract_line_profile(hierarchy, 'u', query, component=0)
  np.testing.assert_allclose(samples.values, 2.25)
  # Along the line the component is evaluated at the cell centers.
  samples = extract_line_profile(hierarchy, 'u', query, component=1)
  np.testing.assert_allclose(samples.values, samples.ordinates)


def test_horizontal_line(make_hierarchy):
  hierarchy = _velocity_hierarchy(make_hierarchy)
  _fill(hierarchy, 'u', lambda ln, axis, X, Y: Y if axis == 0 else X)
  samples = extract_line_profile(hierarchy, 'u',
                                 LineQuery((0.0, 1.5), (4.0, 1.5)), 0)
  np.testing.assert_array_equal(samples.ordinates, [0.5, 1.5, 2.5, 3.5])
  np.testing.assert_allclose(samples.values, 1.5)


def test_cell_centered_data(make_hierarchy):
  hierarchy = make_hierarchy()
  hierarchy.register_variable(Variable('p', Centering.CELL))
  _fill(hierarchy, 'p', lambda ln, axis, X, Y: 10.0 * X + Y)
  samples = extract_line_profile(hierarchy, 'p',
                                 LineQuery((1.2, 0.0), (1.2, 4.0)))
  np.testing.assert_allclose(samples.values, 15.0 + samples.ordinates)


def test_finest_level_wins(make_hierarchy):
  hierarchy = _velocity_hierarchy(
      make_hierarchy, n_cells=(8, 8), x_up=(1.0, 1.0),
      fine=[([Box((4, 4), (11, 11))], 2)])
  _fill(hierarchy, 'u',
        lambda ln, axis, X, Y: jnp.full(X.shape, 7.0 if ln == 1 else 1.0))
  samples = extract_line_profile(hierarchy, 'u',
                                 LineQuery((0.45, 0.0), (0.45, 1.0)))
  fine = 0.25 + 0.0625 * (np.arange(8) + 0.5)
  coarse = np.array([0.0625, 0.1875, 0.8125, 0.9375])
  assert len(samples) == 12
  # Finest level first.
  np.testing.assert_allclose(samples.ordinates[:8], fine)
  np.testing.assert_array_equal(samples.values[:8], 7.0)
  np.testing.assert_allclose(samples.ordinates[8:], coarse)
  np.testing.assert_array_equal(samples.values[8:], 1.0)
  # The sampled cells tile the line exactly once.
  widths = np.where(samples.values == 7.0, 0.0625, 0.125)
  assert widths.sum() == pytest.approx(1.0)


def test_line_outside_the_domain(make_hierarchy):
  hierarchy = _velocity_hierarchy(make_hierarchy)
  samples = extract_line_profile(hierarchy, 'u',
                                 LineQuery((5.0, 0.0), (5.0, 4.0)))
  assert len(samples) == 0


def test_invalid_component(make_hierarchy):
  hierarchy = _velocity_hierarchy(make_hierarchy)
  with pytest.raises(ValueError):
    extract_line_profile(hierarchy, 'u', LineQuery((2.0, 0.0), (2.0, 4.0)), 2)


def test_ranks_sample_their_own_patches(make_hierarchy, emulated_context):
  patches = [Box((0, 0), (3, 1)), Box((0, 2), (3, 3))]
  query = LineQuery((2.0, 0.0), (2.0, 4.0))
  parts = []
  for rank in range(2):
    hierarchy = _velocity_hierarchy(
        make_hierarchy, patches=patches,
        context=emulated_context(rank=rank, size=2))
    _fill(hierarchy, 'u', lambda ln, axis, X, Y: Y)
    parts.append(extract_line_profile(hierarchy, 'u', query, component=0))
  np.testing.assert_array_equal(parts[0].ordinates, [0.5, 1.5])
  np.testing.assert_array_equal(parts[1].ordinates, [2.5, 3.5])
  np.testing.assert_allclose(parts[1].values, [2.5, 3.5])


@pytest.mark.parametrize('x', [0.25, 0.75])
def test_line_on_finer_level_boundary(make_hierarchy, x):
  hierarchy = _velocity_hierarchy(
      make_hierarchy, n_cells=(8, 8), x_up=(1.0, 1.0),
      fine=[([Box((4, 4), (11, 11))], 2)])
  _fill(hierarchy, 'u',
        lambda ln, axis, X, Y: jnp.full(X.shape, 7.0 if ln == 1 else 1.0))
  samples = extract_line_profile(hierarchy, 'u', LineQuery((x, 0.0), (x, 1.0)))
  assert len(samples) == 12
  inside = (samples.ordinates > 0.25) & (samples.ordinates < 0.75)
  assert inside.sum() == 8
  np.testing.assert_array_equal(samples.values[inside], 7.0)
  np.testing.assert_array_equal(samples.values[~inside], 1.0)


def test_line_on_domain_boundary(make_hierarchy):
  hierarchy = _velocity_hierarchy(make_hierarchy)
  _fill(hierarchy, 'u', lambda ln, axis, X, Y: X if axis == 0 else Y)
  samples = extract_line_profile(hierarchy, 'u',
                                 LineQuery((4.0, 0.0), (4.0, 4.0)))
  np.testing.assert_array_equal(samples.ordinates, [0.5, 1.5, 2.5, 3.5])
  np.testing.assert_allclose(samples.values, 4.0)


def test_line_on_partial_neighbour(make_hierarchy):
  hierarchy = _velocity_hierarchy(
      make_hierarchy, patches=[Box((0, 0), (1, 3)), Box((2, 0), (3, 1))],
      periodic=(False, False))
  _fill(hierarchy, 'u', lambda ln, axis, X, Y: X if axis == 0 else Y)
  samples = extract_line_profile(hierarchy, 'u',
                                 LineQuery((2.0, 0.0), (2.0, 4.0)))
  np.testing.assert_array_equal(samples.ordinates, [0.5, 1.5, 2.5, 3.5])
  np.testing.assert_allclose(samples.values, 2.0)
