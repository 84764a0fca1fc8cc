"""Tests for the matrix-free Jacobian operators."""
import logging

import numpy as np
import pytest

from jax_ibamr.base.errors import PreconditionError
from jax_ibamr.solvers.jacobian import (FiniteDifferenceJacobian,
                                        FiniteDifferenceParameters,
                                        IBImplicitJacobian)
from jax_ibamr.solvers.operators import NonlinearFunction
from jax_ibamr.solvers.stokes import StaggeredStokesOperator, StokesCoefficients

COEFFICIENTS = StokesCoefficients(rho=1.0, mu=0.1, dt=0.5)


class Square(NonlinearFunction):
  """`y = x * x` entry by entry, so that `F'(x) v = 2 x v`."""

  def __init__(self):
    self.evaluations = 0

  def evaluate(self, x, y):
    self.evaluations += 1
    for patch in x.patches():
      for c in range(x.num_components):
        y.set_component(patch, c, tuple(
            b.with_interior(a.interior * a.interior)
            for a, b in zip(x.component(patch, c), y.component(patch, c))))


@pytest.fixture
def hierarchy(make_hierarchy):
  return make_hierarchy(x_up=(1.0, 1.0), periodic=(True, False))


@pytest.fixture
def vectors(hierarchy, make_stokes_vector):
  return tuple(make_stokes_vector(hierarchy, name)
               for name in ('x', 'v', 'y'))


def test_step_size():
  parameters = FiniteDifferenceParameters(scale=1e-4, floor=1.0)
  assert parameters.step_size(0.5, 2.0) == pytest.approx(0.5e-4)
  assert parameters.step_size(10.0, 2.0) == pytest.approx(5e-4)
  default = FiniteDifferenceParameters()
  assert default.scale == pytest.approx(np.sqrt(np.finfo(np.float64).eps))


def test_finite_difference_directional_derivative(vectors, random_fill):
  x, v, y = vectors
  random_fill(x, seed=0)
  random_fill(v, seed=1)
  function = Square()
  jacobian = FiniteDifferenceJacobian(function)
  jacobian.initialize_operator_state(x, y)
  jacobian.form_jacobian(x)
  assert function.evaluations == 1
  jacobian.apply(v, y)
  # One evaluation per application: F(x̄) is cached.
  assert function.evaluations == 2
  np.testing.assert_allclose(y.to_flat(), 2.0 * x.to_flat() * v.to_flat(),
                             atol=1e-5)


def test_finite_difference_is_nearly_linear(vectors, make_stokes_vector,
                                            random_fill):
  x, v, y = vectors
  w = make_stokes_vector(x.hierarchy, 'w')
  Jv = make_stokes_vector(x.hierarchy, 'Jv')
  random_fill(x, seed=2)
  random_fill(v, seed=3)
  w.scale(3.0, v)
  jacobian = FiniteDifferenceJacobian(Square())
  jacobian.initialize_operator_state(x, y)
  jacobian.form_jacobian(x)
  jacobian.apply(v, Jv)
  jacobian.apply(w, y)
  np.testing.assert_allclose(y.to_flat(), 3.0 * Jv.to_flat(), atol=1e-5)


def test_zero_direction_gives_exact_zero(vectors, random_fill):
  x, v, y = vectors
  random_fill(x, seed=4)
  function = Square()
  jacobian = FiniteDifferenceJacobian(function)
  jacobian.initialize_operator_state(x, y)
  jacobian.form_jacobian(x)
  y.set_to_scalar(1.0)
  jacobian.apply(v, y)
  assert y.max_norm() == 0.0
  assert function.evaluations == 1


def test_base_vector(vectors, random_fill):
  x, _, y = vectors
  random_fill(x, seed=5)
  jacobian = FiniteDifferenceJacobian(Square())
  assert jacobian.get_base_vector() is None
  jacobian.initialize_operator_state(x, y)
  assert jacobian.get_base_vector() is None
  jacobian.form_jacobian(x)
  base = jacobian.get_base_vector()
  assert base is not x
  np.testing.assert_array_equal(base.to_flat(), x.to_flat())
  # The base point is a copy.
  x.set_to_scalar(0.0)
  assert base.l2_norm() > 0.0


def test_finite_difference_preconditions(vectors):
  x, v, y = vectors
  jacobian = FiniteDifferenceJacobian(Square())
  with pytest.raises(PreconditionError, match='not initialized'):
    jacobian.form_jacobian(x)
  with pytest.raises(PreconditionError, match='not initialized'):
    jacobian.apply(v, y)
  jacobian.initialize_operator_state(x, y)
  with pytest.raises(PreconditionError, match='form_jacobian'):
    jacobian.apply(v, y)
  jacobian.form_jacobian(x)
  with pytest.raises(PreconditionError, match='distinct'):
    jacobian.apply(v, v)


def _ib_jacobian():
  return IBImplicitJacobian(StaggeredStokesOperator(COEFFICIENTS),
                            FiniteDifferenceJacobian(Square()))


def test_ib_jacobian_adds_both_parts(vectors, make_stokes_vector, random_fill):
  x, v, y = vectors
  hierarchy = x.hierarchy
  Av = make_stokes_vector(hierarchy, 'Av')
  expected = make_stokes_vector(hierarchy, 'expected')
  x.set_to_scalar(3.0)
  random_fill(v, seed=6)
  stokes = StaggeredStokesOperator(COEFFICIENTS, name='reference')
  stokes.initialize_operator_state(v, Av)
  stokes.apply(v, Av)
  # F'(3) v = 6 v.
  expected.axpy(6.0, v, Av)

  jacobian = _ib_jacobian()
  jacobian.initialize_operator_state(x, y)
  jacobian.form_jacobian(x)
  jacobian.apply(v, y)
  np.testing.assert_allclose(y.to_flat(), expected.to_flat(), atol=1e-5)
  assert jacobian.get_base_vector() is not None


def test_ib_jacobian_is_linear(vectors, make_stokes_vector, random_fill):
  x, v1, y1 = vectors
  hierarchy = x.hierarchy
  v2, y2, w, yw, expected = (
      make_stokes_vector(hierarchy, name)
      for name in ('v2', 'y2', 'w', 'yw', 'expected'))
  random_fill(x, seed=11)
  random_fill(v1, seed=12)
  random_fill(v2, seed=13)
  alpha = -2.5
  w.axpy(alpha, v1, v2)

  jacobian = _ib_jacobian()
  jacobian.initialize_operator_state(x, y1)
  jacobian.form_jacobian(x)
  jacobian.apply(v1, y1)
  jacobian.apply(v2, y2)
  jacobian.apply(w, yw)
  expected.axpy(alpha, y1, y2)
  np.testing.assert_allclose(yw.to_flat(), expected.to_flat(), atol=1e-5)


def test_ib_jacobian_zero_direction(vectors, random_fill):
  x, v, y = vectors
  random_fill(x, seed=7)
  jacobian = _ib_jacobian()
  jacobian.initialize_operator_state(x, y)
  jacobian.form_jacobian(x)
  y.set_to_scalar(2.0)
  jacobian.apply(v, y)
  assert y.max_norm() == 0.0


def test_ib_jacobian_preconditions(vectors):
  x, v, y = vectors
  jacobian = _ib_jacobian()
  with pytest.raises(PreconditionError) as excinfo:
    jacobian.apply(v, y)
  assert excinfo.value.component == 'IBImplicitJacobian::apply()'
  assert 'not initialized' in str(excinfo.value)
  with pytest.raises(PreconditionError):
    jacobian.form_jacobian(x)
  assert jacobian.get_base_vector() is None
  jacobian.initialize_operator_state(x, y)
  with pytest.raises(PreconditionError, match='form_jacobian'):
    jacobian.apply(v, y)


def test_ib_jacobian_lifecycle(vectors, hierarchy):
  x, v, y = vectors
  registered = set(hierarchy.variables)
  jacobian = _ib_jacobian()
  jacobian.deallocate_operator_state()
  jacobian.initialize_operator_state(x, y)
  jacobian.initialize_operator_state(x, y)
  assert jacobian.is_initialized
  assert jacobian.stokes_op.is_initialized
  assert jacobian.ib_jacobian.is_initialized
  jacobian.form_jacobian(x)
  jacobian.apply(v, y)
  jacobian.deallocate_operator_state()
  jacobian.deallocate_operator_state()
  assert not jacobian.is_initialized
  assert not jacobian.stokes_op.is_initialized
  assert not jacobian.ib_jacobian.is_initialized
  assert jacobian.get_base_vector() is None
  # Every scratch vector was released.
  assert set(hierarchy.variables) == registered


def test_logging_does_not_change_results(vectors, make_stokes_vector,
                                         random_fill, caplog):
  x, v, y = vectors
  quiet = make_stokes_vector(x.hierarchy, 'quiet')
  random_fill(x, seed=8)
  random_fill(v, seed=9)
  jacobian = _ib_jacobian()
  jacobian.initialize_operator_state(x, y)
  jacobian.form_jacobian(x)
  jacobian.apply(v, quiet)

  caplog.set_level(logging.INFO, logger='jax_ibamr')
  jacobian.enable_logging()
  assert jacobian.stokes_op.logging_enabled
  assert jacobian.ib_jacobian.logging_enabled
  jacobian.apply(v, y)
  np.testing.assert_array_equal(y.to_flat(), quiet.to_flat())
  messages = [r.getMessage() for r in caplog.records]
  assert any(m.startswith('IBImplicitJacobian::apply()') for m in messages)
  assert any(m.startswith('FiniteDifferenceJacobian::apply()')
             for m in messages)
