"""Tests for the Newton-Krylov driver and the Stokes-IB residual."""
import numpy as np
import pytest

from jax_ibamr.app import NoCoupling
from jax_ibamr.base.errors import PreconditionError
from jax_ibamr.solvers.jacobian import FiniteDifferenceJacobian
from jax_ibamr.solvers.newton import (NewtonKrylovSolver, NewtonSettings,
                                      StokesIBResidual)
from jax_ibamr.solvers.operators import NonlinearFunction
from jax_ibamr.solvers.stokes import StaggeredStokesOperator, StokesCoefficients


class SquareMinusFour(NonlinearFunction):
  """`R(x) = x * x - 4` entry by entry."""

  def evaluate(self, x, y):
    for patch in x.patches():
      for c in range(x.num_components):
        y.set_component(patch, c, tuple(
            b.with_interior(a.interior * a.interior - 4.0)
            for a, b in zip(x.component(patch, c), y.component(patch, c))))


def test_newton_finds_root(make_hierarchy, make_stokes_vector):
  hierarchy = make_hierarchy()
  x = make_stokes_vector(hierarchy)
  x.set_to_scalar(1.0)
  residual = SquareMinusFour()
  solver = NewtonKrylovSolver(residual, FiniteDifferenceJacobian(residual))
  result = solver.solve(x)
  assert result.converged
  assert 0 < result.iterations < 10
  np.testing.assert_allclose(x.to_flat(), 2.0, rtol=1e-7)


def test_newton_reports_failure(make_hierarchy, make_stokes_vector):
  hierarchy = make_hierarchy()
  x = make_stokes_vector(hierarchy)
  x.set_to_scalar(1.0)
  residual = SquareMinusFour()
  settings = NewtonSettings(max_iterations=1)
  result = NewtonKrylovSolver(residual, FiniteDifferenceJacobian(residual),
                              settings).solve(x)
  assert not result.converged
  assert result.iterations == 1
  assert result.residual_norm > 0.0


def test_newton_releases_scratch_data(make_hierarchy, make_stokes_vector):
  hierarchy = make_hierarchy()
  x = make_stokes_vector(hierarchy)
  x.set_to_scalar(2.0)
  registered = set(hierarchy.variables)
  residual = SquareMinusFour()
  jacobian = FiniteDifferenceJacobian(residual)
  result = NewtonKrylovSolver(residual, jacobian).solve(x)
  assert result.converged
  assert result.iterations == 0
  assert not jacobian.is_initialized
  assert set(hierarchy.variables) == registered


def test_newton_is_serial_only(make_hierarchy, make_stokes_vector,
                               emulated_context):
  hierarchy = make_hierarchy(context=emulated_context(rank=0, size=2))
  x = make_stokes_vector(hierarchy)
  residual = SquareMinusFour()
  solver = NewtonKrylovSolver(residual, FiniteDifferenceJacobian(residual))
  with pytest.raises(PreconditionError):
    solver.solve(x)


def test_stokes_residual_without_structure(make_hierarchy, make_stokes_vector,
                                           random_fill):
  hierarchy = make_hierarchy(x_up=(1.0, 1.0), periodic=(True, False))
  x = make_stokes_vector(hierarchy, 'x')
  b = make_stokes_vector(hierarchy, 'b')
  r = make_stokes_vector(hierarchy, 'r')
  Ax = make_stokes_vector(hierarchy, 'Ax')
  random_fill(x, seed=0)
  random_fill(b, seed=1)
  stokes = StaggeredStokesOperator(StokesCoefficients(1.0, 0.1, 0.5))
  stokes.initialize_operator_state(x, r)
  residual = StokesIBResidual(stokes, NoCoupling(), b)
  residual.evaluate(x, r)
  stokes.apply(x, Ax)
  np.testing.assert_allclose(r.to_flat(), Ax.to_flat() - b.to_flat(),
                             atol=1e-12)
  residual.free()
