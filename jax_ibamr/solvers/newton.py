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
Jacobian-free Newton-Krylov solver for one implicit IB time step.

Each Newton iteration solves `J(x_k) dx = -R(x_k)` with restarted GMRES from
`scipy.sparse.linalg`, where the Jacobian is only available through its action
(`JacobianOperator.apply`). GMRES works on flat NumPy arrays, which are the
local interior entries of the hierarchy vectors; this driver is therefore
restricted to a single process.
"""
import dataclasses
import logging

import numpy as np
import scipy.sparse.linalg

from jax_ibamr.base.errors import PreconditionError
from jax_ibamr.base.vectors import HierarchyVector
from jax_ibamr.solvers.operators import (JacobianOperator, LinearOperator,
                                         NonlinearFunction)

logger = logging.getLogger(__name__)


class StokesIBResidual(NonlinearFunction):
  """
  Residual `R(x) = A x + G(x) - b` of a backward Euler Stokes-IB step.

  The Stokes operator must be initialized by the caller.
  """

  def __init__(self, stokes_op: LinearOperator, coupling: NonlinearFunction,
               rhs: HierarchyVector):
    self.stokes_op = stokes_op
    self.coupling = coupling
    self.rhs = rhs
    self._scratch = rhs.clone(f'StokesIBResidual.{id(self):x}.scratch')

  def evaluate(self, x: HierarchyVector, y: HierarchyVector):
    self.stokes_op.apply(x, y)
    self.coupling.evaluate(x, self._scratch)
    y.add(y, self._scratch)
    y.subtract(y, self.rhs)

  def free(self):
    self._scratch.free()


@dataclasses.dataclass(frozen=True)
class NewtonSettings:
  """
  Convergence controls.

  Attributes:
    max_iterations: maximum number of Newton updates.
    abs_tol: absolute tolerance on the residual norm.
    rel_tol: tolerance relative to the initial residual norm.
    krylov_rtol: relative tolerance of each GMRES solve.
    krylov_atol: absolute tolerance of each GMRES solve.
    krylov_maxiter: maximum number of GMRES restarts.
    krylov_restart: GMRES restart length.
  """
  max_iterations: int = 20
  abs_tol: float = 1e-10
  rel_tol: float = 1e-8
  krylov_rtol: float = 1e-8
  krylov_atol: float = 0.0
  krylov_maxiter: int = 50
  krylov_restart: int = 50


@dataclasses.dataclass(frozen=True)
class NewtonResult:
  converged: bool
  iterations: int
  residual_norm: float


class NewtonKrylovSolver:
  """Solves `R(x) = 0` starting from the contents of `x`."""

  def __init__(self, residual: NonlinearFunction, jacobian: JacobianOperator,
               settings: NewtonSettings = NewtonSettings()):
    self.residual = residual
    self.jacobian = jacobian
    self.settings = settings

  def solve(self, x: HierarchyVector) -> NewtonResult:
    """Collective. Overwrites `x` with the solution."""
    if x.hierarchy.context.size > 1:
      raise PreconditionError('NewtonKrylovSolver::solve()',
                              'the Krylov solve only runs on a single process')
    settings = self.settings
    prefix = f'NewtonKrylovSolver.{id(self):x}'
    r = x.clone(f'{prefix}.r')
    dx = x.clone(f'{prefix}.dx')
    work = x.clone(f'{prefix}.work')
    self.jacobian.initialize_operator_state(x, r)

    def matvec(v):
      dx.from_flat(v)
      self.jacobian.apply(dx, work)
      return work.to_flat()

    try:
      converged = False
      norm0 = None
      norm = None
      iteration = 0
      for iteration in range(settings.max_iterations + 1):
        self.residual.evaluate(x, r)
        norm = r.l2_norm()
        if norm0 is None:
          norm0 = norm
        logger.info('Newton iteration %d: |R| = %.12e', iteration, norm)
        if norm <= max(settings.abs_tol, settings.rel_tol * norm0):
          converged = True
          break
        if iteration == settings.max_iterations:
          break
        self.jacobian.form_jacobian(x)
        b = -r.to_flat()
        n = b.size
        op = scipy.sparse.linalg.LinearOperator((n, n), matvec=matvec,
                                                dtype=np.float64)
        step, info = scipy.sparse.linalg.gmres(
            op, b, rtol=settings.krylov_rtol, atol=settings.krylov_atol,
            restart=settings.krylov_restart, maxiter=settings.krylov_maxiter)
        if info > 0:
          logger.warning('GMRES did not converge in %d iterations', info)
        dx.from_flat(step)
        x.add(x, dx)
      if not converged:
        logger.warning('Newton solver stopped after %d iterations, |R| = %.6e',
                       iteration, norm)
      return NewtonResult(converged, iteration, norm)
    finally:
      self.jacobian.deallocate_operator_state()
      for vec in (r, dx, work):
        vec.free()
