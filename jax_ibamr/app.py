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
Command line driver: implicit Stokes-IB steps with velocity profile output.

    python -m jax_ibamr INPUT [RESTART_DIR RESTART_STEP] [--set KEY=VALUE ...]

Every step solves the backward Euler Stokes-IB system with Newton-Krylov,
moves the structure with the new velocity and, every
`Main.postproc_data_dump_interval` steps and after the last one, writes the
velocity profile along `output_velocity_profile` to
`<Main.postproc_data_dump_dirname>/u_y_<time>`.
"""
import argparse
import logging
import os
import sys
from typing import Optional, Sequence

from omegaconf import DictConfig
from omegaconf.errors import OmegaConfBaseException

from jax_ibamr import config as config_lib
from jax_ibamr.IB import structure as structure_lib
from jax_ibamr.IB.coupling import IBCouplingFunction
from jax_ibamr.base.boundaries import BCType
from jax_ibamr.base.communication import ExecutionContext
from jax_ibamr.base.errors import JaxIBAMRError, PreconditionError
from jax_ibamr.base.hierarchy import Centering, Variable
from jax_ibamr.base.vectors import HierarchyVector
from jax_ibamr.postprocess import profiles, writer
from jax_ibamr.solvers.jacobian import (FiniteDifferenceJacobian,
                                        FiniteDifferenceParameters,
                                        IBImplicitJacobian)
from jax_ibamr.solvers.newton import (NewtonKrylovSolver, NewtonSettings,
                                      StokesIBResidual)
from jax_ibamr.solvers.operators import NonlinearFunction
from jax_ibamr.solvers.stokes import StaggeredStokesOperator, StokesCoefficients

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s [rank %(rank)d] %(levelname)s %(name)s: %(message)s'


class RankFilter(logging.Filter):
  """Adds the MPI rank to every log record."""

  def __init__(self, rank: int):
    super().__init__()
    self.rank = rank

  def filter(self, record):
    record.rank = self.rank
    return True


def configure_logging(context: ExecutionContext,
                      log_file: Optional[str] = None):
  """Console logging on every rank, file logging on rank 0.

  Ranks other than 0 only report warnings and errors.
  """
  root = logging.getLogger()
  for handler in list(root.handlers):
    root.removeHandler(handler)
  root.setLevel(logging.INFO if context.is_root else logging.WARNING)
  handlers = [logging.StreamHandler()]
  if log_file and context.is_root:
    handlers.append(logging.FileHandler(log_file, mode='w'))
  for handler in handlers:
    handler.addFilter(RankFilter(context.rank))
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)


class NoCoupling(NonlinearFunction):
  """Coupling function of a run without a structure."""

  def evaluate(self, x, y):
    y.set_to_scalar(0.0)


class Simulation:
  """
  State and time loop of a run.

  Attributes:
    cfg: the input database.
    hierarchy: the patch hierarchy.
    solution: the vector `(u, p)` at the current time.
    structure: the immersed structure, or None.
  """
  VELOCITY = 0
  PRESSURE = 1

  def __init__(self, cfg: DictConfig, context: ExecutionContext):
    self.cfg = cfg
    self.context = context
    self.hierarchy = config_lib.build_hierarchy(cfg, context)
    variables = [
        Variable('u', Centering.SIDE, ghosts=1, wall_bc=BCType.DIRICHLET),
        Variable('p', Centering.CELL, ghosts=1, wall_bc=BCType.NEUMANN),
    ]
    self.solution = HierarchyVector('solution', self.hierarchy, variables)
    self.solution.set_component_to_scalar(
        self.VELOCITY, tuple(cfg.Fluid.initial_velocity))
    self.rhs = self.solution.clone('rhs')
    self.coefficients = StokesCoefficients(cfg.Fluid.rho, cfg.Fluid.mu,
                                           cfg.Fluid.dt)
    self.stokes_op = StaggeredStokesOperator(self.coefficients, self.VELOCITY,
                                             self.PRESSURE)
    self.structure = None
    if cfg.Structure.enabled:
      self.structure = structure_lib.circle(
          tuple(cfg.Structure.center), cfg.Structure.radius,
          cfg.Structure.num_markers, cfg.Structure.stiffness,
          cfg.Structure.rest_fraction)
    if cfg.Solver.fd_scale is None:
      self.fd_parameters = FiniteDifferenceParameters(floor=cfg.Solver.fd_floor)
    else:
      self.fd_parameters = FiniteDifferenceParameters(cfg.Solver.fd_scale,
                                                      cfg.Solver.fd_floor)
    self.newton_settings = NewtonSettings(
        max_iterations=cfg.Solver.max_iterations,
        abs_tol=cfg.Solver.abs_tol,
        rel_tol=cfg.Solver.rel_tol,
        krylov_rtol=cfg.Solver.krylov_rtol,
        krylov_atol=cfg.Solver.krylov_atol,
        krylov_maxiter=cfg.Solver.krylov_maxiter,
        krylov_restart=cfg.Solver.krylov_restart)
    self.time = 0.0
    self.iteration = 0

  def _coupling(self) -> NonlinearFunction:
    if self.structure is None:
      return NoCoupling()
    return IBCouplingFunction(self.structure, self.coefficients.dt,
                              self.cfg.Structure.kernel, self.VELOCITY)

  def advance(self):
    """Takes one backward Euler step."""
    # b = (C u^n, 0)
    self.rhs.scale(self.coefficients.C, self.solution)
    self.rhs.set_component_to_scalar(self.PRESSURE, 0.0)
    coupling = self._coupling()
    jacobian = IBImplicitJacobian(
        self.stokes_op, FiniteDifferenceJacobian(coupling, self.fd_parameters))
    jacobian.enable_logging(self.cfg.Main.enable_logging)
    residual = StokesIBResidual(self.stokes_op, coupling, self.rhs)
    try:
      result = NewtonKrylovSolver(residual, jacobian,
                                  self.newton_settings).solve(self.solution)
    finally:
      residual.free()
    if isinstance(coupling, IBCouplingFunction):
      self.structure = self.structure.with_positions(
          coupling.marker_positions(self.solution))
    self.time += self.coefficients.dt
    self.iteration += 1
    logger.info('step %d: t = %.8f, Newton %s in %d iterations, |R| = %.3e',
                self.iteration, self.time,
                'converged' if result.converged else 'stopped',
                result.iterations, result.residual_norm)

  def output_velocity_profile(self) -> str:
    """Collective. Extracts and writes the velocity profile; returns the path."""
    profile = self.cfg.output_velocity_profile
    dirname = self.cfg.Main.postproc_data_dump_dirname
    if self.context.is_root:
      os.makedirs(dirname, exist_ok=True)
    self.context.barrier()
    query = profiles.LineQuery(tuple(profile.lower_coordinates),
                               tuple(profile.upper_coordinates))
    samples = profiles.extract_line_profile(
        self.hierarchy, self.solution.data_name(self.VELOCITY), query,
        profile.component)
    path = writer.profile_filename(dirname, self.time)
    writer.write_samples(self.context, samples, path)
    return path

  def run(self):
    num_steps = self.cfg.Fluid.num_steps
    interval = self.cfg.Main.postproc_data_dump_interval
    dump = interval > 0 and self.cfg.output_velocity_profile.enabled
    for step in range(1, num_steps + 1):
      self.advance()
      if dump and (step % interval == 0 or step == num_steps):
        self.output_velocity_profile()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
  parser = argparse.ArgumentParser(
      prog='jax_ibamr',
      description='Implicit immersed boundary Stokes solver with velocity '
      'profile output.')
  parser.add_argument('input_file', help='YAML input database')
  parser.add_argument('restart_dir', nargs='?', default=None,
                      help='restart directory')
  parser.add_argument('restart_step', nargs='?', type=int, default=None,
                      help='restart step number')
  parser.add_argument('--set', dest='overrides', action='append', default=[],
                      metavar='KEY=VALUE',
                      help='override an input entry, e.g. Fluid.dt=0.001')
  parser.add_argument('--mpi', action='store_true',
                      help='run on MPI.COMM_WORLD (requires mpi4py)')
  return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
  """Runs the driver and returns the process exit code."""
  args = parse_args(argv)
  context = ExecutionContext.world() if args.mpi else ExecutionContext()
  configure_logging(context)
  try:
    cfg = config_lib.load_input(args.input_file, args.overrides)
    configure_logging(context, cfg.Main.log_file)
    if args.restart_dir is not None:
      raise PreconditionError(
          'main', f'cannot restart from {args.restart_dir}: restart databases '
          'are not supported')
    Simulation(cfg, context).run()
  except (JaxIBAMRError, OmegaConfBaseException, OSError) as e:
    logger.critical('%s', e)
    if context.size > 1:
      context.abort(1)
    return 1
  logger.info('run completed')
  return 0


if __name__ == '__main__':
  sys.exit(main())
