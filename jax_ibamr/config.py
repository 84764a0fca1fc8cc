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
Input database of the driver.

The input file is YAML. It is merged with OmegaConf onto the structured schema
below, so missing entries take their defaults and misspelled or mistyped
entries are rejected when the file is loaded. Command line style overrides
(`Fluid.dt=0.001`) are merged last.
"""
import dataclasses
from typing import Any, List, Optional, Sequence

from omegaconf import DictConfig, OmegaConf

from jax_ibamr.IB import delta_functions
from jax_ibamr.base.boxes import Box
from jax_ibamr.base.communication import ExecutionContext
from jax_ibamr.base.errors import PreconditionError
from jax_ibamr.base.hierarchy import CartesianGridGeometry, PatchHierarchy
from jax_ibamr.postprocess.profiles import LineQuery

DISCRETIZATION_FORMS = ('CONSERVATIVE', 'NON_CONSERVATIVE')


@dataclasses.dataclass
class MainConfig:
  log_file: str = 'ibamr.log'
  discretization_form: str = 'CONSERVATIVE'
  # Steps between velocity profile dumps; 0 disables the dumps.
  postproc_data_dump_interval: int = 0
  postproc_data_dump_dirname: str = 'postproc'
  enable_logging: bool = False


@dataclasses.dataclass
class GeometryConfig:
  x_lo: List[float] = dataclasses.field(default_factory=lambda: [0.0, 0.0])
  x_up: List[float] = dataclasses.field(default_factory=lambda: [1.0, 1.0])
  n_cells: List[int] = dataclasses.field(default_factory=lambda: [16, 16])
  periodic: List[bool] = dataclasses.field(
      default_factory=lambda: [True, False])


@dataclasses.dataclass
class LevelConfig:
  """A refined level: ratio to the coarser level and `[lower, upper]` boxes."""
  ratio: List[int] = dataclasses.field(default_factory=lambda: [2, 2])
  boxes: List[Any] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class HierarchyConfig:
  # Levels finer than level 0, which always covers the whole domain.
  levels: List[LevelConfig] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class FluidConfig:
  rho: float = 1.0
  mu: float = 0.01
  dt: float = 0.01
  num_steps: int = 1
  initial_velocity: List[float] = dataclasses.field(
      default_factory=lambda: [0.0, 0.0])


@dataclasses.dataclass
class StructureConfig:
  enabled: bool = True
  center: List[float] = dataclasses.field(default_factory=lambda: [0.5, 0.5])
  radius: float = 0.2
  num_markers: int = 32
  stiffness: float = 1.0
  rest_fraction: float = 1.0
  kernel: str = 'IB_4'


@dataclasses.dataclass
class SolverConfig:
  max_iterations: int = 20
  abs_tol: float = 1e-10
  rel_tol: float = 1e-8
  krylov_rtol: float = 1e-8
  krylov_atol: float = 0.0
  krylov_maxiter: int = 50
  krylov_restart: int = 50
  # Finite-difference Jacobian step; None selects sqrt(machine epsilon).
  fd_scale: Optional[float] = None
  fd_floor: float = 1.0


@dataclasses.dataclass
class ProfileConfig:
  enabled: bool = True
  lower_coordinates: List[float] = dataclasses.field(
      default_factory=lambda: [0.5, 0.0])
  upper_coordinates: List[float] = dataclasses.field(
      default_factory=lambda: [0.5, 1.0])
  component: int = 0


@dataclasses.dataclass
class InputDatabase:
  Main: MainConfig = dataclasses.field(default_factory=MainConfig)
  CartesianGeometry: GeometryConfig = dataclasses.field(
      default_factory=GeometryConfig)
  PatchHierarchy: HierarchyConfig = dataclasses.field(
      default_factory=HierarchyConfig)
  Fluid: FluidConfig = dataclasses.field(default_factory=FluidConfig)
  Structure: StructureConfig = dataclasses.field(
      default_factory=StructureConfig)
  Solver: SolverConfig = dataclasses.field(default_factory=SolverConfig)
  output_velocity_profile: ProfileConfig = dataclasses.field(
      default_factory=ProfileConfig)


def validate(cfg: DictConfig):
  """Raises PreconditionError for inputs the driver cannot run."""
  form = cfg.Main.discretization_form
  if form not in DISCRETIZATION_FORMS:
    raise PreconditionError(
        'Main', f'unsupported discretization form {form!r}; expected one of '
        f'{", ".join(DISCRETIZATION_FORMS)}')
  ndim = len(cfg.CartesianGeometry.n_cells)
  for key in ('x_lo', 'x_up', 'periodic'):
    if len(cfg.CartesianGeometry[key]) != ndim:
      raise PreconditionError(
          'CartesianGeometry', f'{key} must have {ndim} entries')
  if cfg.Fluid.dt <= 0.0:
    raise PreconditionError('Fluid', 'dt must be positive')
  if cfg.Structure.kernel.upper() not in delta_functions.KERNELS:
    raise PreconditionError(
        'Structure', f'unknown kernel {cfg.Structure.kernel!r}; expected one '
        f'of {", ".join(delta_functions.KERNELS)}')
  profile = cfg.output_velocity_profile
  try:
    LineQuery(tuple(profile.lower_coordinates),
              tuple(profile.upper_coordinates))
  except ValueError as e:
    raise PreconditionError('output_velocity_profile', str(e)) from e
  if not 0 <= profile.component < ndim:
    raise PreconditionError('output_velocity_profile',
                            f'component must lie in [0, {ndim})')


def load_input(path: str, overrides: Sequence[str] = ()) -> DictConfig:
  """Loads and validates the input database at `path`."""
  cfg = OmegaConf.merge(OmegaConf.structured(InputDatabase),
                        OmegaConf.load(path),
                        OmegaConf.from_dotlist(list(overrides)))
  validate(cfg)
  return cfg


def build_hierarchy(cfg: DictConfig,
                    context: Optional[ExecutionContext] = None
                    ) -> PatchHierarchy:
  """Creates the geometry and every level described by `cfg`.

  Raises:
    PreconditionError: if the levels do not form a valid nested hierarchy.
  """
  geometry = CartesianGridGeometry(
      cfg.CartesianGeometry.x_lo, cfg.CartesianGeometry.x_up,
      cfg.CartesianGeometry.n_cells, cfg.CartesianGeometry.periodic)
  hierarchy = PatchHierarchy(geometry, context)
  hierarchy.make_level()
  for level in cfg.PatchHierarchy.levels:
    try:
      boxes = [Box(tuple(lower), tuple(upper)) for lower, upper in level.boxes]
      hierarchy.make_level(boxes, tuple(level.ratio))
    except ValueError as e:
      raise PreconditionError('PatchHierarchy', str(e)) from e
  return hierarchy
