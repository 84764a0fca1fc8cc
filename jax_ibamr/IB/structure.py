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
Lagrangian description of an immersed elastic structure.

The structure is a set of massless markers `X` connected by linear springs.
Its elastic energy is built with `jax_md.energy.simple_spring_bond` on a free
(non periodic) space, and the Lagrangian force density on the markers is
`F(X) = -dE/dX`, obtained with `jax_md.quantity.force`.
"""
import dataclasses
from typing import Callable, Sequence

import jax.numpy as jnp
from jax.tree_util import register_pytree_node_class
from jax_md import energy, quantity, space

Array = jnp.ndarray


@register_pytree_node_class
@dataclasses.dataclass
class LagrangianStructure:
  """
  Markers and spring network of an immersed body.

  Attributes:
    positions: marker positions, shape `(num_markers, ndim)`.
    bonds: index pairs of the springs, shape `(num_bonds, 2)`.
    rest_length: rest length of every spring, shape `(num_bonds,)`.
    stiffness: spring constant shared by all springs.
  """
  positions: Array
  bonds: Array
  rest_length: Array
  stiffness: float

  def tree_flatten(self):
    children = (self.positions, self.bonds, self.rest_length)
    aux_data = (self.stiffness,)
    return children, aux_data

  @classmethod
  def tree_unflatten(cls, aux_data, children):
    return cls(*children, *aux_data)

  @property
  def num_markers(self) -> int:
    return self.positions.shape[0]

  @property
  def ndim(self) -> int:
    return self.positions.shape[1]

  def energy_fn(self) -> Callable[[Array], Array]:
    displacement_fn, _ = space.free()
    return energy.simple_spring_bond(
        displacement_fn, self.bonds, length=self.rest_length,
        epsilon=self.stiffness)

  def energy(self, positions: Array = None) -> Array:
    if positions is None:
      positions = self.positions
    return self.energy_fn()(positions)

  def forces(self, positions: Array = None) -> Array:
    """Force on every marker, `-dE/dX`, evaluated at `positions`."""
    if positions is None:
      positions = self.positions
    return quantity.force(self.energy_fn())(positions)

  def with_positions(self, positions: Array) -> 'LagrangianStructure':
    return dataclasses.replace(self, positions=jnp.asarray(positions))


def circle(center: Sequence[float], radius: float, num_markers: int,
           stiffness: float, rest_fraction: float = 1.0) -> LagrangianStructure:
  """
  A closed ring of markers.

  Args:
    center: center of the ring.
    radius: radius of the ring.
    num_markers: number of equally spaced markers.
    stiffness: spring constant between neighbouring markers.
    rest_fraction: rest length of the springs as a fraction of the initial
      marker spacing. Values below one put the ring under tension.

  Returns:
    A 2D `LagrangianStructure`.
  """
  theta = jnp.linspace(0., 2. * jnp.pi, num_markers, endpoint=False)
  positions = jnp.stack([center[0] + radius * jnp.cos(theta),
                         center[1] + radius * jnp.sin(theta)], axis=-1)
  i = jnp.arange(num_markers)
  bonds = jnp.stack([i, (i + 1) % num_markers], axis=-1)
  spacing = 2. * radius * jnp.sin(jnp.pi / num_markers)
  rest_length = jnp.full((num_markers,), rest_fraction * spacing)
  return LagrangianStructure(positions, bonds, rest_length, stiffness)
