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
Regularised delta functions used to couple markers with the fluid grid.

Interpolation (`J`) and spreading (`S`) are discrete convolutions with a
tensor-product kernel `δ_h(x - X) = Π_d φ((x_d - X_d) / h_d) / h_d`. Every
kernel here has the signature `kernel(x0, x, h)` and returns the 1D factor
(already divided by `h`) for marker coordinate `x0` and grid coordinates `x`.
"""
from typing import Callable

import jax.numpy as jnp

Kernel = Callable[..., jnp.ndarray]


def ib_4(x0, x, h):
  """Peskin's 4-point kernel. Support of two cells on each side."""
  r = jnp.abs((x - x0) / h)
  # Clip the square-root arguments so that the branches not selected by
  # `jnp.where` stay finite.
  inner = (3. - 2. * r + jnp.sqrt(jnp.clip(1. + 4. * r - 4. * r**2, 0.))) / 8.
  outer = (5. - 2. * r - jnp.sqrt(jnp.clip(-7. + 12. * r - 4. * r**2, 0.))) / 8.
  phi = jnp.where(r < 1., inner, jnp.where(r < 2., outer, 0.))
  return phi / h


def gaussian(x0, x, h):
  """Gaussian kernel with standard deviation `h`.

  Its support is not compact; markers closer than a few cells to the edge of
  the finest level lose part of their weight.
  """
  return 1 / (h * jnp.sqrt(2 * jnp.pi)) * jnp.exp(-0.5 * ((x - x0) / h)**2)


KERNELS = {
    'IB_4': ib_4,
    'GAUSSIAN': gaussian,
}

# Half width of the kernel support, in cells.
SUPPORT = {
    'IB_4': 2,
    'GAUSSIAN': 4,
}


def get_kernel(name: str) -> Kernel:
  try:
    return KERNELS[name.upper()]
  except KeyError:
    raise ValueError(
        f'unknown kernel {name!r}; expected one of {sorted(KERNELS)}') from None
