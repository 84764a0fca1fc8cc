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
`jax_ibamr` computes, on a distributed block-structured adaptive hierarchy,
matrix-free Jacobian-vector products for an implicit immersed boundary (IB)
formulation, and extracts velocity profiles along lines into ordered binary
files.

The package is organized into subpackages that mirror the parts of the
method.
"""
import jax

# All solver data is double precision; the finite-difference Jacobian step
# is tuned to the float64 machine epsilon.
jax.config.update('jax_enable_x64', True)

# Grids, boxes, the patch hierarchy, communication and hierarchy vectors.
import jax_ibamr.base

# The immersed structure and its coupling with the fluid.
import jax_ibamr.IB

# Stokes operator, Jacobian operators and the Newton-Krylov driver.
import jax_ibamr.solvers

# Line sampling and ordered parallel output.
import jax_ibamr.postprocess
