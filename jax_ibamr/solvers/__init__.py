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
Operators and the nonlinear solver of the implicit IB step.
"""

# Operator interfaces and their lifecycle.
import jax_ibamr.solvers.operators

# The staggered Stokes operator.
import jax_ibamr.solvers.stokes

# Finite-difference and composite Jacobian operators.
import jax_ibamr.solvers.jacobian

# Jacobian-free Newton-Krylov driver.
import jax_ibamr.solvers.newton
