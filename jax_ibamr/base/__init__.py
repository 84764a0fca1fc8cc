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
Foundational data structures shared by the rest of the package.
"""

# Integer box algebra (intersection, union, subtraction).
import jax_ibamr.base.boxes

# Exceptions raised on contract violations and output failures.
import jax_ibamr.base.errors

# Rank, size and collectives of the run.
import jax_ibamr.base.communication

# Patch grids and ghosted, staggered data arrays.
import jax_ibamr.base.grids

# Geometry, levels, patches and variables.
import jax_ibamr.base.hierarchy

# Ghost filling across patches, levels and physical boundaries.
import jax_ibamr.base.boundaries

# Staggered finite-difference stencils.
import jax_ibamr.base.finite_differences

# Distributed vectors over the hierarchy.
import jax_ibamr.base.vectors
