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
The immersed structure and its coupling with the fluid grid.
"""

# Regularised delta functions for interpolation and spreading.
import jax_ibamr.IB.delta_functions

# Markers and spring network, with forces from jax_md.
import jax_ibamr.IB.structure

# The nonlinear coupling term of the implicit formulation.
import jax_ibamr.IB.coupling
