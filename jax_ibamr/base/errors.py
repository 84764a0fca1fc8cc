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
"""Exceptions raised by the solver and output components.

Geometric edge cases, such as a sampling line that misses every patch, are
never errors. The exceptions below are reserved for contract violations that
must stop the run on every process.
"""


class JaxIBAMRError(Exception):
  """Base class of all errors raised by `jax_ibamr`."""


class PreconditionError(JaxIBAMRError):
  """Raised when an operator or driver is used outside of its contract.

  The message names the component and the violated precondition, e.g.
  `IBImplicitJacobian::apply(): operator state is not initialized`.

  Attributes:
    component: name of the object (and method) that detected the violation.
  """

  def __init__(self, component: str, message: str):
    self.component = component
    super().__init__(f'{component}: {message}')


class OutputError(JaxIBAMRError):
  """Raised when an output file cannot be opened or written."""
