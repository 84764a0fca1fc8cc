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
Process-level execution context.

Every component that communicates receives an `ExecutionContext` explicitly;
there is no process-global state. A context wraps an `mpi4py` communicator,
or `None` for a serial run, in which case all collectives degrade to local
operations and `mpi4py` is never imported.

All methods documented as collective must be called by every rank of the
communicator in the same order.
"""
import logging
import os
import sys
from typing import Any, List

import numpy as np

from jax_ibamr.base.errors import OutputError

logger = logging.getLogger(__name__)


class SharedFile:
  """A file that every rank writes at explicit byte offsets."""

  def set_size(self, nbytes: int):
    raise NotImplementedError

  def write_at(self, offset: int, payload: bytes):
    raise NotImplementedError

  def close(self):
    raise NotImplementedError

  def __enter__(self):
    return self

  def __exit__(self, *exc_info):
    self.close()


class _MPISharedFile(SharedFile):
  """Collective MPI-IO file handle."""

  def __init__(self, handle):
    self._handle = handle

  def set_size(self, nbytes):
    # Collective.
    self._handle.Set_size(nbytes)

  def write_at(self, offset, payload):
    self._handle.Write_at(offset, np.frombuffer(payload, dtype=np.uint8))

  def close(self):
    # Collective.
    self._handle.Close()


class _PosixSharedFile(SharedFile):
  """Positional writes on a plain file descriptor.

  The file is opened without truncation so that several writers (e.g. the
  emulated ranks of a test) can fill disjoint byte ranges of the same file.
  """

  def __init__(self, fd: int):
    self._fd = fd

  def set_size(self, nbytes):
    os.ftruncate(self._fd, nbytes)

  def write_at(self, offset, payload):
    view = memoryview(payload)
    while view:
      written = os.pwrite(self._fd, view, offset)
      view = view[written:]
      offset += written

  def close(self):
    if self._fd is not None:
      os.close(self._fd)
      self._fd = None


class ExecutionContext:
  """
  Rank, size and collectives of the current SPMD run.

  Attributes:
    comm: an `mpi4py.MPI.Comm`, or None for a serial run.
  """

  def __init__(self, comm=None):
    self.comm = comm

  @classmethod
  def world(cls) -> 'ExecutionContext':
    """Context over `MPI.COMM_WORLD`."""
    from mpi4py import MPI
    return cls(MPI.COMM_WORLD)

  @property
  def rank(self) -> int:
    return 0 if self.comm is None else self.comm.Get_rank()

  @property
  def size(self) -> int:
    return 1 if self.comm is None else self.comm.Get_size()

  @property
  def is_root(self) -> bool:
    return self.rank == 0

  def allgather(self, value: Any) -> List[Any]:
    """Collective. Returns the values of all ranks, ordered by rank."""
    if self.comm is None:
      return [value]
    return self.comm.allgather(value)

  def global_reduce(self, local_values, op: str):
    """Collective reduction of `local_values` over all ranks.

    Args:
      local_values: a scalar or a NumPy array.
      op: one of "min", "max", "sum", "prod", "lor" or "land".

    Returns:
      The reduced value, identical on every rank.
    """
    if self.comm is not None:
      from mpi4py import MPI
      op_to_mpi_op = {
          'min': MPI.MIN,
          'max': MPI.MAX,
          'sum': MPI.SUM,
          'prod': MPI.PROD,
          'lor': MPI.LOR,
          'land': MPI.LAND,
      }
      return self.comm.allreduce(local_values, op=op_to_mpi_op[op])
    if op not in ('min', 'max', 'sum', 'prod', 'lor', 'land'):
      raise KeyError(op)
    # A single rank already holds the global value.
    return local_values

  def barrier(self):
    if self.comm is not None:
      self.comm.Barrier()

  def abort(self, errorcode: int = 1):
    """Terminates every rank of the run.

    Aborting the whole communicator guarantees that no rank is left waiting
    in a collective the failing rank will never enter.
    """
    logger.critical('aborting run with error code %d', errorcode)
    logging.shutdown()
    if self.comm is not None:
      self.comm.Abort(errorcode)
    sys.exit(errorcode)

  def open_shared_file(self, path: str) -> SharedFile:
    """Collective. Opens `path` for positional writes by every rank."""
    try:
      if self.comm is not None:
        from mpi4py import MPI
        handle = MPI.File.Open(self.comm, path,
                               MPI.MODE_CREATE | MPI.MODE_WRONLY)
        return _MPISharedFile(handle)
      fd = os.open(path, os.O_CREAT | os.O_WRONLY, 0o644)
      return _PosixSharedFile(fd)
    except Exception as e:
      raise OutputError(f'unable to open output file {path}: {e}') from e
