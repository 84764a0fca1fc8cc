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
Ordered parallel output of line samples.

All ranks write into one shared file. Every rank learns the sample count of
every other rank, computes the byte offset of its own block from the counts of
the lower ranks, and writes there. The file therefore holds the samples in
rank-major order no matter how many processes produced them.

File layout (little-endian):

    int32    total number of samples N
    float64  ordinate_0, value_0, ordinate_1, value_1, ... (N pairs)
"""
import logging
import os

import numpy as np

from jax_ibamr.base.communication import ExecutionContext
from jax_ibamr.base.errors import OutputError
from jax_ibamr.postprocess.profiles import ProfileSamples

logger = logging.getLogger(__name__)

HEADER_DTYPE = np.dtype('<i4')
VALUE_DTYPE = np.dtype('<f8')
HEADER_BYTES = HEADER_DTYPE.itemsize
# One (ordinate, value) pair.
SAMPLE_BYTES = 2 * VALUE_DTYPE.itemsize


def profile_filename(dirname: str, time: float, prefix: str = 'u_y_') -> str:
  """Output path for the samples taken at `time`, e.g. `dir/u_y_0.50000000`."""
  return os.path.join(dirname, f'{prefix}{time:.8f}')


def write_samples(context: ExecutionContext, samples: ProfileSamples,
                  path: str) -> int:
  """
  Collective. Writes the samples of every rank into `path`.

  Args:
    context: the execution context of the run.
    samples: the samples of the calling rank (may be empty).
    path: output file, created or overwritten.

  Returns:
    The total number of samples written.

  Raises:
    OutputError: if the file cannot be opened or written.
  """
  counts = context.allgather(len(samples))
  total = int(sum(counts))
  if total > np.iinfo(HEADER_DTYPE).max:
    raise OutputError(f'too many samples for the file header: {total}')
  offset = HEADER_BYTES + SAMPLE_BYTES * int(sum(counts[:context.rank]))
  payload = samples.interleaved().astype(VALUE_DTYPE).tobytes()
  shared = context.open_shared_file(path)
  try:
    shared.set_size(HEADER_BYTES + SAMPLE_BYTES * total)
    if context.is_root:
      shared.write_at(0, np.array([total], dtype=HEADER_DTYPE).tobytes())
    if payload:
      shared.write_at(offset, payload)
  except (OSError, RuntimeError) as e:
    raise OutputError(f'unable to write {path}: {e}') from e
  finally:
    shared.close()
  if context.is_root:
    logger.info('wrote %d samples to %s', total, path)
  return total


def read_samples(path: str) -> ProfileSamples:
  """Reads a file produced by `write_samples`."""
  with open(path, 'rb') as f:
    raw = f.read()
  if len(raw) < HEADER_BYTES:
    raise OutputError(f'{path} is too short to hold a header')
  total, = np.frombuffer(raw[:HEADER_BYTES], dtype=HEADER_DTYPE)
  expected = HEADER_BYTES + SAMPLE_BYTES * int(total)
  if len(raw) != expected:
    raise OutputError(
        f'{path} holds {len(raw)} bytes, expected {expected} for {total} samples')
  pairs = np.frombuffer(raw[HEADER_BYTES:], dtype=VALUE_DTYPE).reshape(-1, 2)
  return ProfileSamples(pairs[:, 0].copy(), pairs[:, 1].copy())
