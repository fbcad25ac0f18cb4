# loader.py -- Load a commit range
# Copyright (C) 2025 Autosquash contributors
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# Autosquash is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Read a commit range into an ordered sequence of records."""

import dataclasses
from typing import Optional, Union

from . import log_utils
from .backend import Backend
from .errors import EmptyRangeError, RangeError
from .objects import CommitRecord

logger = log_utils.getLogger(__name__)


def _to_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return value


def load_range(
    backend: Backend,
    old: Optional[Union[str, bytes]],
    new: Union[str, bytes],
) -> tuple[Optional[bytes], bytes, tuple[CommitRecord, ...]]:
    """Load the commits in ``old..new``.

    The walk follows first parents from ``new`` back to ``old``. Merge commits
    found on the way are loaded as-is; rejecting them is up to the classifier.

    Args:
      backend: Backend to read history from
      old: Exclusive lower boundary, or None to start at the root commit
      new: Inclusive upper boundary
    Returns:
      Tuple of (resolved old id, resolved new id, records oldest first)
    Raises:
      RangeError: If a boundary does not resolve or old is not an ancestor
        of new
      EmptyRangeError: If the range contains no commits
    """
    new_b = _to_bytes(new)
    old_b = None if old is None else _to_bytes(old)

    try:
        new_id = backend.resolve(new_b)
    except KeyError:
        raise RangeError(old_b, new_b, f"unknown revision {new_b!r}")
    old_id = None
    if old_b is not None:
        try:
            old_id = backend.resolve(old_b)
        except KeyError:
            raise RangeError(old_b, new_b, f"unknown revision {old_b!r}")
        if old_id == new_id:
            raise EmptyRangeError(old_b, new_b)
        if not backend.is_ancestor(old_id, new_id):
            raise RangeError(old_b, new_b, "old boundary is not an ancestor of new")

    commits = []
    current: Optional[bytes] = new_id
    while current is not None and current != old_id:
        record = backend.read_commit(current)
        commits.append(record)
        current = record.parent_ids[0] if record.parent_ids else None

    if not commits:
        raise EmptyRangeError(old_b, new_b)

    commits.reverse()
    records = tuple(
        dataclasses.replace(record, position=i) for i, record in enumerate(commits)
    )
    logger.debug("Loaded %d commits from %r..%r", len(records), old_b, new_b)
    return old_id, new_id, records
