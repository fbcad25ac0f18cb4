# errors.py -- Exception classes for autosquash
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

"""Exception classes raised by the fixup resolution engine."""

from collections.abc import Sequence
from typing import Optional


class AutosquashError(Exception):
    """Base class for autosquash errors."""


class RangeError(AutosquashError):
    """The requested commit range is not a valid ancestor range."""

    def __init__(self, old: Optional[bytes], new: bytes, reason: str) -> None:
        """Initialize RangeError.

        Args:
          old: Old (exclusive) boundary as given by the caller
          new: New (inclusive) boundary as given by the caller
          reason: Human readable explanation
        """
        self.old = old
        self.new = new
        self.reason = reason
        super().__init__(
            f"Invalid range {_fmt(old)}..{_fmt(new)}: {reason}"
        )


class EmptyRangeError(RangeError):
    """The commit range contains no commits."""

    def __init__(self, old: Optional[bytes], new: bytes) -> None:
        """Initialize EmptyRangeError."""
        super().__init__(old, new, "range contains no commits")


class UnsupportedMergeError(AutosquashError):
    """A merge commit was found in a range that must be linear."""

    def __init__(self, commit_id: bytes, parent_count: int) -> None:
        """Initialize UnsupportedMergeError.

        Args:
          commit_id: Id of the offending merge commit
          parent_count: Number of parents it has
        """
        self.commit_id = commit_id
        self.parent_count = parent_count
        super().__init__(
            f"Commit {_fmt(commit_id)} has {parent_count} parents; "
            "only linear histories can be rewritten"
        )


class ConflictError(AutosquashError):
    """An operation could not be applied without conflicts.

    Content conflicts leave merge markers in the conflicted tree. Modify/delete
    and mode conflicts keep one side unmarked, so they count as resolved
    unless the user changes them.
    """

    def __init__(
        self,
        conflict_paths: Sequence[bytes],
        index: int = -1,
        tree_id: Optional[bytes] = None,
    ) -> None:
        """Initialize ConflictError.

        Args:
          conflict_paths: Paths with unresolved conflicts
          index: Index of the failing operation in the plan
          tree_id: Tree holding the conflicted merge result, if any
        """
        self.conflict_paths = list(conflict_paths)
        self.index = index
        self.tree_id = tree_id
        super().__init__(
            "Conflicts in: "
            + ", ".join(p.decode("utf-8", "replace") for p in self.conflict_paths)
        )


class PlanInvariantError(AutosquashError):
    """A rewrite plan violates its structural invariant.

    This indicates a defect in the plan builder, not a user error.
    """


class BackendError(AutosquashError):
    """The version control backend failed."""


class CheckpointError(AutosquashError):
    """A checkpoint could not be read, written or used."""


class NoRunInProgress(CheckpointError):
    """There is no checkpoint to resume or abort."""


def _fmt(commit_id: Optional[bytes]) -> str:
    if commit_id is None:
        return "<root>"
    return commit_id.decode("ascii", "replace")
