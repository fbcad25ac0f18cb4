# matcher.py -- Resolve fixup targets and revert pairs
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

"""Match fixup, squash, amend and revert commits to their targets.

Reverts are paired first, so that a fixup whose target cancels out against a
revert can be reported instead of being applied to a dropped commit.
Nothing here raises for unclear references: they end up as
:class:`Unresolved` entries and the commit is kept as it is.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from . import log_utils
from .classify import ClassifiedCommit, CommitKind

logger = log_utils.getLogger(__name__)


class UnresolvedReason(Enum):
    """Why a reference could not be resolved."""

    NO_CANDIDATE = "no-candidate"
    AMBIGUOUS = "ambiguous"
    TARGET_CONSUMED = "target-consumed"


@dataclass(frozen=True)
class Resolved:
    """A reference resolved to a commit in the range."""

    target_id: bytes


@dataclass(frozen=True)
class Unresolved:
    """A reference that could not be resolved.

    Attributes:
      commit_id: Commit carrying the reference
      reason: Why resolution failed
      target_key: Subject that was looked for
    """

    commit_id: bytes
    reason: UnresolvedReason
    target_key: str

    def __str__(self) -> str:
        return (
            f"{self.commit_id[:7].decode('ascii')}: "
            f"cannot resolve {self.target_key!r} ({self.reason.value})"
        )


Match = Union[Resolved, Unresolved]


@dataclass(frozen=True)
class MatchResult:
    """Resolution of every non-normal commit in a range."""

    matches: Mapping[bytes, Match]
    revert_ids: frozenset[bytes] = frozenset()

    def __getitem__(self, commit_id: bytes) -> Match:
        return self.matches[commit_id]

    def __contains__(self, commit_id: bytes) -> bool:
        return commit_id in self.matches

    def get(self, commit_id: bytes) -> Optional[Match]:
        """Return the match for commit_id, or None for normal commits."""
        return self.matches.get(commit_id)

    @property
    def unresolved(self) -> list[Unresolved]:
        """References that could not be resolved, in no particular order."""
        return [m for m in self.matches.values() if isinstance(m, Unresolved)]

    def revert_pairs(self) -> dict[bytes, bytes]:
        """Return a mapping from revert commit id to reverted commit id."""
        return {
            commit_id: m.target_id
            for commit_id, m in self.matches.items()
            if isinstance(m, Resolved) and commit_id in self.revert_ids
        }


def _find_revert_target(
    revert: ClassifiedCommit,
    commits: Sequence[ClassifiedCommit],
    paired: set[bytes],
) -> Optional[ClassifiedCommit]:
    def available(c: ClassifiedCommit) -> bool:
        return c.kind is CommitKind.NORMAL and c.id not in paired

    if revert.reverted_id is not None:
        for c in commits:
            if c.id.startswith(revert.reverted_id) and available(c):
                return c

    earlier = [
        c for c in commits[: revert.position] if c.own_key == revert.target_key
    ]
    for c in reversed(earlier):
        if available(c):
            return c
    for c in commits[revert.position + 1 :]:
        if c.own_key == revert.target_key and available(c):
            return c
    return None


def _find_amend_target(
    fixup: ClassifiedCommit, commits: Sequence[ClassifiedCommit]
) -> Optional[ClassifiedCommit]:
    for c in reversed(commits[: fixup.position]):
        if c.kind not in (CommitKind.NORMAL, CommitKind.REVERT):
            continue
        if c.own_key == fixup.target_key:
            return c
    return None


def match(
    commits: Sequence[ClassifiedCommit], revert_pairs: bool = True
) -> MatchResult:
    """Resolve the references of every commit in a range.

    Args:
      commits: Classified commits, oldest first, positions matching indices
      revert_pairs: Whether reverts cancel against in-range targets
    Returns: MatchResult covering every fixup, squash, amend and revert commit
    """
    matches: dict[bytes, Match] = {}
    paired: set[bytes] = set()
    revert_ids: set[bytes] = set()

    for c in commits:
        if c.kind is not CommitKind.REVERT:
            continue
        target = _find_revert_target(c, commits, paired) if revert_pairs else None
        if target is None:
            matches[c.id] = Unresolved(
                c.id, UnresolvedReason.NO_CANDIDATE, c.target_key
            )
            logger.debug("%s reverts a commit outside the range", c.record.short_id)
            continue
        paired.update((c.id, target.id))
        revert_ids.add(c.id)
        matches[c.id] = Resolved(target.id)
        logger.debug("%s reverts %s", c.record.short_id, target.record.short_id)

    for c in commits:
        if not c.kind.is_amendment:
            continue
        if not c.target_key:
            result: Match = Unresolved(c.id, UnresolvedReason.AMBIGUOUS, c.target_key)
        else:
            target = _find_amend_target(c, commits)
            if target is None:
                result = Unresolved(c.id, UnresolvedReason.NO_CANDIDATE, c.target_key)
            elif target.id in paired:
                result = Unresolved(
                    c.id, UnresolvedReason.TARGET_CONSUMED, c.target_key
                )
            else:
                result = Resolved(target.id)
        if isinstance(result, Unresolved):
            logger.warning("Keeping %s: %s", c.kind.value, result)
        matches[c.id] = result

    return MatchResult(matches, frozenset(revert_ids))
