# plan.py -- Rewrite plans
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

"""Rewrite plans.

A plan is the ordered list of operations that fully determines the new
history before anything is written. It can be rendered as a todo list in the
style of ``git-rebase-todo``::

    base 5e2d...
    head 9a1c...
    keep 1f3b... Add parser
    fixup 1f3b... 7c0d... fixup! Add parser
    drop 22ab... Try caching
    drop 8e91... Revert "Try caching"
"""

import hashlib
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Optional, Union

from . import log_utils
from .classify import ClassifiedCommit, CommitKind
from .errors import PlanInvariantError
from .matcher import MatchResult, Resolved, Unresolved
from .objects import CommitRecord

logger = log_utils.getLogger(__name__)


class AmendMode(Enum):
    """How an amendment treats the target's commit message."""

    FIXUP = "fixup"
    SQUASH = "squash"
    AMEND = "amend"

    @classmethod
    def for_kind(cls, kind: CommitKind) -> "AmendMode":
        """Return the mode for an amendment commit kind.

        Raises:
          KeyError: If kind is not FIXUP, SQUASH or AMEND
        """
        return {
            CommitKind.FIXUP: cls.FIXUP,
            CommitKind.SQUASH: cls.SQUASH,
            CommitKind.AMEND: cls.AMEND,
        }[kind]


@dataclass(frozen=True)
class Keep:
    """Carry a commit forward onto the new history."""

    commit_id: bytes

    def to_line(self) -> str:
        """Render as a todo line, without the subject."""
        return f"keep {self.commit_id.decode('ascii')}"

    @property
    def commit_ids(self) -> tuple[bytes, ...]:
        """Original commits consumed by this operation."""
        return (self.commit_id,)


@dataclass(frozen=True)
class Amend:
    """Fold the change of fixup_id into the rewritten target."""

    target_id: bytes
    fixup_id: bytes
    mode: AmendMode

    def to_line(self) -> str:
        """Render as ``<mode> <target> <fixup>``, without the subject."""
        return (
            f"{self.mode.value} {self.target_id.decode('ascii')} "
            f"{self.fixup_id.decode('ascii')}"
        )

    @property
    def commit_ids(self) -> tuple[bytes, ...]:
        """Original commits consumed by this operation."""
        return (self.fixup_id,)


@dataclass(frozen=True)
class Drop:
    """Omit a commit from the new history."""

    commit_id: bytes

    def to_line(self) -> str:
        """Render as a todo line, without the subject."""
        return f"drop {self.commit_id.decode('ascii')}"

    @property
    def commit_ids(self) -> tuple[bytes, ...]:
        """Original commits consumed by this operation."""
        return (self.commit_id,)


RewriteOperation = Union[Keep, Amend, Drop]


def parse_operation(line: str) -> Optional[RewriteOperation]:
    """Parse one todo line.

    Args:
      line: Line of a todo list
    Returns:
      Operation, or None for empty lines, comments and header lines
    Raises:
      ValueError: If the line cannot be parsed
    """
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    parts = line.split(None, 3)
    command = parts[0]
    if command in ("base", "head"):
        return None
    if command in ("keep", "drop"):
        if len(parts) < 2:
            raise ValueError(f"Missing commit id: {line!r}")
        commit_id = parts[1].encode("ascii")
        return Keep(commit_id) if command == "keep" else Drop(commit_id)
    try:
        mode = AmendMode(command)
    except ValueError:
        raise ValueError(f"Unknown plan command: {command}")
    if len(parts) < 3:
        raise ValueError(f"Missing target or fixup id: {line!r}")
    return Amend(parts[1].encode("ascii"), parts[2].encode("ascii"), mode)


@dataclass(frozen=True)
class OperationSummary:
    """Printable description of one plan operation."""

    action: str
    commit_id: bytes
    subject: str
    target_id: Optional[bytes] = None

    def __str__(self) -> str:
        short = self.commit_id[:7].decode("ascii")
        if self.target_id is not None:
            short = f"{short} -> {self.target_id[:7].decode('ascii')}"
        return f"{self.action} {short} {self.subject}".rstrip()


def _header_id(commit_id: Optional[bytes]) -> str:
    return "-" if commit_id is None else commit_id.decode("ascii")


@dataclass(frozen=True)
class RewritePlan:
    """An immutable, validated sequence of rewrite operations.

    Attributes:
      base_id: Commit the new history starts from (None for the root)
      head_id: Last commit of the original range
      operations: Operations in execution order
      records: Commit records of the range, by id
      warnings: References that could not be resolved
    """

    base_id: Optional[bytes]
    head_id: bytes
    operations: tuple[RewriteOperation, ...]
    records: Mapping[bytes, CommitRecord] = field(
        default_factory=lambda: MappingProxyType({}), compare=False
    )
    warnings: tuple[Unresolved, ...] = field(default=(), compare=False)

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self) -> Iterator[RewriteOperation]:
        return iter(self.operations)

    def __getitem__(self, index: int) -> RewriteOperation:
        return self.operations[index]

    def to_string(self, include_subjects: bool = True) -> str:
        """Render the plan as a todo list."""
        lines = [f"base {_header_id(self.base_id)}", f"head {_header_id(self.head_id)}"]
        for op in self.operations:
            line = op.to_line()
            if include_subjects:
                record = self.records.get(op.commit_ids[0])
                if record is not None:
                    line = f"{line} {record.subject}"
            lines.append(line)
        return "\n".join(lines) + "\n"

    @classmethod
    def from_string(
        cls,
        content: str,
        records: Optional[Mapping[bytes, CommitRecord]] = None,
    ) -> "RewritePlan":
        """Parse a todo list produced by :meth:`to_string`.

        Raises:
          ValueError: If the text is not a valid plan
          PlanInvariantError: If the operations do not form a valid plan
        """
        base_id: Optional[bytes] = None
        head_id: Optional[bytes] = None
        operations = []
        for line in content.splitlines():
            parts = line.split()
            if len(parts) >= 2 and parts[0] == "base":
                base_id = None if parts[1] == "-" else parts[1].encode("ascii")
                continue
            if len(parts) >= 2 and parts[0] == "head":
                head_id = parts[1].encode("ascii")
                continue
            op = parse_operation(line)
            if op is not None:
                operations.append(op)
        if head_id is None:
            raise ValueError("Plan is missing its head line")
        plan = cls(
            base_id,
            head_id,
            tuple(operations),
            MappingProxyType(dict(records or {})),
        )
        check_plan(plan.operations)
        return plan

    @property
    def plan_hash(self) -> str:
        """SHA-256 of the serialized operations, without subjects."""
        return hashlib.sha256(
            self.to_string(include_subjects=False).encode("ascii")
        ).hexdigest()

    def summaries(self) -> list[OperationSummary]:
        """Describe every operation, for dry runs."""
        result = []
        for op in self.operations:
            commit_id = op.commit_ids[0]
            record = self.records.get(commit_id)
            subject = record.subject if record is not None else ""
            if isinstance(op, Amend):
                result.append(
                    OperationSummary(op.mode.value, commit_id, subject, op.target_id)
                )
            elif isinstance(op, Drop):
                result.append(OperationSummary("drop", commit_id, subject))
            else:
                result.append(OperationSummary("keep", commit_id, subject))
        return result


def check_plan(
    operations: Sequence[RewriteOperation],
    commit_ids: Optional[Iterable[bytes]] = None,
) -> None:
    """Check the structural invariant of a plan.

    Every commit appears in exactly one operation, and every amendment
    follows the kept target it applies to, directly or after other
    amendments of the same target.

    Args:
      operations: Operations to check
      commit_ids: Ids of the input range; when given, the plan must cover
        exactly these
    Raises:
      PlanInvariantError: If the invariant does not hold
    """
    seen: set[bytes] = set()
    kept: set[bytes] = set()
    chain_target: Optional[bytes] = None
    for i, op in enumerate(operations):
        for commit_id in op.commit_ids:
            if commit_id in seen:
                raise PlanInvariantError(
                    f"Commit {commit_id!r} appears more than once (operation {i})"
                )
            seen.add(commit_id)
        if isinstance(op, Keep):
            kept.add(op.commit_id)
            chain_target = op.commit_id
        elif isinstance(op, Amend):
            if op.target_id not in kept:
                raise PlanInvariantError(
                    f"Amendment {op.fixup_id!r} targets {op.target_id!r}, "
                    "which is not kept earlier in the plan"
                )
            if op.target_id != chain_target:
                raise PlanInvariantError(
                    f"Amendment {op.fixup_id!r} does not follow its target "
                    f"{op.target_id!r}"
                )
        else:
            chain_target = None
    if commit_ids is not None:
        expected = set(commit_ids)
        if expected != seen:
            missing = sorted(expected - seen)
            extra = sorted(seen - expected)
            raise PlanInvariantError(
                f"Plan does not cover the range: missing {missing!r}, extra {extra!r}"
            )


def build_plan(
    commits: Sequence[ClassifiedCommit],
    matches: MatchResult,
    base_id: Optional[bytes],
    head_id: bytes,
) -> RewritePlan:
    """Build a rewrite plan from classified and matched commits.

    Args:
      commits: Classified commits, oldest first
      matches: Result of matching the same commits
      base_id: Commit the rewritten history starts from
      head_id: Last commit of the range
    Returns: Validated RewritePlan
    Raises:
      PlanInvariantError: If the result is inconsistent
    """
    dropped_ids = {
        commit_id for pair in matches.revert_pairs().items() for commit_id in pair
    }
    positions = {c.id: i for i, c in enumerate(commits)}

    # Each slot holds an operation followed by the amendments of its commit.
    slots: list[list[RewriteOperation]] = []
    slot_of: dict[bytes, list[RewriteOperation]] = {}

    for c in commits:
        if c.id in dropped_ids:
            slots.append([Drop(c.id)])
            continue
        m = matches.get(c.id)
        if c.kind.is_amendment and isinstance(m, Resolved):
            target_slot = slot_of.get(m.target_id)
            if target_slot is None:
                raise PlanInvariantError(
                    f"Target {m.target_id!r} of {c.id!r} is not kept before it"
                )
            target_slot.append(Amend(m.target_id, c.id, AmendMode.for_kind(c.kind)))
            continue
        slot: list[RewriteOperation] = [Keep(c.id)]
        slots.append(slot)
        slot_of[c.id] = slot

    operations = tuple(op for slot in slots for op in slot)
    check_plan(operations, (c.id for c in commits))

    plan = RewritePlan(
        base_id=base_id,
        head_id=head_id,
        operations=operations,
        records=MappingProxyType({c.id: c.record for c in commits}),
        warnings=tuple(
            sorted(matches.unresolved, key=lambda u: positions[u.commit_id])
        ),
    )
    logger.debug(
        "Built plan %s with %d operations", plan.plan_hash[:12], len(operations)
    )
    return plan
