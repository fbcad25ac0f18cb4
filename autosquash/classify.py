# classify.py -- Classify commits by their subject line
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

"""Commit classification.

Each commit is labelled from its subject line:

* ``fixup! <subject>`` amends an earlier commit, keeping its message
* ``squash! <subject>`` amends an earlier commit, merging messages
* ``amend! <subject>`` amends an earlier commit, replacing its message
* ``Revert "<subject>"`` undoes an earlier commit
* anything else is a normal commit
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import UnsupportedMergeError
from .objects import CommitRecord

_MARKER_RE = re.compile(r"^(fixup|squash|amend)!(?:\s+|$)")
_REVERT_RE = re.compile(r'^Revert "(.*)"(?:\s*\([^()]*\))?$')
_REVERTS_COMMIT_RE = re.compile(r"This reverts commit ([0-9a-f]{7,64})")


class CommitKind(Enum):
    """Kind of a commit in the range being rewritten."""

    NORMAL = "normal"
    FIXUP = "fixup"
    SQUASH = "squash"
    AMEND = "amend"
    REVERT = "revert"

    @property
    def is_amendment(self) -> bool:
        """Whether commits of this kind fold into an earlier commit."""
        return self in (CommitKind.FIXUP, CommitKind.SQUASH, CommitKind.AMEND)


@dataclass(frozen=True)
class ClassifiedCommit:
    """A commit record together with its kind.

    Attributes:
      record: The commit
      kind: Kind derived from the subject line
      target_key: Normalized subject this commit refers to; for normal
        commits, their own normalized subject
      own_key: Normalized subject of the commit itself
      reverted_id: Commit id named by a "This reverts commit" line, if any
    """

    record: CommitRecord
    kind: CommitKind
    target_key: str
    own_key: str
    reverted_id: Optional[bytes] = None

    @property
    def id(self) -> bytes:
        return self.record.id

    @property
    def position(self) -> int:
        return self.record.position


def normalize_subject(subject: str) -> str:
    """Trim a subject and collapse whitespace runs to a single space."""
    return " ".join(subject.split())


def strip_markers(subject: str) -> tuple[Optional[str], str]:
    """Strip autosquash markers from a subject.

    Nested markers (``fixup! fixup! foo``) are removed down to the innermost
    subject.

    Returns:
      Tuple of (outermost marker or None, remaining subject)
    """
    outer = None
    m = _MARKER_RE.match(subject)
    while m is not None:
        if outer is None:
            outer = m.group(1)
        subject = subject[m.end() :]
        m = _MARKER_RE.match(subject)
    return outer, subject


def classify(record: CommitRecord, amend_markers: bool = True) -> ClassifiedCommit:
    """Classify a single commit.

    Args:
      record: Commit to classify
      amend_markers: Whether ``amend!`` subjects are honoured
    Returns: ClassifiedCommit
    Raises:
      UnsupportedMergeError: If the commit has more than one parent
    """
    if len(record.parent_ids) > 1:
        raise UnsupportedMergeError(record.id, len(record.parent_ids))

    subject = normalize_subject(record.subject)
    marker, rest = strip_markers(subject)
    if marker == "amend" and not amend_markers:
        marker = None

    if marker is not None:
        kind = {
            "fixup": CommitKind.FIXUP,
            "squash": CommitKind.SQUASH,
            "amend": CommitKind.AMEND,
        }[marker]
        return ClassifiedCommit(record, kind, normalize_subject(rest), subject)

    m = _REVERT_RE.match(subject)
    if m is not None:
        reverted_id = None
        ref = _REVERTS_COMMIT_RE.search(record.body)
        if ref is not None:
            reverted_id = ref.group(1).encode("ascii")
        return ClassifiedCommit(
            record,
            CommitKind.REVERT,
            normalize_subject(m.group(1)),
            subject,
            reverted_id,
        )

    return ClassifiedCommit(record, CommitKind.NORMAL, subject, subject)


def classify_all(
    records: Iterable[CommitRecord], amend_markers: bool = True
) -> tuple[ClassifiedCommit, ...]:
    """Classify every commit of a range.

    The whole range is checked for merge commits before anything else is
    done with it.
    """
    records = tuple(records)
    for record in records:
        if len(record.parent_ids) > 1:
            raise UnsupportedMergeError(record.id, len(record.parent_ids))
    return tuple(classify(record, amend_markers) for record in records)
