# objects.py -- Commit records used by autosquash
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

"""Immutable views of historical commits."""

import re
from dataclasses import dataclass
from typing import Optional

_IDENTITY_RE = re.compile(rb"^(.*?)\s*<(.*)>\s*$")

# Identities are decoded with surrogateescape so that they survive a
# round trip even when they are not valid UTF-8.
_IDENTITY_ERRORS = "surrogateescape"


@dataclass(frozen=True)
class Identity:
    """Author or committer of a commit."""

    name: str
    email: str
    timestamp: int
    timezone: int

    @classmethod
    def from_raw(cls, raw: bytes, timestamp: int, timezone: int) -> "Identity":
        """Parse a ``Name <email>`` identity line.

        Args:
          raw: Identity as stored in the commit object
          timestamp: Seconds since the epoch
          timezone: Offset from UTC in seconds
        Returns: Identity instance
        """
        m = _IDENTITY_RE.match(raw)
        if m is None:
            name, email = raw, b""
        else:
            name, email = m.group(1), m.group(2)
        return cls(
            name=name.decode("utf-8", _IDENTITY_ERRORS),
            email=email.decode("utf-8", _IDENTITY_ERRORS),
            timestamp=timestamp,
            timezone=timezone,
        )

    def as_raw(self) -> bytes:
        """Return the identity in ``Name <email>`` form."""
        return f"{self.name} <{self.email}>".encode("utf-8", _IDENTITY_ERRORS)


def split_message(message: str) -> tuple[str, str]:
    """Split a commit message into subject line and body.

    The subject is the first line. The body is everything after the first
    blank line following it, without surrounding blank lines.
    """
    lines = message.splitlines()
    if not lines:
        return "", ""
    subject = lines[0].strip()
    rest = lines[1:]
    while rest and not rest[0].strip():
        rest.pop(0)
    while rest and not rest[-1].strip():
        rest.pop()
    return subject, "\n".join(rest)


@dataclass(frozen=True)
class CommitRecord:
    """One commit of the range being rewritten.

    Records are never modified; rewriting always creates new commits.
    """

    id: bytes
    parent_ids: tuple[bytes, ...]
    author: Identity
    committer: Identity
    message: bytes
    tree_id: bytes
    encoding: Optional[bytes] = None
    position: int = -1

    def _decoded_message(self) -> str:
        encoding = (self.encoding or b"utf-8").decode("ascii", "replace")
        try:
            return self.message.decode(encoding, "replace")
        except LookupError:
            return self.message.decode("utf-8", "replace")

    @property
    def subject(self) -> str:
        """First line of the commit message."""
        return split_message(self._decoded_message())[0]

    @property
    def body(self) -> str:
        """Commit message without its subject line."""
        return split_message(self._decoded_message())[1]

    @property
    def short_id(self) -> str:
        """Abbreviated commit id, for messages."""
        return self.id[:7].decode("ascii")
