# checkpoint.py -- Persistent progress of a rewrite
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

"""Checkpoints and the stores that hold them."""

import hashlib
import json
import os
from dataclasses import dataclass
from typing import Optional, Protocol

from dulwich.file import FileLocked, GitFile, ensure_dir_exists

from .errors import CheckpointError


@dataclass(frozen=True)
class Checkpoint:
    """Progress of a rewrite run.

    Attributes:
      plan_hash: Hash of the plan being executed
      next_index: Index of the next operation to run
      current_head: Tip of the rewritten history so far (None while the
        history is still empty)
      original_head: Head of the original range, restored on abort
      conflict_paths: Paths in conflict at next_index, empty otherwise
    """

    plan_hash: str
    next_index: int
    current_head: Optional[bytes]
    original_head: bytes
    conflict_paths: tuple[bytes, ...] = ()

    def to_bytes(self) -> bytes:
        """Serialize the checkpoint."""

        def ascii_or_none(value: Optional[bytes]) -> Optional[str]:
            return None if value is None else value.decode("ascii")

        return json.dumps(
            {
                "plan_hash": self.plan_hash,
                "next_index": self.next_index,
                "current_head": ascii_or_none(self.current_head),
                "original_head": ascii_or_none(self.original_head),
                "conflict_paths": [
                    os.fsdecode(p) for p in self.conflict_paths
                ],
            },
            sort_keys=True,
        ).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "Checkpoint":
        """Parse a serialized checkpoint.

        Raises:
          CheckpointError: If the data is not a valid checkpoint
        """
        try:
            raw = json.loads(data.decode("utf-8"))
            current_head = raw["current_head"]
            return cls(
                plan_hash=str(raw["plan_hash"]),
                next_index=int(raw["next_index"]),
                current_head=(
                    None if current_head is None else current_head.encode("ascii")
                ),
                original_head=raw["original_head"].encode("ascii"),
                conflict_paths=tuple(
                    os.fsencode(p) for p in raw.get("conflict_paths", [])
                ),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise CheckpointError(f"Malformed checkpoint: {e}") from e


class CheckpointStore(Protocol):
    """Key-value byte store with atomic replacement."""

    def read(self, key: str) -> Optional[bytes]:
        """Return the value for key, or None if there is none."""
        ...

    def write(self, key: str, data: bytes) -> None:
        """Atomically replace the value for key."""
        ...

    def delete(self, key: str) -> None:
        """Remove the value for key, if any."""
        ...


class MemoryCheckpointStore:
    """Checkpoint store kept in memory."""

    def __init__(self) -> None:
        self._values: dict[str, bytes] = {}

    def read(self, key: str) -> Optional[bytes]:
        """Return the data stored under key, or None."""
        return self._values.get(key)

    def write(self, key: str, data: bytes) -> None:
        """Store data under key, replacing any previous value."""
        self._values[key] = bytes(data)

    def delete(self, key: str) -> None:
        """Remove key; missing keys are ignored."""
        self._values.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._values


class DiskCheckpointStore:
    """Checkpoint store keeping one file per key in a directory.

    Files are written through :func:`dulwich.file.GitFile`, which writes a
    ``.lock`` file and renames it into place, so readers never see a
    partially written checkpoint.
    """

    def __init__(self, path: str) -> None:
        """Initialize DiskCheckpointStore.

        Args:
          path: Directory to keep checkpoint files in
        """
        self.path = path

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.path!r})"

    def _filename(self, key: str) -> str:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return os.path.join(self.path, digest)

    def read(self, key: str) -> Optional[bytes]:
        """Return the data stored under key, or None if there is none.

        Raises:
          CheckpointError: If the file exists but cannot be read
        """
        try:
            with GitFile(self._filename(key), "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CheckpointError(f"Unable to read checkpoint: {e}") from e

    def write(self, key: str, data: bytes) -> None:
        """Atomically replace the data stored under key.

        Raises:
          CheckpointError: If another writer holds the lock, or on I/O errors
        """
        try:
            ensure_dir_exists(self.path)
            with GitFile(self._filename(key), "wb") as f:
                f.write(data)
        except FileLocked as e:
            raise CheckpointError(
                f"Checkpoint for {key!r} is locked by another writer"
            ) from e
        except OSError as e:
            raise CheckpointError(f"Unable to write checkpoint: {e}") from e

    def delete(self, key: str) -> None:
        """Remove key; missing keys are ignored."""
        try:
            os.remove(self._filename(key))
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CheckpointError(f"Unable to remove checkpoint: {e}") from e


def load_checkpoint(store: CheckpointStore, key: str) -> Optional[Checkpoint]:
    """Read and parse the checkpoint for key, if any."""
    data = store.read(key)
    if data is None:
        return None
    return Checkpoint.from_bytes(data)


def save_checkpoint(store: CheckpointStore, key: str, checkpoint: Checkpoint) -> None:
    """Persist a checkpoint for key."""
    store.write(key, checkpoint.to_bytes())
