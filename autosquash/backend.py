# backend.py -- Version control backend for autosquash
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

"""Version control backend.

The engine only talks to history through the :class:`Backend` protocol.
:class:`DulwichBackend` implements it for dulwich repositories, both on disk
(:class:`dulwich.repo.Repo`) and in memory (:class:`dulwich.repo.MemoryRepo`).
Only objects are written; refs are never updated by the backend.
"""

import os
from collections.abc import Sequence
from stat import S_ISREG
from typing import Optional, Protocol, Union

from dulwich import porcelain
from dulwich.errors import NotCommitError
from dulwich.graph import can_fast_forward
from dulwich.index import commit_tree
from dulwich.merge import Merger
from dulwich.object_store import iter_tree_contents
from dulwich.objects import Blob, Commit, Tree
from dulwich.objectspec import parse_commit
from dulwich.repo import BaseRepo, Repo

from . import log_utils
from .config import AutosquashConfig
from .errors import BackendError
from .objects import CommitRecord, Identity

logger = log_utils.getLogger(__name__)

CONFLICT_MARKERS = (b"<<<<<<< ", b">>>>>>> ")


class Backend(Protocol):
    """Operations the engine needs from a repository."""

    key: str

    def resolve(self, committish: Union[str, bytes]) -> bytes:
        """Resolve a committish to a commit id; raises KeyError if unknown."""
        ...

    def read_commit(self, commit_id: bytes) -> CommitRecord:
        """Read a commit as a record (with an unset position)."""
        ...

    def is_ancestor(self, ancestor: bytes, descendant: bytes) -> bool:
        """Check whether ancestor is reachable from descendant."""
        ...

    def pick(
        self, commit_id: bytes, onto: Optional[bytes]
    ) -> tuple[bytes, list[bytes]]:
        """Apply the change introduced by commit_id on top of onto.

        Returns:
          Tuple of (tree id, conflicted paths). The tree is stored even when
          there are conflicts; conflicted files carry merge markers.
        """
        ...

    def tree_of(self, commit_id: Optional[bytes]) -> bytes:
        """Return the tree id of a commit, or of the empty tree for None."""
        ...

    def create_commit(
        self,
        tree_id: bytes,
        parent_ids: Sequence[bytes],
        author: Identity,
        committer: Identity,
        message: bytes,
        encoding: Optional[bytes] = None,
    ) -> bytes:
        """Store a new commit object and return its id."""
        ...

    def checkout(self, commit_id: Optional[bytes]) -> None:
        """Make the index and working tree reflect a commit."""
        ...

    def show_conflicts(self, tree_id: bytes) -> None:
        """Make the index and working tree reflect a conflicted tree."""
        ...

    def record_resolution(self, tree_id: bytes) -> None:
        """Register the resolved tree for repositories without a working tree."""
        ...

    def resolved_tree(
        self, conflict_paths: Sequence[bytes]
    ) -> tuple[Optional[bytes], list[bytes]]:
        """Collect a conflict resolution made outside the engine.

        Paths are still conflicted while their contents carry merge markers.
        Modify/delete and mode conflicts carry no markers, so they count as
        resolved with whatever the working tree (or recorded tree) holds,
        which is the modified side unless the user changed it.

        Returns:
          Tuple of (tree id or None, paths that are still conflicted)
        """
        ...

    def config(self) -> AutosquashConfig:
        """Return the engine settings for this repository."""
        ...


def has_conflict_markers(data: bytes) -> bool:
    """Check whether blob contents still carry merge conflict markers."""
    return any(line.startswith(CONFLICT_MARKERS) for line in data.splitlines())


class DulwichBackend:
    """Backend operating on a dulwich repository."""

    def __init__(self, repo: BaseRepo) -> None:
        """Initialize DulwichBackend.

        Args:
          repo: Repository to read from and write objects to
        """
        self.repo = repo
        self.object_store = repo.object_store
        if isinstance(repo, Repo):
            self.key = os.path.abspath(repo.path)
        else:
            self.key = f"memory:{id(repo):x}"
        self._resolution: Optional[bytes] = None

    @classmethod
    def open(cls, path: str) -> "DulwichBackend":
        """Open the repository at path."""
        return cls(Repo(path))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.key!r})"

    @property
    def has_worktree(self) -> bool:
        """Whether conflicts are resolved in a working tree."""
        return isinstance(self.repo, Repo) and not self.repo.bare

    def config(self) -> AutosquashConfig:
        """Read the engine settings from the repository configuration stack."""
        return AutosquashConfig.from_config(self.repo.get_config_stack())

    def resolve(self, committish: Union[str, bytes]) -> bytes:
        """Resolve a committish to a commit id.

        Raises:
          KeyError: If committish does not name a commit
        """
        try:
            return parse_commit(self.repo, committish).id
        except (KeyError, NotCommitError, ValueError) as e:
            raise KeyError(committish) from e

    def _commit(self, commit_id: bytes) -> Commit:
        try:
            obj = self.repo[commit_id]
        except KeyError as e:
            raise BackendError(f"Missing commit {commit_id!r}") from e
        if not isinstance(obj, Commit):
            raise BackendError(
                f"Expected commit {commit_id!r}, got {type(obj).__name__}"
            )
        return obj

    def read_commit(self, commit_id: bytes) -> CommitRecord:
        """Read a commit as a record (with an unset position).

        Raises:
          BackendError: If the commit is missing or not a commit
        """
        commit = self._commit(commit_id)
        return CommitRecord(
            id=commit.id,
            parent_ids=tuple(commit.parents),
            author=Identity.from_raw(
                commit.author, commit.author_time, commit.author_timezone
            ),
            committer=Identity.from_raw(
                commit.committer, commit.commit_time, commit.commit_timezone
            ),
            message=commit.message,
            tree_id=commit.tree,
            encoding=commit.encoding,
        )

    def is_ancestor(self, ancestor: bytes, descendant: bytes) -> bool:
        """Check whether ancestor is reachable from descendant."""
        return can_fast_forward(self.repo, ancestor, descendant)

    def _empty_tree(self) -> Tree:
        tree = Tree()
        self.object_store.add_object(tree)
        return tree

    def tree_of(self, commit_id: Optional[bytes]) -> bytes:
        """Return the tree id of a commit, or of the empty tree for None."""
        if commit_id is None:
            return self._empty_tree().id
        return self._commit(commit_id).tree

    def _tree(self, tree_id: bytes) -> Tree:
        obj = self.object_store[tree_id]
        if not isinstance(obj, Tree):
            raise BackendError(f"Expected tree {tree_id!r}, got {type(obj).__name__}")
        return obj

    def _flatten(self, tree_id: Optional[bytes]) -> dict[bytes, tuple[int, bytes]]:
        if tree_id is None:
            return {}
        return {
            entry.path: (entry.mode, entry.sha)
            for entry in iter_tree_contents(self.object_store, tree_id)
        }

    def _blob(self, entry: Optional[tuple[int, bytes]]) -> Optional[Blob]:
        if entry is None:
            return None
        obj = self.object_store[entry[1]]
        return obj if isinstance(obj, Blob) else None

    def _merge_path(
        self,
        merger: Merger,
        path: bytes,
        base: Optional[tuple[int, bytes]],
        ours: Optional[tuple[int, bytes]],
        theirs: Optional[tuple[int, bytes]],
    ) -> tuple[Optional[tuple[int, bytes]], bool]:
        if ours == theirs or base == theirs:
            return ours, False
        if base == ours:
            return theirs, False
        if ours is None or theirs is None:
            # Modified on one side, deleted on the other
            return ours or theirs, True
        if ours[0] != theirs[0] or not S_ISREG(ours[0]):
            return ours, True
        merged, had_conflicts = merger.merge_blobs(
            self._blob(base), self._blob(ours), self._blob(theirs), path
        )
        blob = Blob.from_string(merged)
        self.object_store.add_object(blob)
        return (ours[0], blob.id), had_conflicts

    def pick(
        self, commit_id: bytes, onto: Optional[bytes]
    ) -> tuple[bytes, list[bytes]]:
        """Apply the change introduced by commit_id on top of onto.

        Every path is merged three-way against the parent of commit_id.
        Paths changed on only one side take that side; content conflicts get
        merge markers; modify/delete and mode conflicts keep the side that
        still has the entry.

        Args:
          commit_id: Commit to apply; must have at most one parent
          onto: Commit to apply on, None for the empty tree
        Returns:
          Tuple of (tree id, conflicted paths)
        Raises:
          BackendError: If commit_id is a merge or objects are missing
        """
        commit = self._commit(commit_id)
        if len(commit.parents) > 1:
            raise BackendError(f"Cannot apply merge commit {commit_id!r}")
        base_tree = self._commit(commit.parents[0]).tree if commit.parents else None
        try:
            base = self._flatten(base_tree)
            ours = self._flatten(self.tree_of(onto))
            theirs = self._flatten(commit.tree)
            merger = Merger(self.object_store)
            entries = []
            conflicts = []
            for path in sorted(set(base) | set(ours) | set(theirs)):
                result, conflicted = self._merge_path(
                    merger, path, base.get(path), ours.get(path), theirs.get(path)
                )
                if conflicted:
                    conflicts.append(path)
                if result is not None:
                    entries.append((path, result[1], result[0]))
            tree_id = commit_tree(self.object_store, entries)
        except KeyError as e:
            raise BackendError(f"Failed to apply {commit_id!r}: {e}") from e
        if conflicts:
            logger.debug(
                "Applying %s onto %s conflicts in %d paths",
                commit_id[:7].decode("ascii"),
                (onto or b"<root>")[:7].decode("ascii"),
                len(conflicts),
            )
        return tree_id, conflicts

    def create_commit(
        self,
        tree_id: bytes,
        parent_ids: Sequence[bytes],
        author: Identity,
        committer: Identity,
        message: bytes,
        encoding: Optional[bytes] = None,
    ) -> bytes:
        """Store a new commit object and return its id.

        All metadata is taken from the arguments, so the same arguments
        always produce the same id.
        """
        new_commit = Commit()
        new_commit.tree = tree_id
        new_commit.parents = list(parent_ids)
        new_commit.author = author.as_raw()
        new_commit.author_time = author.timestamp
        new_commit.author_timezone = author.timezone
        new_commit.committer = committer.as_raw()
        new_commit.commit_time = committer.timestamp
        new_commit.commit_timezone = committer.timezone
        new_commit.message = message
        if encoding is not None:
            new_commit.encoding = encoding
        self.object_store.add_object(new_commit)
        return new_commit.id

    def _tracked_paths(self) -> set[bytes]:
        try:
            index = self.repo.open_index()
        except OSError as e:
            raise BackendError(f"Unable to open index: {e}") from e
        return set(index.paths())

    def _materialize(self, tree_id: bytes) -> None:
        if not self.has_worktree:
            return
        assert isinstance(self.repo, Repo)
        before = self._tracked_paths()
        try:
            self.repo.get_worktree().reset_index(tree_id)
        except OSError as e:
            raise BackendError(f"Unable to update working tree: {e}") from e
        after = self._tracked_paths()
        root = os.fsencode(self.repo.path)
        for path in before - after:
            try:
                os.unlink(os.path.join(root, path))
            except FileNotFoundError:
                pass

    def checkout(self, commit_id: Optional[bytes]) -> None:
        """Make the index and working tree reflect a commit.

        Does nothing for repositories without a working tree.
        """
        self._resolution = None
        self._materialize(self.tree_of(commit_id))

    def show_conflicts(self, tree_id: bytes) -> None:
        """Write a conflicted tree to the index and working tree."""
        self._resolution = None
        self._materialize(tree_id)

    def record_resolution(self, tree_id: bytes) -> None:
        """Register the resolved tree for repositories without a working tree.

        Raises:
          BackendError: If tree_id is not a tree
        """
        self._tree(tree_id)
        self._resolution = tree_id

    def _stage(self, paths: Sequence[bytes]) -> bytes:
        assert isinstance(self.repo, Repo)
        root = os.fsencode(self.repo.path)
        present = [p for p in paths if os.path.lexists(os.path.join(root, p))]
        missing = [p for p in paths if p not in present]
        try:
            if present:
                porcelain.add(
                    self.repo,
                    paths=[os.fsdecode(os.path.join(root, p)) for p in present],
                )
            index = self.repo.open_index()
            for path in missing:
                if path in index:
                    del index[path]
            index.write()
            return index.commit(self.object_store)
        except OSError as e:
            raise BackendError(f"Unable to stage resolution: {e}") from e

    def resolved_tree(
        self, conflict_paths: Sequence[bytes]
    ) -> tuple[Optional[bytes], list[bytes]]:
        """Collect the resolution of a conflicted operation.

        With a working tree, the conflicted paths are staged from it;
        otherwise the tree given to :meth:`record_resolution` is used.
        Modify/delete and mode conflicts have no markers and are taken as
        they stand, so leaving such a path untouched keeps the side shown by
        :meth:`show_conflicts`.

        Args:
          conflict_paths: Paths that conflicted
        Returns:
          Tuple of (tree id or None, paths still carrying conflict markers)
        """
        if self.has_worktree:
            tree_id: Optional[bytes] = self._stage(conflict_paths)
        else:
            tree_id = self._resolution
        if tree_id is None:
            return None, list(conflict_paths)
        tree = self._tree(tree_id)
        remaining = []
        for path in conflict_paths:
            try:
                _mode, sha = tree.lookup_path(self.object_store.__getitem__, path)
            except KeyError:
                continue
            blob = self.object_store[sha]
            if isinstance(blob, Blob) and has_conflict_markers(blob.data):
                remaining.append(path)
        return tree_id, remaining
