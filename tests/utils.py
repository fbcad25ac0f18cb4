# utils.py -- Test utilities for autosquash
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


"""Utility functions common to autosquash tests."""

from collections import Counter
from collections.abc import Mapping, Sequence
from typing import Optional, Union

from dulwich.objects import Blob, Commit, Tree
from dulwich.repo import BaseRepo

from autosquash.backend import DulwichBackend
from autosquash.errors import BackendError

DEFAULT_TIME = 1262304000  # 2010-01-01
AUTHOR = b"Test Author <test@nodomain.com>"
COMMITTER = b"Test Committer <test@nodomain.com>"

FileSpec = Mapping[bytes, Optional[bytes]]
CommitSpec = Union[tuple[str, FileSpec], tuple[str, FileSpec, Sequence[bytes]]]


def make_commit(**attrs) -> Commit:
    """Make a Commit object with a default set of members.

    Args:
      attrs: dict of attributes to overwrite from the default values
    Returns: A newly initialized Commit object
    """
    all_attrs = {
        "author": AUTHOR,
        "author_time": DEFAULT_TIME,
        "author_timezone": 0,
        "committer": COMMITTER,
        "commit_time": DEFAULT_TIME,
        "commit_timezone": 0,
        "message": b"Test message.",
        "parents": [],
        "tree": Tree().id,
    }
    all_attrs.update(attrs)
    commit = Commit()
    for name, value in all_attrs.items():
        setattr(commit, name, value)
    return commit


def make_tree(repo: BaseRepo, files: Mapping[bytes, bytes]) -> Tree:
    """Store a flat tree with the given file contents."""
    tree = Tree()
    for path, content in sorted(files.items()):
        blob = Blob.from_string(content)
        repo.object_store.add_object(blob)
        tree.add(path, 0o100644, blob.id)
    repo.object_store.add_object(tree)
    return tree


def tree_contents(repo: BaseRepo, commit_id: bytes) -> dict[bytes, bytes]:
    """Return the files of a commit's (flat) tree."""
    tree = repo[repo[commit_id].tree]
    return {entry.path: repo[entry.sha].data for entry in tree.items()}


def build_history(
    repo: BaseRepo,
    specs: Sequence[CommitSpec],
    branch: bytes = b"refs/heads/master",
    parent: Optional[bytes] = None,
) -> list[bytes]:
    """Build a linear history on a branch.

    Each spec is ``(message, files)``; files map paths to new contents, or to
    None to delete them, relative to the previous commit. An optional third
    element gives explicit parents, which allows building merges.

    Returns: Commit ids, oldest first
    """
    files: dict[bytes, bytes] = {}
    if parent is not None:
        files = tree_contents(repo, parent)
    ids = []
    for i, spec in enumerate(specs):
        message, changes = spec[0], spec[1]
        for path, content in changes.items():
            if content is None:
                files.pop(path, None)
            else:
                files[path] = content
        tree = make_tree(repo, files)
        if len(spec) > 2:
            parents = list(spec[2])  # type: ignore[misc]
        else:
            parents = [parent] if parent is not None else []
        commit = make_commit(
            tree=tree.id,
            parents=parents,
            message=message.encode("utf-8"),
            author_time=DEFAULT_TIME + 60 * i,
            commit_time=DEFAULT_TIME + 60 * i,
        )
        repo.object_store.add_object(commit)
        ids.append(commit.id)
        parent = commit.id
    if ids:
        repo.refs[branch] = ids[-1]
        repo.refs.set_symbolic_ref(b"HEAD", branch)
    return ids


def first_parent_log(
    repo: BaseRepo, head: bytes, stop: Optional[bytes]
) -> list[Commit]:
    """Return the commits from head back to (excluding) stop, oldest first."""
    commits = []
    current: Optional[bytes] = head
    while current is not None and current != stop:
        commit = repo[current]
        commits.append(commit)
        current = commit.parents[0] if commit.parents else None
    commits.reverse()
    return commits


class CountingBackend(DulwichBackend):
    """Backend that counts mutating calls and can be told to fail."""

    def __init__(self, repo, fail_on_pick=False):
        super().__init__(repo)
        self.calls = Counter()
        self.fail_on_pick = fail_on_pick

    def pick(self, commit_id, onto):
        self.calls["pick"] += 1
        if self.fail_on_pick:
            raise BackendError("simulated failure")
        return super().pick(commit_id, onto)

    def checkout(self, commit_id):
        self.calls["checkout"] += 1
        return super().checkout(commit_id)

    def create_commit(self, *args, **kwargs):
        self.calls["create_commit"] += 1
        return super().create_commit(*args, **kwargs)
