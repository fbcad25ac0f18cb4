# porcelain.py -- Programmatic interface to autosquash
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

"""Simple wrapper that provides the operations front-ends need.

Currently implemented:
 * load_and_classify
 * execute
 * abort
 * dry_run

These functions are meant to behave like the commands of a front-end
(``git autosquash``, ``git autosquash --abort``, ``git autosquash -n``) but
take repositories and plans as arguments and return values instead of
printing.

Repositories can be given as a path, a dulwich repository or a backend.
"""

import os
import threading
import weakref
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional, Union

from dulwich.repo import BaseRepo, Repo

from . import log_utils
from .backend import Backend, DulwichBackend
from .checkpoint import CheckpointStore, DiskCheckpointStore, MemoryCheckpointStore
from .classify import classify_all
from .config import AutosquashConfig
from .executor import ExecutionResult, PlanExecutor
from .loader import load_range
from .matcher import match
from .plan import OperationSummary, RewritePlan, build_plan

logger = log_utils.getLogger(__name__)

RepoLike = Union[str, os.PathLike, BaseRepo, Backend]

# Checkpoint stores for repositories without a control directory.
_memory_stores: "weakref.WeakKeyDictionary[BaseRepo, MemoryCheckpointStore]" = (
    weakref.WeakKeyDictionary()
)


@contextmanager
def open_backend(repo: RepoLike) -> Iterator[Backend]:
    """Open a backend for a path, repository or existing backend.

    Repositories opened from a path are closed on exit.
    """
    if isinstance(repo, (str, os.PathLike)):
        r = Repo(os.fspath(repo))
        try:
            yield DulwichBackend(r)
        finally:
            r.close()
    elif isinstance(repo, BaseRepo):
        yield DulwichBackend(repo)
    else:
        yield repo


def default_checkpoint_store(backend: Backend) -> CheckpointStore:
    """Return the checkpoint store used when the caller does not pass one.

    On-disk repositories keep checkpoints in ``autosquash`` under their
    control directory, unless ``autosquash.checkpointDir`` says otherwise.
    """
    config = backend.config()
    if config.checkpoint_dir:
        return DiskCheckpointStore(config.checkpoint_dir)
    repo = getattr(backend, "repo", None)
    if isinstance(repo, Repo):
        return DiskCheckpointStore(os.path.join(repo.controldir(), "autosquash"))
    if isinstance(repo, BaseRepo):
        try:
            return _memory_stores[repo]
        except KeyError:
            store = _memory_stores[repo] = MemoryCheckpointStore()
            return store
    raise ValueError(f"No default checkpoint store for {backend!r}")


def load_and_classify(
    repo: RepoLike,
    old: Optional[Union[str, bytes]],
    new: Union[str, bytes] = b"HEAD",
    config: Optional[AutosquashConfig] = None,
) -> RewritePlan:
    """Build the rewrite plan for ``old..new``.

    Unresolved references are available as ``plan.warnings``.

    Args:
      repo: Path to repository or repository object
      old: Exclusive lower boundary, None to start at the root
      new: Inclusive upper boundary
      config: Settings; read from the repository configuration if None
    Returns: RewritePlan
    Raises:
      RangeError: If the range is invalid
      EmptyRangeError: If the range is empty
      UnsupportedMergeError: If the range contains a merge commit
    """
    with open_backend(repo) as backend:
        if config is None:
            config = backend.config()
        base_id, head_id, records = load_range(backend, old, new)
        commits = classify_all(records, amend_markers=config.amend_markers)
        matches = match(commits, revert_pairs=config.revert_pairs)
        plan = build_plan(commits, matches, base_id, head_id)
    for warning in plan.warnings:
        logger.debug("Unresolved: %s", warning)
    return plan


def execute(
    repo: RepoLike,
    plan: RewritePlan,
    store: Optional[CheckpointStore] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ExecutionResult:
    """Run or resume a rewrite plan.

    Args:
      repo: Path to repository or repository object
      plan: Plan from load_and_classify
      store: Checkpoint store (defaults to default_checkpoint_store)
      cancel_event: Event that stops the run at the next operation boundary
    Returns: ExecutionResult
    """
    with open_backend(repo) as backend:
        if store is None:
            store = default_checkpoint_store(backend)
        return PlanExecutor(backend, store, cancel_event).execute(plan)


def abort(repo: RepoLike, store: Optional[CheckpointStore] = None) -> ExecutionResult:
    """Abandon an in-progress rewrite and restore the original head.

    Raises:
      NoRunInProgress: If no rewrite is in progress
    """
    with open_backend(repo) as backend:
        if store is None:
            store = default_checkpoint_store(backend)
        return PlanExecutor(backend, store).abort()


def dry_run(plan: RewritePlan) -> list[OperationSummary]:
    """Describe what executing a plan would do, without touching anything."""
    return plan.summaries()
