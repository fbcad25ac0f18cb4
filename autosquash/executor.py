# executor.py -- Execute rewrite plans
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

"""Execution of rewrite plans.

The executor runs one operation at a time and persists a checkpoint after
each of them. The checkpoint records the logical position (operation index)
rather than the commit produced, so an operation interrupted before its
checkpoint was written is simply run again. New commits copy all of their
metadata from existing commits, which makes replays produce the same
content.

Branch refs are never touched: the caller gets the new head id and decides
what to do with it.
"""

import dataclasses
import json
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from . import log_utils
from .backend import Backend
from .checkpoint import Checkpoint, CheckpointStore, load_checkpoint, save_checkpoint
from .errors import BackendError, ConflictError, NoRunInProgress
from .objects import CommitRecord
from .plan import Amend, AmendMode, Drop, Keep, RewriteOperation, RewritePlan

logger = log_utils.getLogger(__name__)

COMPLETED_SUFFIX = "#completed"


def _short(commit_id: Optional[bytes]) -> str:
    return "<root>" if commit_id is None else commit_id[:7].decode("ascii")


class ExecutionState(Enum):
    """State of a plan executor."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CONFLICTED = "conflicted"
    ABORTED = "aborted"
    INTERRUPTED = "interrupted"
    FAILED = "failed"


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of running or resuming a plan.

    Attributes:
      state: Final state of the run
      head_id: Tip of the rewritten history (None if it is empty)
      conflict_paths: Conflicted paths when state is CONFLICTED
      index: Index of the operation the run stopped at
    """

    state: ExecutionState
    head_id: Optional[bytes]
    conflict_paths: tuple[bytes, ...] = ()
    index: Optional[int] = None


def amend_message(mode: AmendMode, target: CommitRecord, fixup: CommitRecord) -> bytes:
    """Build the message of an amended commit.

    Args:
      mode: Amendment mode
      target: Current (possibly already amended) target commit
      fixup: Commit being folded in
    Returns: New commit message
    """
    if mode is AmendMode.FIXUP:
        return target.message
    body = fixup.body
    if not body:
        return target.message
    encoding = (target.encoding or b"utf-8").decode("ascii")
    try:
        encoded = body.encode(encoding, "replace")
    except LookupError:
        encoded = body.encode("utf-8")
    if mode is AmendMode.AMEND:
        return encoded + b"\n"
    return target.message.rstrip(b"\n") + b"\n\n" + encoded + b"\n"


class PlanExecutor:
    """Runs a rewrite plan against a backend."""

    def __init__(
        self,
        backend: Backend,
        store: CheckpointStore,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Initialize PlanExecutor.

        Args:
          backend: Repository backend; its working tree is owned by the
            executor for the duration of a run
          store: Store for checkpoints
          cancel_event: Event that requests a stop at the next operation
            boundary
        """
        self.backend = backend
        self.store = store
        self.key = backend.key
        self.state = ExecutionState.IDLE
        self._cancel = cancel_event if cancel_event is not None else threading.Event()

    def cancel(self) -> None:
        """Ask a running plan to stop after the current operation."""
        self._cancel.set()

    def is_in_progress(self) -> bool:
        """Check whether a run is waiting to be resumed or aborted."""
        return self.store.read(self.key) is not None

    def _completed_head(self, plan_hash: str) -> tuple[bool, Optional[bytes]]:
        data = self.store.read(self.key + COMPLETED_SUFFIX)
        if data is None:
            return False, None
        try:
            record = json.loads(data.decode("utf-8"))
        except ValueError:
            return False, None
        if record.get("plan_hash") != plan_hash:
            return False, None
        head = record.get("head_id")
        return True, None if head is None else head.encode("ascii")

    def _record_completion(self, plan_hash: str, head: Optional[bytes]) -> None:
        self.store.write(
            self.key + COMPLETED_SUFFIX,
            json.dumps(
                {
                    "plan_hash": plan_hash,
                    "head_id": None if head is None else head.decode("ascii"),
                }
            ).encode("utf-8"),
        )

    def execute(self, plan: RewritePlan) -> ExecutionResult:
        """Run a plan, or resume it from its checkpoint.

        A checkpoint left by a different plan is discarded and the plan
        starts again from its base.

        Args:
          plan: Plan to execute
        Returns: ExecutionResult
        Raises:
          BackendError: If the backend fails; the checkpoint is kept
        """
        plan_hash = plan.plan_hash
        checkpoint = load_checkpoint(self.store, self.key)

        if checkpoint is not None and checkpoint.plan_hash != plan_hash:
            logger.warning(
                "Discarding checkpoint of plan %s at operation %d",
                checkpoint.plan_hash[:12],
                checkpoint.next_index,
            )
            self.store.delete(self.key)
            checkpoint = None

        if checkpoint is None:
            done, head = self._completed_head(plan_hash)
            if done:
                logger.info("Plan %s already completed", plan_hash[:12])
                self.state = ExecutionState.COMPLETED
                return ExecutionResult(self.state, head)

        self.state = ExecutionState.RUNNING
        try:
            return self._run(plan, checkpoint)
        except Exception:
            self.state = ExecutionState.FAILED
            raise

    def _run(
        self, plan: RewritePlan, checkpoint: Optional[Checkpoint]
    ) -> ExecutionResult:
        plan_hash = plan.plan_hash
        if checkpoint is None:
            logger.info(
                "Rewriting %d operations onto %s",
                len(plan),
                _short(plan.base_id),
            )
            self.store.delete(self.key + COMPLETED_SUFFIX)
            self.backend.checkout(plan.base_id)
            checkpoint = Checkpoint(plan_hash, 0, plan.base_id, plan.head_id)
            save_checkpoint(self.store, self.key, checkpoint)
        else:
            logger.info(
                "Resuming plan %s at operation %d",
                plan_hash[:12],
                checkpoint.next_index,
            )

        if checkpoint.conflict_paths:
            result = self._continue_conflicted(plan, checkpoint)
            if isinstance(result, ExecutionResult):
                return result
            checkpoint = result

        while checkpoint.next_index < len(plan):
            if self._cancel.is_set():
                self._cancel.clear()
                logger.info("Stopped before operation %d", checkpoint.next_index)
                self.state = ExecutionState.INTERRUPTED
                return ExecutionResult(
                    self.state, checkpoint.current_head, index=checkpoint.next_index
                )
            index = checkpoint.next_index
            try:
                new_head = self._apply(plan[index], checkpoint.current_head, index)
            except ConflictError as e:
                return self._stop_on_conflict(checkpoint, e)
            checkpoint = dataclasses.replace(
                checkpoint, next_index=index + 1, current_head=new_head
            )
            save_checkpoint(self.store, self.key, checkpoint)

        return self._complete(plan_hash, checkpoint.current_head)

    def _continue_conflicted(
        self, plan: RewritePlan, checkpoint: Checkpoint
    ) -> Union[ExecutionResult, Checkpoint]:
        index = checkpoint.next_index
        tree_id, remaining = self.backend.resolved_tree(checkpoint.conflict_paths)
        if tree_id is None or remaining:
            logger.info("Operation %d still has %d conflicts", index, len(remaining))
            self.state = ExecutionState.CONFLICTED
            return ExecutionResult(
                self.state, checkpoint.current_head, tuple(remaining), index
            )
        new_head = self._commit(plan[index], checkpoint.current_head, tree_id)
        checkpoint = dataclasses.replace(
            checkpoint, next_index=index + 1, current_head=new_head, conflict_paths=()
        )
        save_checkpoint(self.store, self.key, checkpoint)
        return checkpoint

    def _stop_on_conflict(
        self, checkpoint: Checkpoint, error: ConflictError
    ) -> ExecutionResult:
        index = checkpoint.next_index
        conflicts = error.conflict_paths
        logger.warning(
            "Operation %d conflicts in %s",
            index,
            ", ".join(p.decode("utf-8", "replace") for p in conflicts),
        )
        if error.tree_id is not None:
            self.backend.show_conflicts(error.tree_id)
        checkpoint = dataclasses.replace(checkpoint, conflict_paths=tuple(conflicts))
        save_checkpoint(self.store, self.key, checkpoint)
        self.state = ExecutionState.CONFLICTED
        return ExecutionResult(
            self.state, checkpoint.current_head, tuple(conflicts), index
        )

    def _complete(self, plan_hash: str, head: Optional[bytes]) -> ExecutionResult:
        self.backend.checkout(head)
        self._record_completion(plan_hash, head)
        self.store.delete(self.key)
        self.state = ExecutionState.COMPLETED
        logger.info(
            "Rewrite complete, new head %s",
            head.decode("ascii") if head is not None else "<empty>",
        )
        return ExecutionResult(self.state, head)

    def _apply(
        self, op: RewriteOperation, head: Optional[bytes], index: int
    ) -> Optional[bytes]:
        """Apply one operation on top of head.

        Returns: New head
        Raises:
          ConflictError: If the operation conflicts
        """
        if isinstance(op, Drop):
            logger.debug("Dropping %s", _short(op.commit_id))
            return head
        if isinstance(op, Keep):
            record = self.backend.read_commit(op.commit_id)
            if record.parent_ids == ((head,) if head is not None else ()):
                logger.debug("Keeping %s unchanged", _short(op.commit_id))
                return op.commit_id
            tree_id, conflicts = self.backend.pick(op.commit_id, head)
        elif isinstance(op, Amend):
            if head is None:
                raise BackendError(f"No commit to amend with {op.fixup_id!r}")
            tree_id, conflicts = self.backend.pick(op.fixup_id, head)
        else:
            raise TypeError(f"Unknown operation {op!r}")
        if conflicts:
            raise ConflictError(conflicts, index, tree_id)
        return self._commit(op, head, tree_id)

    def _commit(
        self, op: RewriteOperation, head: Optional[bytes], tree_id: bytes
    ) -> Optional[bytes]:
        """Create the commit for an applied operation."""
        if isinstance(op, Drop):
            return head
        if isinstance(op, Keep):
            record = self.backend.read_commit(op.commit_id)
            new_id = self.backend.create_commit(
                tree_id,
                [head] if head is not None else [],
                record.author,
                record.committer,
                record.message,
                record.encoding,
            )
            logger.debug("Replayed %s as %s", _short(op.commit_id), _short(new_id))
            return new_id
        assert head is not None
        target = self.backend.read_commit(head)
        fixup = self.backend.read_commit(op.fixup_id)
        if op.mode is AmendMode.FIXUP and tree_id == target.tree_id:
            logger.debug("Fixup %s changes nothing", _short(op.fixup_id))
            return head
        new_id = self.backend.create_commit(
            tree_id,
            target.parent_ids,
            target.author,
            target.committer,
            amend_message(op.mode, target, fixup),
            target.encoding,
        )
        logger.debug(
            "Folded %s into %s as %s",
            _short(op.fixup_id),
            _short(op.target_id),
            _short(new_id),
        )
        return new_id

    def abort(self) -> ExecutionResult:
        """Abandon the run in progress and restore the original head.

        Raises:
          NoRunInProgress: If there is no checkpoint
        """
        checkpoint = load_checkpoint(self.store, self.key)
        if checkpoint is None:
            raise NoRunInProgress("No rewrite in progress")
        self.backend.checkout(checkpoint.original_head)
        self.store.delete(self.key)
        self.state = ExecutionState.ABORTED
        logger.info("Rewrite aborted, restored %s", _short(checkpoint.original_head))
        return ExecutionResult(self.state, checkpoint.original_head)
