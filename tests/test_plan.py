# test_plan.py -- Tests for rewrite plans
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


"""Tests for autosquash.plan."""

from autosquash.classify import classify_all
from autosquash.errors import PlanInvariantError
from autosquash.matcher import UnresolvedReason, match
from autosquash.objects import CommitRecord, Identity
from autosquash.plan import (
    Amend,
    AmendMode,
    Drop,
    Keep,
    OperationSummary,
    RewritePlan,
    build_plan,
    check_plan,
    parse_operation,
)

from . import TestCase

IDENT = Identity("Test Author", "test@nodomain.com", 1262304000, 0)
BASE = b"f" * 40


def commit_id(n):
    return (b"%02x" % n) * 20


def plan_for(*messages):
    records = [
        CommitRecord(
            id=commit_id(i),
            parent_ids=(commit_id(i - 1) if i else BASE,),
            author=IDENT,
            committer=IDENT,
            message=message.encode("utf-8"),
            tree_id=b"e" * 40,
            position=i,
        )
        for i, message in enumerate(messages)
    ]
    commits = classify_all(records)
    return build_plan(commits, match(commits), BASE, records[-1].id)


class BuildPlanTests(TestCase):
    def test_all_normal(self):
        plan = plan_for("A", "B", "C")
        self.assertEqual(
            (Keep(commit_id(0)), Keep(commit_id(1)), Keep(commit_id(2))),
            plan.operations,
        )
        self.assertEqual((), plan.warnings)
        self.assertEqual(BASE, plan.base_id)
        self.assertEqual(commit_id(2), plan.head_id)

    def test_fixup_moves_after_target(self):
        plan = plan_for("Add feature", "Add other", "fixup! Add feature")
        self.assertEqual(
            (
                Keep(commit_id(0)),
                Amend(commit_id(0), commit_id(2), AmendMode.FIXUP),
                Keep(commit_id(1)),
            ),
            plan.operations,
        )

    def test_amendments_keep_their_order(self):
        plan = plan_for(
            "A", "squash! A\n\nMore", "B", "fixup! A", "amend! A\n\nBetter A"
        )
        self.assertEqual(
            (
                Keep(commit_id(0)),
                Amend(commit_id(0), commit_id(1), AmendMode.SQUASH),
                Amend(commit_id(0), commit_id(3), AmendMode.FIXUP),
                Amend(commit_id(0), commit_id(4), AmendMode.AMEND),
                Keep(commit_id(2)),
            ),
            plan.operations,
        )

    def test_revert_pair_dropped(self):
        plan = plan_for("C: do X", "Other", 'Revert "C: do X"')
        self.assertEqual(
            (Drop(commit_id(0)), Keep(commit_id(1)), Drop(commit_id(2))),
            plan.operations,
        )

    def test_unresolved_fixup_kept_in_place(self):
        plan = plan_for("A", "fixup! Missing", "B")
        self.assertEqual(
            (Keep(commit_id(0)), Keep(commit_id(1)), Keep(commit_id(2))),
            plan.operations,
        )
        self.assertEqual(1, len(plan.warnings))
        self.assertEqual(commit_id(1), plan.warnings[0].commit_id)
        self.assertEqual(UnresolvedReason.NO_CANDIDATE, plan.warnings[0].reason)

    def test_fixup_of_dropped_commit_kept(self):
        plan = plan_for("Try caching", "fixup! Try caching", 'Revert "Try caching"')
        self.assertEqual(
            (Drop(commit_id(0)), Keep(commit_id(1)), Drop(commit_id(2))),
            plan.operations,
        )
        self.assertEqual(
            [UnresolvedReason.TARGET_CONSUMED], [w.reason for w in plan.warnings]
        )

    def test_warnings_in_history_order(self):
        plan = plan_for("fixup! One", 'Revert "Two"', "squash! Three")
        self.assertEqual(
            [commit_id(0), commit_id(1), commit_id(2)],
            [w.commit_id for w in plan.warnings],
        )

    def test_every_commit_covered_once(self):
        plan = plan_for(
            "A", "B", "fixup! A", 'Revert "B"', "C", "squash! C\n\nx", "fixup! Z"
        )
        seen = [i for op in plan for i in op.commit_ids]
        self.assertEqual(sorted(commit_id(i) for i in range(7)), sorted(seen))
        check_plan(plan.operations, seen)

    def test_build_is_deterministic(self):
        messages = ("A", "B", "fixup! A", 'Revert "B"')
        self.assertEqual(plan_for(*messages), plan_for(*messages))
        self.assertEqual(
            plan_for(*messages).plan_hash, plan_for(*messages).plan_hash
        )


class CheckPlanTests(TestCase):
    def test_valid(self):
        check_plan(
            [
                Keep(b"1" * 40),
                Amend(b"1" * 40, b"2" * 40, AmendMode.FIXUP),
                Drop(b"3" * 40),
            ]
        )

    def test_duplicate(self):
        self.assertRaises(
            PlanInvariantError, check_plan, [Keep(b"1" * 40), Drop(b"1" * 40)]
        )

    def test_amend_before_target(self):
        self.assertRaises(
            PlanInvariantError,
            check_plan,
            [Amend(b"1" * 40, b"2" * 40, AmendMode.FIXUP), Keep(b"1" * 40)],
        )

    def test_amend_of_dropped_target(self):
        self.assertRaises(
            PlanInvariantError,
            check_plan,
            [Drop(b"1" * 40), Amend(b"1" * 40, b"2" * 40, AmendMode.FIXUP)],
        )

    def test_amend_not_contiguous(self):
        self.assertRaises(
            PlanInvariantError,
            check_plan,
            [
                Keep(b"1" * 40),
                Keep(b"3" * 40),
                Amend(b"1" * 40, b"2" * 40, AmendMode.SQUASH),
            ],
        )

    def test_coverage(self):
        self.assertRaises(
            PlanInvariantError,
            check_plan,
            [Keep(b"1" * 40)],
            [b"1" * 40, b"2" * 40],
        )


class ParseOperationTests(TestCase):
    def test_keep(self):
        self.assertEqual(Keep(b"1" * 40), parse_operation("keep " + "1" * 40 + " A"))

    def test_amend(self):
        self.assertEqual(
            Amend(b"1" * 40, b"2" * 40, AmendMode.SQUASH),
            parse_operation("squash %s %s squash! A" % ("1" * 40, "2" * 40)),
        )

    def test_comment_and_blank(self):
        self.assertIsNone(parse_operation("# comment"))
        self.assertIsNone(parse_operation("   "))

    def test_unknown_command(self):
        self.assertRaises(ValueError, parse_operation, "pick " + "1" * 40)

    def test_missing_fixup(self):
        self.assertRaises(ValueError, parse_operation, "fixup " + "1" * 40)


class RewritePlanTests(TestCase):
    def test_to_string(self):
        plan = plan_for("Add feature", "fixup! Add feature")
        self.assertEqual(
            "base %s\nhead %s\nkeep %s Add feature\nfixup %s %s fixup! Add feature\n"
            % (
                BASE.decode("ascii"),
                commit_id(1).decode("ascii"),
                commit_id(0).decode("ascii"),
                commit_id(0).decode("ascii"),
                commit_id(1).decode("ascii"),
            ),
            plan.to_string(),
        )

    def test_from_string(self):
        plan = plan_for("A", "B", "fixup! A", 'Revert "B"')
        parsed = RewritePlan.from_string(plan.to_string(), plan.records)
        self.assertEqual(plan, parsed)
        self.assertEqual(plan.plan_hash, parsed.plan_hash)
        self.assertEqual(plan.to_string(), parsed.to_string())

    def test_from_string_root(self):
        plan = RewritePlan.from_string(
            "base -\nhead %s\nkeep %s\n" % ("1" * 40, "1" * 40)
        )
        self.assertIsNone(plan.base_id)
        self.assertEqual((Keep(b"1" * 40),), plan.operations)

    def test_from_string_invalid(self):
        self.assertRaises(
            PlanInvariantError,
            RewritePlan.from_string,
            "head %s\ndrop %s\nfixup %s %s\n"
            % ("2" * 40, "1" * 40, "1" * 40, "2" * 40),
        )

    def test_from_string_missing_head(self):
        self.assertRaises(ValueError, RewritePlan.from_string, "keep " + "1" * 40)

    def test_hash_ignores_subjects(self):
        plan = plan_for("A", "B")
        bare = RewritePlan(plan.base_id, plan.head_id, plan.operations)
        self.assertEqual(plan.plan_hash, bare.plan_hash)

    def test_hash_depends_on_operations(self):
        plan = plan_for("A", "B")
        reordered = RewritePlan(
            plan.base_id, plan.head_id, tuple(reversed(plan.operations))
        )
        self.assertNotEqual(plan.plan_hash, reordered.plan_hash)

    def test_sequence_protocol(self):
        plan = plan_for("A", "B")
        self.assertEqual(2, len(plan))
        self.assertEqual(Keep(commit_id(1)), plan[1])
        self.assertEqual(list(plan.operations), list(plan))


class SummaryTests(TestCase):
    def test_summaries(self):
        plan = plan_for("Add feature", "fixup! Add feature", "Other", 'Revert "Other"')
        self.assertEqual(
            [
                OperationSummary("keep", commit_id(0), "Add feature"),
                OperationSummary(
                    "fixup", commit_id(1), "fixup! Add feature", commit_id(0)
                ),
                OperationSummary("drop", commit_id(2), "Other"),
                OperationSummary("drop", commit_id(3), 'Revert "Other"'),
            ],
            plan.summaries(),
        )

    def test_str(self):
        summary = OperationSummary("fixup", b"1" * 40, "fixup! A", b"2" * 40)
        self.assertEqual("fixup 1111111 -> 2222222 fixup! A", str(summary))
        self.assertEqual("keep 1111111", str(OperationSummary("keep", b"1" * 40, "")))
