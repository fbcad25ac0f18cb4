# __init__.py -- Tests for autosquash
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

"""Tests for autosquash."""

import os
import unittest
from unittest import TestCase as _TestCase


class TestCase(_TestCase):
    """Base test case that isolates tests from the user's git configuration."""

    def setUp(self):
        super().setUp()
        self._old_home = os.environ.get("HOME")
        os.environ["HOME"] = "/nonexistent"
        self._old_trace = os.environ.pop("AUTOSQUASH_TRACE", None)

    def tearDown(self):
        if self._old_home is not None:
            os.environ["HOME"] = self._old_home
        else:
            del os.environ["HOME"]
        if self._old_trace is not None:
            os.environ["AUTOSQUASH_TRACE"] = self._old_trace
        super().tearDown()


def self_test_suite():
    names = [
        "backend",
        "checkpoint",
        "classify",
        "config",
        "executor",
        "loader",
        "log_utils",
        "matcher",
        "plan",
        "porcelain",
    ]
    module_names = ["tests.test_" + name for name in names]
    loader = unittest.TestLoader()
    return loader.loadTestsFromNames(module_names)


def test_suite():
    return self_test_suite()
