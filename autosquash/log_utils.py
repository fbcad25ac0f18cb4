# log_utils.py -- Logging utilities for autosquash
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

"""Logging utilities for autosquash.

The engine is meant to be embedded in front-ends, so by default nothing is
printed: a null handler is attached to the ``autosquash`` logger. Front-ends
call :func:`default_logging_config` to get output on stderr, and the
``AUTOSQUASH_TRACE`` environment variable switches on debug tracing.
"""

import logging
import os
import sys
from typing import Optional

getLogger = logging.getLogger

TRACE_VARIABLE = "AUTOSQUASH_TRACE"


class _NullHandler(logging.Handler):
    """No-op logging handler to avoid unexpected logging warnings."""

    def emit(self, record: logging.LogRecord) -> None:
        pass


_NULL_HANDLER = _NullHandler()
_AUTOSQUASH_LOGGER = getLogger("autosquash")
_AUTOSQUASH_LOGGER.addHandler(_NULL_HANDLER)

_TRACE_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"


def _trace_target() -> Optional[str]:
    """Determine where trace output should go.

    Returns:
        None when tracing is disabled, "-" for stderr, or an absolute file path
    """
    value = os.environ.get(TRACE_VARIABLE, "")
    if not value or value.lower() in ("0", "false"):
        return None
    if value.lower() in ("1", "2", "true"):
        return "-"
    if os.path.isabs(value):
        return value
    return None


def default_logging_config() -> None:
    """Set up logging for front-ends.

    With ``AUTOSQUASH_TRACE`` set to ``1``/``true`` debug output goes to
    stderr; set to an absolute path it is appended to that file. Otherwise
    info-level messages go to stderr.
    """
    remove_null_handler()

    target = _trace_target()
    if target == "-":
        logging.basicConfig(
            level=logging.DEBUG, stream=sys.stderr, format=_TRACE_FORMAT
        )
        return
    if target is not None:
        try:
            logging.basicConfig(
                level=logging.DEBUG, filename=target, filemode="a", format=_TRACE_FORMAT
            )
            return
        except OSError as e:
            sys.stderr.write(
                f"Warning: Failed to open {TRACE_VARIABLE} file {target}: {e}\n"
            )

    logging.basicConfig(
        level=logging.INFO,
        stream=sys.stderr,
        format="%(levelname)s: %(message)s",
    )


def remove_null_handler() -> None:
    """Remove the null handler from the autosquash logger."""
    _AUTOSQUASH_LOGGER.removeHandler(_NULL_HANDLER)
