# config.py -- Configuration for autosquash
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

"""Settings read from the ``[autosquash]`` section of git configuration.

Example::

    [autosquash]
        revertPairs = false
        amendMarkers = true
        checkpointDir = /tmp/autosquash
"""

from dataclasses import dataclass
from typing import Optional

from dulwich.config import Config

SECTION = (b"autosquash",)


@dataclass(frozen=True)
class AutosquashConfig:
    """Engine settings.

    Attributes:
      revert_pairs: Cancel commits against their in-range reverts
      amend_markers: Honour ``amend!`` markers
      checkpoint_dir: Directory for the on-disk checkpoint store
    """

    revert_pairs: bool = True
    amend_markers: bool = True
    checkpoint_dir: Optional[str] = None

    @classmethod
    def from_config(cls, config: Config) -> "AutosquashConfig":
        """Read settings from a dulwich config (usually a StackedConfig).

        Args:
          config: Configuration to read from
        Returns: AutosquashConfig instance
        """
        try:
            checkpoint_dir: Optional[str] = config.get(
                SECTION, b"checkpointDir"
            ).decode("utf-8")
        except KeyError:
            checkpoint_dir = None
        return cls(
            revert_pairs=config.get_boolean(SECTION, b"revertPairs", True),
            amend_markers=config.get_boolean(SECTION, b"amendMarkers", True),
            checkpoint_dir=checkpoint_dir,
        )
