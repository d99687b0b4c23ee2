# DailyFix Bridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of DailyFix Bridge.
#
# DailyFix Bridge is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""DailyFix Bridge -- per-user chat platform linkage over a Matrix hub."""

from dailyfix._version import __version__

__all__ = ["__version__"]
