"""Type aliases used across mctracker."""

from __future__ import annotations

from typing import Any

JsonDict = dict[str, Any]
