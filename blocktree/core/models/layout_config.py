"""Layout tuning values read by the drop resolver and the canvas reconciler.

Values normally come from the ``layout`` section of the configuration (see
:class:`blocktree.config.ConfigManager`); every field has a default so the
services also work without any configuration loaded.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class LayoutSettings:
    """Constants for pointer zones, column widths and canvas sizing."""

    # Order-based drop zones
    split_zone_ratio: float = 0.15
    edge_buffer_ratio: float = 0.3
    edge_buffer_max: float = 20.0

    # Columns
    column_min_width: float = 0.1
    column_default_width: float = 0.5

    # Canvas geometry
    min_height: float = 50.0
    padding: float = 20.0
    default_width: float = 300.0
    default_height: float = 50.0
    min_node_width: float = 100.0
    snap_distance: float = 10.0
    guide_tolerance: float = 1.0

    def __post_init__(self):
        """Validate ranges after initialization."""
        if not 0 < self.split_zone_ratio < 0.5:
            raise ValueError("split_zone_ratio must be between 0 and 0.5")
        if not 0 < self.column_min_width <= 0.5:
            raise ValueError("column_min_width must be between 0 and 0.5")
        if self.min_height < 0 or self.padding < 0:
            raise ValueError("min_height and padding cannot be negative")
        if self.snap_distance < 0:
            raise ValueError("snap_distance cannot be negative")

    @classmethod
    def from_config(cls, config: Optional[Mapping[str, Any]]) -> "LayoutSettings":
        """Build settings from a (possibly nested) configuration mapping.

        Sections such as ``order_drop``, ``columns`` and ``geometry`` are
        flattened; unknown keys are ignored.

        Args:
            config: Layout configuration section, may be None or empty

        Returns:
            LayoutSettings instance
        """
        flat: Dict[str, Any] = {}
        for key, value in (config or {}).items():
            if isinstance(value, Mapping):
                flat.update(value)
            else:
                flat[key] = value

        known = {f.name for f in fields(cls)}
        values = {k: float(v) for k, v in flat.items() if k in known and v is not None}
        return cls(**values)


DEFAULT_LAYOUT = LayoutSettings()

__all__ = ["LayoutSettings", "DEFAULT_LAYOUT"]
