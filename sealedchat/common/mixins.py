"""
Mixins for common functionality.
"""

from __future__ import annotations

from typing import Any


class Configurable:
    """
    Mixin class for handling configuration overrides.

    Classes using this mixin resolve each setting from an optional override
    first and fall back to the uppercase attribute of a config object.
    """

    def apply_overrides(
        self,
        overrides: dict[str, Any],
        config_obj: Any,
        attr_list: list[str] | None = None,
    ) -> None:
        """
        Set ``self.attr`` for each attr in attr_list.

        An override of ``None`` counts as unset, so pydantic models dumped
        with their defaults can be passed in directly.

        Args:
            overrides: Dictionary of override values
            config_obj: Configuration object with uppercase attribute names
            attr_list: List of attribute names to set
        """
        for attr in attr_list or []:
            value = overrides.get(attr)
            if value is None:
                value = getattr(config_obj, attr.upper(), None)
            setattr(self, attr, value)
