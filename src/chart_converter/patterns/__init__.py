"""Pattern library for column remapping."""

from chart_converter.patterns.library import PatternLibrary, center_out_order, default_pattern

__all__ = ["PatternLibrary", "center_out_order", "default_pattern"]
