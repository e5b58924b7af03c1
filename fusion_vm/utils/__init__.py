"""Utility functions for Fusion VM."""

from fusion_vm.utils.cpuset import format_cpuset, parse_cpuset

__all__ = [
    "format_cpuset",
    "parse_cpuset",
]
