"""
Performance categories handled by the application managers.

Both enumerations are closed: every place that dispatches on a category
handles each member explicitly and raises on anything else.
"""

from enum import IntEnum


class ApplicationPerformanceCategory(IntEnum):
    RESPONSE_TIME = 0
    THROUGHPUT = 1


class VirtualMachinePerformanceCategory(IntEnum):
    CPU_UTIL = 0
    MEMORY_UTIL = 1


def parse_application_category(name: str) -> ApplicationPerformanceCategory:
    """Maps a configuration name ('response_time', 'throughput') to a category."""
    try:
        return ApplicationPerformanceCategory[name.strip().upper()]
    except KeyError:
        raise ValueError(f"Unknown application performance category: {name}") from None
