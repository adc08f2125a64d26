"""
A simple context manager for code profiling.

Measures the wall-clock time of a block of code. The simulation runner wraps
each control step with it to check that one FC2Q decision stays well within
the control interval.
"""
import time
import logging

profiler_log = logging.getLogger('profiler')


class CodeProfiler:
    """
    A context manager to time the execution of a code block.

    Example:
        with CodeProfiler("control", budget_ms=50.0):
            manager.control()

    Attributes:
        name (str): The name of the code block being timed.
        budget_ms (float): Time budget; exceeding it logs a warning.
        elapsed_ms (float): Duration of the last run, set on exit.
    """
    def __init__(self, name="", budget_ms=10.0):
        self.name = name
        self.budget_ms = budget_ms
        self.elapsed_ms = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
        profiler_log.debug("'%s' execution time: %.3f ms", self.name, self.elapsed_ms)
        if self.elapsed_ms > self.budget_ms:
            profiler_log.warning("'%s' exceeded its %.1f ms budget.", self.name, self.budget_ms)
