"""snap: task-by-task implementation driver for coding agents."""

__version__ = "0.1.0"
