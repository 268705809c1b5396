"""CBT Exam Engine - timed computer-based testing backend."""

__version__ = "0.1.0"
