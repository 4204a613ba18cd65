"""Top‑level module for utility functions.

The :mod:`utils` package collects helpers shared by the ingestion
layer and the vulnerability index:

>>> from utils import data_quality
"""

from . import data_quality  # noqa: F401

__all__ = ["data_quality"]
