"""
vulnerability_index.issues
--------------------------

Structured status values describing why a city, a source or a
component could not be used.  Issues are plain immutable values: they
are attached to quality reports, exclusions and the batch report, and
are never raised.  Only problems that make the whole run meaningless
(an empty city registry, an invalid configuration) are exceptions, and
those derive from :class:`VulnerabilityIndexError`.

Every issue renders as ``Kind(subject)`` so that exclusion tables read
naturally, e.g. ``InsufficientComponents(AdaptiveCapacity)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple


class VulnerabilityIndexError(Exception):
    """Base class for errors that abort a whole pipeline run."""


class RegistryError(VulnerabilityIndexError):
    """The city registry is empty, unreadable or inconsistent."""


class ConfigError(VulnerabilityIndexError):
    """The pipeline configuration is invalid."""


@dataclass(frozen=True)
class Issue:
    """Base class of all per-city / per-source issues."""

    @property
    def kind(self) -> str:
        return type(self).__name__

    @property
    def subject(self) -> str:
        return ""

    def __str__(self) -> str:
        return f"{self.kind}({self.subject})"


@dataclass(frozen=True)
class SourceMissing(Issue):
    """A source table was never provided for a city."""

    source: str

    @property
    def subject(self) -> str:
        return self.source


@dataclass(frozen=True)
class SourceUnrecognized(Issue):
    """A table was provided but no known layout could be detected."""

    source: str
    columns: Tuple[str, ...] = ()
    message: str = ""

    @property
    def subject(self) -> str:
        return self.source


@dataclass(frozen=True)
class FormatNeedsConversion(Issue):
    """Wide-format data that has not been harmonized to long form yet."""

    source: str

    @property
    def subject(self) -> str:
        return self.source


@dataclass(frozen=True)
class InsufficientComponents(Issue):
    """Zero contributing components were present for an aggregate."""

    component: str

    @property
    def subject(self) -> str:
        return self.component


@dataclass(frozen=True)
class DegenerateDistribution(Issue):
    """Cross-sectional input had zero variance (mapped to 0.5)."""

    indicator: str

    @property
    def subject(self) -> str:
        return self.indicator


@dataclass(frozen=True)
class NoUsableSources(Issue):
    """All three sources of a city were missing or unreadable."""


@dataclass(frozen=True)
class UnknownCity(Issue):
    """Input data was supplied for a city absent from the registry."""

    name: str

    @property
    def subject(self) -> str:
        return self.name


@dataclass(frozen=True)
class ProcessingError(Issue):
    """Unexpected failure while preparing one city's data."""

    message: str = field(default="", compare=False)

    @property
    def subject(self) -> str:
        return self.message


__all__ = [
    "VulnerabilityIndexError",
    "RegistryError",
    "ConfigError",
    "Issue",
    "SourceMissing",
    "SourceUnrecognized",
    "FormatNeedsConversion",
    "InsufficientComponents",
    "DegenerateDistribution",
    "NoUsableSources",
    "UnknownCity",
    "ProcessingError",
]
