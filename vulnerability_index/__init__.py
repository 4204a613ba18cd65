"""
City climate-vulnerability index.

This package combines three per-city sources (daily weather, national
World Bank indicators and a sub-national social-vulnerability table)
into a single score in [0, 1] with a categorical risk label:

- :mod:`.normalize` – cross-sectional min-max normalisation
- :mod:`.weather`, :mod:`.social` – derived risk and vulnerability indicators
- :mod:`.components` – named sub-index inputs resolved from indicator values
- :mod:`.subindices` – Temperature / Precipitation Risk, Economic / Social Resilience
- :mod:`.composer` – climate risk, adaptive capacity, score and category
- :mod:`.ranking` – ranking, correlation summary and run-to-run diff
- :mod:`.pipeline` – batch orchestration (``run_pipeline``)

The pipeline entry point is imported from :mod:`vulnerability_index.pipeline`
directly, since it depends on the ingestion layer.
"""

from .composer import categorize, compose, vulnerability_score
from .config import PipelineConfig, PipelineContext, load_config, load_registry
from .issues import ConfigError, RegistryError, VulnerabilityIndexError
from .models import City, CityInputs, CityRegistry, Exclusion, Polarity, TableVersions, VulnerabilityRecord
from .normalize import normalize, normalize_indicator, pre_invert

__version__ = "0.1.0"
