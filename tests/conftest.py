"""Shared fixtures: small synthetic per-city tables and a test registry."""

import numpy as np
import pandas as pd
import pytest

from vulnerability_index.config import PipelineContext, load_config
from vulnerability_index.models import City, CityInputs, CityRegistry, TableVersions


def make_weather(days=730, start="2020-01-01", base_temp=20.0, amplitude=8.0, rain_every=5, rain_mm=12.0, seed=0):
    """Deterministic daily weather with a seasonal cycle."""
    rng = np.random.default_rng(seed)
    dates = pd.date_range(start, periods=days, freq="D")
    doy = dates.dayofyear.to_numpy()
    temp_avg = base_temp + amplitude * np.sin(2 * np.pi * doy / 365.0) + rng.normal(0, 1.0, days)
    precip = np.where(np.arange(days) % rain_every == 0, rain_mm, 0.0)
    return pd.DataFrame(
        {
            "date": dates.strftime("%Y-%m-%d"),
            "temp_max_c": temp_avg + 5.0,
            "temp_min_c": temp_avg - 5.0,
            "temp_avg_c": temp_avg,
            "precipitation_mm": precip,
        }
    )


def make_wide_climate(country="XX", years=(2019, 2020), heat=(3.0, 3.2), prcp=(440.0, 450.0)):
    return pd.DataFrame(
        {
            "country": country,
            "date": list(years),
            "EN.CLC.HEAT.XD": list(heat),
            "AG.LND.PRCP.MM": list(prcp),
        }
    )


def make_wide_economic(gdp=10000.0, life=75.0, literacy=90.0, elec=95.0, gini=35.0, years=(2019, 2020)):
    n = len(years)
    return pd.DataFrame(
        {
            "date": list(years),
            "NY.GDP.PCAP.CD": [gdp * 0.95, gdp][-n:],
            "NV.AGR.TOTL.ZS": [10.0] * n,
            "NV.IND.MANF.ZS": [20.0] * n,
            "NV.SRV.TOTL.ZS": [60.0] * n,
            "SL.TLF.CACT.FM.ZS": [80.0] * n,
            "SP.DYN.LE00.IN": [life] * n,
            "SE.ADT.LITR.ZS": [literacy] * n,
            "EG.ELC.ACCS.ZS": [elec] * n,
            "SI.POV.GINI": [gini] * n,
        }
    )


def make_social_units(poverty=(100, 200), population=(1000, 1000)):
    return pd.DataFrame(
        {
            "GEOID": ["001", "002"],
            "NAME": ["Tract 1", "Tract 2"],
            "total_population": list(population),
            "poverty": list(poverty),
            "age_65_plus": [150, 150],
            "no_vehicle": [50, None],
        }
    )


@pytest.fixture
def weather_df():
    return make_weather()


@pytest.fixture
def wide_climate_df():
    return make_wide_climate()


@pytest.fixture
def wide_economic_df():
    return make_wide_economic()


@pytest.fixture
def long_economic_df():
    return pd.DataFrame(
        {
            "indicator_id": ["NY.GDP.PCAP.CD", "NY.GDP.PCAP.CD", "SE.ADT.LITR.ZS"],
            "indicator_name": ["GDP per capita", "GDP per capita", "Literacy"],
            "date": [2019, 2020, 2020],
            "value": [9000.0, 10000.0, None],
        }
    )


@pytest.fixture
def social_units_df():
    return make_social_units()


@pytest.fixture
def config():
    return load_config()


@pytest.fixture
def registry():
    return CityRegistry(
        [
            City("Alpha", "AAA", 10.0, 10.0, population=1_000_000, climate_zone="Tropical"),
            City("Beta", "BBB", 20.0, 20.0, population=2_000_000, climate_zone="Temperate"),
            City("Gamma", "USA", 30.0, -90.0, population=500_000, climate_zone="Humid Subtropical",
                 state_code="LA", county="Orleans"),
            City("Delta", "DDD", 40.0, 30.0, population=3_000_000, climate_zone="Arid"),
        ]
    )


@pytest.fixture
def context(registry, config):
    return PipelineContext(registry=registry, config=config)


@pytest.fixture
def city_inputs():
    """Inputs for three scorable cities with different risk profiles."""
    return {
        "Alpha": CityInputs(
            "Alpha",
            weather=make_weather(base_temp=30.0, amplitude=6.0, rain_every=3, rain_mm=25.0, seed=1),
            national={"economic": TableVersions(original=make_wide_economic(gdp=2000.0, life=60.0, literacy=60.0, elec=50.0, gini=50.0))},
        ),
        "Beta": CityInputs(
            "Beta",
            weather=make_weather(base_temp=12.0, amplitude=10.0, rain_every=7, rain_mm=8.0, seed=2),
            national={"economic": TableVersions(original=make_wide_economic(gdp=40000.0, life=82.0, literacy=99.0, elec=100.0, gini=30.0))},
        ),
        "Gamma": CityInputs(
            "Gamma",
            weather=make_weather(base_temp=22.0, amplitude=7.0, rain_every=4, rain_mm=15.0, seed=3),
            national={"economic": TableVersions(original=make_wide_economic(gdp=60000.0, life=78.0, literacy=99.0, elec=100.0, gini=41.0))},
            subnational=make_social_units(),
        ),
    }
