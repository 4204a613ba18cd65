import json

import pandas as pd
import pytest

from interface.cli import main
from scripts.common import (
    SOCIAL_FILE,
    WEATHER_FILE,
    clean_city_name,
    load_all_inputs,
    load_city_inputs,
    log_event,
    write_table,
)
from vulnerability_index.models import NATIONAL, WEATHER

from conftest import make_weather, make_wide_economic


@pytest.mark.parametrize(
    "name, folder",
    [("São Paulo", "s_o_paulo"), ("New York", "new_york"), ("Washington, D.C.", "washington_d_c")],
)
def test_clean_city_name(name, folder):
    assert clean_city_name(name) == folder


class TestLoader:
    def test_fixed_version_preferred(self, tmp_path, long_economic_df):
        city_dir = tmp_path / "alpha"
        write_table(make_wide_economic(), str(city_dir / "economic_gender_data.csv"))
        write_table(long_economic_df, str(city_dir / "economic_gender_data_fixed.csv"))
        inputs = load_city_inputs("Alpha", city_dir)
        df, version = inputs.national["economic"].preferred()
        assert version == "fixed"
        assert "indicator_id" in df.columns
        assert inputs.weather is None
        assert inputs.subnational is None

    def test_unreadable_file_reported(self, tmp_path):
        city_dir = tmp_path / "alpha"
        city_dir.mkdir()
        (city_dir / WEATHER_FILE).write_text("", encoding="utf-8")
        inputs = load_city_inputs("Alpha", city_dir)
        assert inputs.weather is None
        assert WEATHER_FILE in inputs.load_errors[WEATHER]
        assert NATIONAL not in inputs.load_errors

    def test_unreadable_national_table_kept_with_error(self, tmp_path):
        city_dir = tmp_path / "alpha"
        write_table(make_wide_economic(), str(city_dir / "economic_gender_data.csv"))
        (city_dir / "country_climate_data.csv").write_bytes(b"\xff\xfe\xfa,\x80\n\x81,\x82\n")
        inputs = load_city_inputs("Alpha", city_dir)
        assert sorted(inputs.national) == ["climate", "economic"]
        climate = inputs.national["climate"]
        assert climate.preferred() == (None, None)
        assert "country_climate_data.csv" in climate.error
        assert inputs.national["economic"].error is None
        assert inputs.load_errors == {}

    def test_load_all_skips_missing_folders(self, tmp_path):
        write_table(make_weather(days=30), str(tmp_path / "alpha" / WEATHER_FILE))
        inputs = load_all_inputs(tmp_path, ["Alpha", "Beta"])
        assert list(inputs) == ["Alpha"]
        assert len(inputs["Alpha"].weather) == 30


def test_log_event(tmp_path):
    log_event("index", "run", {"scored": 3}, log_dir=str(tmp_path))
    files = list(tmp_path.glob("audit_*.ndjson"))
    assert len(files) == 1
    event = json.loads(files[0].read_text(encoding="utf-8").strip())
    assert event["layer"] == "index"
    assert event["payload"] == {"scored": 3}
    assert event["timestamp"].endswith("Z")


class TestCli:
    @pytest.fixture
    def workspace(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        data = tmp_path / "cities"
        for i, (name, gdp) in enumerate([("Alpha", 2000.0), ("Beta", 40000.0)]):
            city_dir = data / clean_city_name(name)
            write_table(make_weather(base_temp=15.0 + 10 * i, seed=i), str(city_dir / WEATHER_FILE))
            write_table(make_wide_economic(gdp=gdp, gini=30.0 + 10 * i), str(city_dir / "economic_gender_data.csv"))
        pd.DataFrame(
            {"name": ["Alpha", "Beta", "Gamma"], "country_iso": ["AAA", "BBB", "CCC"],
             "lat": [1.0, 2.0, 3.0], "lon": [1.0, 2.0, 3.0]}
        ).to_csv(tmp_path / "registry.csv", index=False)
        return tmp_path

    def _args(self, command, ws, *extra):
        return [command, "--data-dir", str(ws / "cities"), "--out", str(ws / "out"),
                "--registry", str(ws / "registry.csv"), *extra]

    def test_full_run(self, workspace):
        assert main(self._args("full-run", workspace)) == 0
        assert (workspace / "cities" / "alpha" / "economic_gender_data_fixed.csv").exists()
        ranking = pd.read_csv(workspace / "out" / "ranking.csv")
        assert sorted(ranking["city"]) == ["Alpha", "Beta"]
        assert ranking["rank"].tolist() == [1, 2]
        exclusions = pd.read_csv(workspace / "out" / "exclusions.csv")
        assert exclusions["city"].tolist() == ["Gamma"]
        assert exclusions["kind"].tolist() == ["NoUsableSources"]
        assert list(workspace.glob("logs/audit_*.ndjson"))

    def test_index_with_previous_run(self, workspace):
        assert main(self._args("index", workspace)) == 0
        previous = workspace / "previous.csv"
        (workspace / "out" / "ranking.csv").rename(previous)
        assert main(self._args("index", workspace, "--previous", str(previous))) == 0
        changes = pd.read_csv(workspace / "out" / "changes.csv")
        assert set(changes["status"]) == {"kept"}
        assert changes["score_change"].abs().max() == pytest.approx(0.0)

    def test_quality(self, workspace):
        assert main(self._args("quality", workspace)) == 0
        report = pd.read_csv(workspace / "out" / "quality_report.csv").set_index("city")
        assert report.loc[["Alpha", "Beta"], "admitted"].all()
        assert not report.loc["Gamma", "admitted"]

    def test_repeated_city_option(self, workspace):
        assert main(self._args("index", workspace, "--cities", "Alpha,Alpha")) == 0
        ranking = pd.read_csv(workspace / "out" / "ranking.csv")
        assert ranking["city"].tolist() == ["Alpha"]

    def test_missing_data_dir(self, workspace):
        assert main(["index", "--data-dir", str(workspace / "nope"), "--registry", str(workspace / "registry.csv")]) == 2

    def test_no_command(self):
        assert main([]) == 1
