"""
Unified CLI for the City Climate-Vulnerability Index.

Pipeline steps:
1) quality    -> <out>/quality_report.csv   (data-quality gate only)
2) harmonize  -> <data>/<city>/*_fixed.csv  (wide World Bank tables to long form)
3) index      -> <out>/vulnerability_records.csv, ranking.csv, correlations.csv,
                 drivers.csv, score_statistics.csv, exclusions.csv, issues.csv,
                 quality_report.csv

The data directory holds one folder per city (lower case, see
``scripts.common.clean_city_name``) with the raw CSV files
``weather_data_nasa.csv``, ``country_climate_data.csv``,
``economic_gender_data.csv`` and ``social_vulnerability_data.csv``.

Full run:
python -m interface.cli full-run --data-dir data/cities --out data/results
Step by step:
python -m interface.cli quality --data-dir data/cities
python -m interface.cli harmonize --data-dir data/cities
python -m interface.cli index --data-dir data/cities --out data/results --previous data/results/ranking.csv
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from ingestion.quality.gate import assess_city, quality_frame, quality_summary
from ingestion.transform.harmonize import CATEGORY_COLUMN, Layout, harmonize_table
from scripts.common import (
    FIXED_SUFFIX,
    NATIONAL_FILES,
    clean_city_name,
    load_all_inputs,
    log_event,
    write_table,
)
from vulnerability_index.config import PipelineContext, load_config, load_registry
from vulnerability_index.issues import VulnerabilityIndexError
from vulnerability_index.models import NATIONAL, CityInputs, CityRegistry
from vulnerability_index.pipeline import run_pipeline
from vulnerability_index.ranking import diff_results

logger = logging.getLogger("interface.cli")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def _context(args: argparse.Namespace) -> PipelineContext:
    overrides = {"max_workers": args.workers} if getattr(args, "workers", None) else None
    return PipelineContext(
        registry=load_registry(args.registry),
        config=load_config(args.config, overrides=overrides),
    )


def _selected(registry: CityRegistry, args: argparse.Namespace) -> List[str]:
    if args.cities:
        return [c.strip() for c in args.cities.split(",") if c.strip()]
    return registry.names()


def _inputs(registry: CityRegistry, args: argparse.Namespace) -> Dict[str, CityInputs]:
    data_dir = Path(args.data_dir)
    if not data_dir.is_dir():
        raise FileNotFoundError(f"Data directory not found: {data_dir}")
    return load_all_inputs(data_dir, _selected(registry, args))


# =========================================================
# QUALITY
# =========================================================
def run_quality(args: argparse.Namespace) -> None:
    print("[1/3] Running data-quality gate...")
    ctx = _context(args)
    inputs = _inputs(ctx.registry, args)
    reports = [
        assess_city(inputs.get(name) or CityInputs(name), ctx.config)
        for name in dict.fromkeys(_selected(ctx.registry, args))
    ]
    frame = quality_frame(reports)

    out_path = Path(args.out) / "quality_report.csv"
    write_table(frame, str(out_path))
    summary = quality_summary(reports)
    log_event("quality", "gate", summary)
    print(f"{summary['admitted']}/{summary['cities']} cities admitted, "
          f"{summary['needs_conversion']} need format conversion")
    print(f"Quality report saved to {out_path}\n")


# =========================================================
# HARMONIZE
# =========================================================
def run_harmonize(args: argparse.Namespace) -> None:
    print("[2/3] Converting wide World Bank tables to long form...")
    ctx = _context(args)
    data_dir = Path(args.data_dir)
    inputs = _inputs(ctx.registry, args)
    written = 0
    for city, city_inputs in inputs.items():
        for table, versions in city_inputs.national.items():
            if versions.original is None:
                continue
            result = harmonize_table(
                versions.original,
                city=city,
                source=NATIONAL,
                table=table,
                version="original",
                prefixes=ctx.config.category_prefixes,
                convert_wide=True,
            )
            if not result.ok:
                logger.warning("%s/%s: %s", city, table, result.message or result.status.value)
                continue
            if result.layout is not Layout.WIDE:
                logger.debug("%s/%s: already in long form", city, table)
                continue
            fixed = result.frame.rename(columns={"period": "date", "category": CATEGORY_COLUMN})
            path = data_dir / clean_city_name(city) / f"{NATIONAL_FILES[table]}{FIXED_SUFFIX}.csv"
            write_table(fixed, str(path))
            written += 1
            logger.info("%s/%s: %d long rows written to %s", city, table, len(fixed), path)
    log_event("transform", "harmonize", {"cities": len(inputs), "tables_written": written})
    print(f"{written} fixed tables written\n")


# =========================================================
# INDEX
# =========================================================
def run_index(args: argparse.Namespace) -> None:
    print("[3/3] Computing vulnerability index...")
    ctx = _context(args)
    inputs = _inputs(ctx.registry, args)
    # without --cities the whole registry is attempted, folders or not
    cities = _selected(ctx.registry, args) if args.cities else None
    result = run_pipeline(inputs, ctx, cities=cities)

    out_dir = Path(args.out)
    ranking = result.ranking()
    outputs = {
        "vulnerability_records.csv": result.to_frame(),
        "ranking.csv": ranking,
        "exclusions.csv": result.exclusions_frame(),
        "issues.csv": result.issues_frame(),
        "quality_report.csv": result.quality_frame(),
        "correlations.csv": result.correlations().reset_index().rename(columns={"index": "factor"}),
        "drivers.csv": result.drivers().rename("correlation_with_score").rename_axis("factor").reset_index(),
        "score_statistics.csv": result.statistics().reset_index(),
    }
    if args.previous:
        previous = pd.read_csv(args.previous)
        outputs["changes.csv"] = diff_results(previous, ranking)
    for name, frame in outputs.items():
        write_table(frame, str(out_dir / name))

    summary = result.summary()
    log_event("index", "run", summary)
    print(f"Scored {summary['scored']} of {summary['attempted']} cities "
          f"({summary['reduced_confidence']} with reduced confidence)")
    if not ranking.empty:
        print(ranking[["rank", "city", "vulnerability_score", "category"]].head(10).to_string(index=False))
    print(f"Results saved to {out_dir}\n")


# =========================================================
# MAIN ENTRYPOINT
# =========================================================
def _common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--data-dir", default="data/cities", help="folder with one sub-folder per city")
    p.add_argument("--out", default="data/results")
    p.add_argument("--registry", default=None, help="city registry CSV (default: packaged list)")
    p.add_argument("--config", default=None, help="pipeline YAML (default: packaged defaults)")
    p.add_argument("--cities", default=None, help="comma-separated city names")
    p.add_argument("--workers", type=int, default=None)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="City Climate-Vulnerability Index CLI")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command")

    full = sub.add_parser("full-run", help="Harmonize then compute the index")
    _common(full)
    full.add_argument("--previous", default=None, help="ranking CSV of an earlier run to diff against")

    def full_run(args):
        run_harmonize(args)
        run_index(args)

    full.set_defaults(func=full_run)

    for name, func in {
        "quality": run_quality,
        "harmonize": run_harmonize,
        "index": run_index,
    }.items():
        p = sub.add_parser(name)
        _common(p)
        if name == "index":
            p.add_argument("--previous", default=None, help="ranking CSV of an earlier run to diff against")
        p.set_defaults(func=func)

    parsed = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if parsed.verbose else logging.INFO, format=LOG_FORMAT)
    if not hasattr(parsed, "func"):
        parser.print_help()
        return 1
    try:
        parsed.func(parsed)
    except (VulnerabilityIndexError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
