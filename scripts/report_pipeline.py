#!/usr/bin/env python3
"""Diabetes case study: acquisition, preprocessing, statistics, and report."""

import logging
from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.diabetes_report.acquisition import download_nhanes_data
from src.diabetes_report.analysis import run_analysis
from src.diabetes_report.eda import run_eda
from src.diabetes_report.preprocessing import JOIN_PLAN, run_preprocessing
from src.diabetes_report.reporting import write_report


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    raw_dir = PROJECT_ROOT / "data" / "raw"
    processed_dir = PROJECT_ROOT / "data" / "processed"
    outputs_dir = PROJECT_ROOT / "outputs" / "report"

    catalog, _paths = download_nhanes_data(raw_dir, codes=[step.code for step in JOIN_PLAN])
    preprocess_outputs = run_preprocessing(raw_dir, processed_dir, catalog.descriptions)
    eda_outputs = run_eda(preprocess_outputs, outputs_dir)
    analysis_outputs = run_analysis(preprocess_outputs, outputs_dir)
    write_report(
        preprocess_outputs,
        eda_outputs,
        analysis_outputs,
        outputs_dir / "diabetes_case_study.md",
    )
    logging.getLogger(__name__).info("Report written to %s", outputs_dir)


if __name__ == "__main__":
    main()
