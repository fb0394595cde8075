"""Descriptive tables and figures for the diabetes case study."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import pandas as pd  # noqa: E402
import seaborn as sns  # noqa: E402

from .preprocessing import PreprocessOutputs, load_processed  # noqa: E402


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Figure:
    path: Path
    caption: str


@dataclass(frozen=True)
class EDAOutputs:
    prevalence_table: Path
    figures: dict[str, Figure]
    key_metrics: dict[str, float | int]


def prevalence_by(df: pd.DataFrame, group: str, outcome: str = "diabetes") -> pd.DataFrame:
    """Share of each outcome level within each level of ``group``."""
    data = df.dropna(subset=[group, outcome])
    counts = (
        data.groupby([group, outcome], observed=True)
        .size()
        .reset_index(name="count")
    )
    totals = counts.groupby(group, observed=True)["count"].transform("sum")
    counts["percentage"] = (counts["count"] / totals * 100.0).round(3)
    counts.insert(0, "grouping", group)
    return counts.rename(columns={group: "level"})


def _prevalence_figure(table: pd.DataFrame, title: str, xlabel: str, figure_path: Path) -> None:
    sns.set_theme(style="whitegrid")
    plt.figure(figsize=(9, 5))
    chart = sns.barplot(data=table, x="level", y="percentage", hue="diabetes")
    chart.set_title(title)
    chart.set_xlabel(xlabel)
    chart.set_ylabel("Percent of respondents")
    plt.xticks(rotation=20)
    plt.tight_layout()
    plt.savefig(figure_path, dpi=220)
    plt.close()


def _diagnosis_age_figure(df: pd.DataFrame, figure_path: Path) -> None:
    sns.set_theme(style="whitegrid")
    plt.figure(figsize=(9, 5))
    chart = sns.histplot(data=df.dropna(subset=["diagnosis_age"]), x="diagnosis_age", bins=30)
    chart.set_title("Self-Reported Age at Diabetes Diagnosis")
    chart.set_xlabel("Age at diagnosis (years)")
    chart.set_ylabel("Respondents")
    plt.tight_layout()
    plt.savefig(figure_path, dpi=220)
    plt.close()


def _blood_pressure_figure(df: pd.DataFrame, figure_path: Path) -> None:
    plot_df = df.dropna(subset=["avg_systolic", "avg_diastolic", "hypertension"])
    sns.set_theme(style="whitegrid")
    plt.figure(figsize=(7, 6))
    chart = sns.scatterplot(
        data=plot_df,
        x="avg_systolic",
        y="avg_diastolic",
        hue="hypertension",
        alpha=0.4,
        s=12,
    )
    chart.set_title("Average Blood Pressure by Hypertension Status")
    chart.set_xlabel("Average systolic (mm Hg)")
    chart.set_ylabel("Average diastolic (mm Hg)")
    plt.tight_layout()
    plt.savefig(figure_path, dpi=220)
    plt.close()


def run_eda(preprocessed: PreprocessOutputs, outputs_root: Path) -> EDAOutputs:
    """Generate prevalence tables and report figures from the processed table."""
    figures_dir = outputs_root / "figures"
    tables_dir = outputs_root / "tables"
    figures_dir.mkdir(parents=True, exist_ok=True)
    tables_dir.mkdir(parents=True, exist_ok=True)

    df = load_processed(preprocessed.processed_path, preprocessed.levels_json_path)

    by_age = prevalence_by(df, "age_group")
    by_bmi = prevalence_by(df, "bmi_group")
    by_income = prevalence_by(df, "income")

    prevalence_table = tables_dir / "diabetes_prevalence.csv"
    pd.concat([by_age, by_bmi, by_income], ignore_index=True).to_csv(prevalence_table, index=False)

    figures = {
        "age": Figure(figures_dir / "diabetes_by_age_group.png", "Diabetes status by age group"),
        "bmi": Figure(figures_dir / "diabetes_by_bmi_group.png", "Diabetes status by BMI class"),
        "income": Figure(figures_dir / "diabetes_by_income.png", "Diabetes status by income tier"),
        "diagnosis_age": Figure(
            figures_dir / "diagnosis_age.png", "Distribution of self-reported age at diagnosis"
        ),
        "blood_pressure": Figure(
            figures_dir / "blood_pressure.png", "Average systolic vs diastolic pressure"
        ),
    }
    _prevalence_figure(by_age, "Diabetes Status by Age Group", "Age group", figures["age"].path)
    _prevalence_figure(by_bmi, "Diabetes Status by BMI Class", "BMI class", figures["bmi"].path)
    _prevalence_figure(by_income, "Diabetes Status by Income Tier", "Income tier", figures["income"].path)
    _diagnosis_age_figure(df, figures["diagnosis_age"].path)
    _blood_pressure_figure(df, figures["blood_pressure"].path)
    logger.info("Saved %d figures to %s", len(figures), figures_dir)

    diabetes_known = df["diabetes"].notna()
    diabetes_rate = (
        float((df.loc[diabetes_known, "diabetes"] == "Yes").mean() * 100.0)
        if diabetes_known.any()
        else 0.0
    )
    hypertension_known = df["hypertension"].notna()
    hypertension_rate = (
        float((df.loc[hypertension_known, "hypertension"] == "Yes").mean() * 100.0)
        if hypertension_known.any()
        else 0.0
    )
    seniors = by_age[(by_age["level"] == "Seniors") & (by_age["diabetes"] == "Yes")]

    key_metrics: dict[str, float | int] = {
        "respondents": int(len(df)),
        "diabetes_pct": diabetes_rate,
        "hypertension_pct": hypertension_rate,
        "senior_diabetes_pct": float(seniors["percentage"].iloc[0]) if not seniors.empty else 0.0,
        "median_diagnosis_age": float(df["diagnosis_age"].median()) if df["diagnosis_age"].notna().any() else 0.0,
    }

    return EDAOutputs(
        prevalence_table=prevalence_table,
        figures=figures,
        key_metrics=key_metrics,
    )
