"""Inferential statistics for the diabetes case study."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import re
import warnings

import numpy as np
import pandas as pd
from scipy import stats
from scipy.stats.contingency import relative_risk
import statsmodels.formula.api as smf
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning,
    PerfectSeparationError,
    PerfectSeparationWarning,
)

from .preprocessing import PreprocessOutputs, load_processed


logger = logging.getLogger(__name__)

MISSING_LABEL = "Missing"
CONFIDENCE_LEVEL = 0.95
MAX_ITERATIONS = 200

_TERM_PATTERN = re.compile(r"C\((\w+)\)\[T\.([^\]]+)\]")


class AnalysisError(RuntimeError):
    """Raised when a statistical summary cannot be computed."""


@dataclass(frozen=True)
class AssociationSummary:
    row_variable: str
    column_variable: str
    row_reference: str
    column_reference: str
    event_label: str
    table: pd.DataFrame
    n: int
    chi2: float
    dof: int
    p_value: float
    cramers_v: float
    relative_risks: pd.DataFrame


@dataclass(frozen=True)
class LogisticSummary:
    outcome: str
    predictors: tuple[str, str]
    interaction: bool
    outcome_reference: str
    event_label: str
    predictor_references: dict[str, str]
    n: int
    terms: pd.DataFrame


@dataclass(frozen=True)
class AnalysisOutputs:
    associations: dict[str, AssociationSummary]
    models: dict[str, LogisticSummary]
    association_table: Path
    odds_ratio_table: Path
    key_metrics: dict[str, float | int | str]


def _as_categorical(series: pd.Series) -> pd.Series:
    if isinstance(series.dtype, pd.CategoricalDtype):
        return series
    return series.astype("category")


def _prepare(df: pd.DataFrame, columns: list[str], dropna: bool) -> pd.DataFrame:
    """Select ``columns`` as categoricals, handling missing values."""
    missing_columns = [column for column in columns if column not in df.columns]
    if missing_columns:
        raise AnalysisError(f"Unknown columns: {', '.join(missing_columns)}")

    data = df[columns].copy()
    for column in columns:
        data[column] = _as_categorical(data[column])
    if dropna:
        data = data.dropna(subset=columns)
    else:
        for column in columns:
            if data[column].isna().any():
                data[column] = data[column].cat.add_categories([MISSING_LABEL]).fillna(MISSING_LABEL)
    for column in columns:
        data[column] = data[column].cat.remove_unused_categories()
    return data


def contingency_table(data: pd.DataFrame, row_variable: str, column_variable: str) -> pd.DataFrame:
    """Counts in declared label order, including empty cells."""
    table = pd.crosstab(data[row_variable], data[column_variable])
    return table.reindex(
        index=data[row_variable].cat.categories,
        columns=data[column_variable].cat.categories,
        fill_value=0,
    )


def association_summary(
    df: pd.DataFrame, row_variable: str, column_variable: str, dropna: bool = True
) -> AssociationSummary:
    """Chi-square association, Cramér's V, and relative risk.

    Rows of the contingency table are the exposure levels, the first being
    the reference. The column variable must have two levels; the event is the
    non-reference (last) level. Zero cells give non-finite risk ratios.
    """
    data = _prepare(df, [row_variable, column_variable], dropna)
    table = contingency_table(data, row_variable, column_variable)
    if table.shape[0] < 2 or table.shape[1] != 2:
        raise AnalysisError(
            f"Need >=2 levels of {row_variable} and exactly 2 of {column_variable}, "
            f"got a {table.shape[0]}x{table.shape[1]} table"
        )

    counts = table.to_numpy()
    n = int(counts.sum())
    chi2, p_value, dof, _expected = stats.chi2_contingency(counts)
    cramers_v = float(np.sqrt(chi2 / (n * (min(counts.shape) - 1))))

    row_labels = [str(label) for label in table.index]
    column_labels = [str(label) for label in table.columns]
    reference_cases = int(counts[0, 1])
    reference_total = int(counts[0].sum())

    records = []
    for position in range(1, counts.shape[0]):
        exposed_cases = int(counts[position, 1])
        exposed_total = int(counts[position].sum())
        with np.errstate(divide="ignore", invalid="ignore"):
            result = relative_risk(exposed_cases, exposed_total, reference_cases, reference_total)
            interval = result.confidence_interval(confidence_level=CONFIDENCE_LEVEL)
        records.append(
            {
                "level": row_labels[position],
                "risk": exposed_cases / exposed_total if exposed_total else float("nan"),
                "reference_risk": reference_cases / reference_total if reference_total else float("nan"),
                "relative_risk": float(result.relative_risk),
                "ci_low": float(interval.low),
                "ci_high": float(interval.high),
            }
        )

    return AssociationSummary(
        row_variable=row_variable,
        column_variable=column_variable,
        row_reference=row_labels[0],
        column_reference=column_labels[0],
        event_label=column_labels[1],
        table=table,
        n=n,
        chi2=float(chi2),
        dof=int(dof),
        p_value=float(p_value),
        cramers_v=cramers_v,
        relative_risks=pd.DataFrame.from_records(records),
    )


def _tidy_term(term: str) -> str:
    return _TERM_PATTERN.sub(r"\1[\2]", term)


def logistic_summary(
    df: pd.DataFrame,
    outcome: str,
    predictor1: str,
    predictor2: str,
    interaction: bool = False,
    dropna: bool = True,
) -> LogisticSummary:
    """Odds ratios from a logistic regression on two categorical predictors.

    Each variable's first category is its reference. The outcome must have
    exactly two levels. Fitting failures propagate as ``AnalysisError``.
    """
    data = _prepare(df.dropna(subset=[outcome]), [outcome, predictor1, predictor2], dropna)
    outcome_levels = [str(label) for label in data[outcome].cat.categories]
    if len(outcome_levels) != 2:
        raise AnalysisError(f"{outcome} must have exactly 2 levels, found {outcome_levels}")

    model_data = data.copy()
    model_data["_event"] = (data[outcome] == outcome_levels[1]).astype("int64")
    joiner = " * " if interaction else " + "
    formula = f"_event ~ C({predictor1}){joiner}C({predictor2})"

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", PerfectSeparationWarning)
            warnings.simplefilter("error", ConvergenceWarning)
            model = smf.logit(formula=formula, data=model_data).fit(disp=False, maxiter=MAX_ITERATIONS)
    except (PerfectSeparationError, PerfectSeparationWarning, ConvergenceWarning, np.linalg.LinAlgError) as exc:
        raise AnalysisError(f"Logistic fit failed for {formula}: {exc}") from exc
    if not model.mle_retvals.get("converged", True):
        raise AnalysisError(f"Logistic fit did not converge for {formula}")

    conf = model.conf_int(alpha=1 - CONFIDENCE_LEVEL)
    terms = pd.DataFrame(
        {
            "term": [_tidy_term(str(term)) for term in model.params.index],
            "coef": model.params.to_numpy(),
            "odds_ratio": np.exp(model.params.to_numpy()),
            "ci_low": np.exp(conf[0].to_numpy()),
            "ci_high": np.exp(conf[1].to_numpy()),
            "p_value": model.pvalues.to_numpy(),
        }
    )

    return LogisticSummary(
        outcome=outcome,
        predictors=(predictor1, predictor2),
        interaction=interaction,
        outcome_reference=outcome_levels[0],
        event_label=outcome_levels[1],
        predictor_references={
            predictor: str(data[predictor].cat.categories[0])
            for predictor in (predictor1, predictor2)
        },
        n=int(model.nobs),
        terms=terms,
    )


def _binary_diabetes(df: pd.DataFrame) -> pd.DataFrame:
    """Restrict to diagnosed/undiagnosed respondents for two-level models."""
    df = df[df["diabetes"].isin(["No", "Yes"])].copy()
    df["diabetes"] = df["diabetes"].cat.remove_unused_categories()
    return df


def _association_frame(summaries: dict[str, AssociationSummary]) -> pd.DataFrame:
    frames = []
    for name, summary in summaries.items():
        frame = summary.relative_risks.copy()
        frame.insert(0, "question", name)
        frame.insert(1, "exposure", summary.row_variable)
        frame.insert(2, "reference", summary.row_reference)
        frame.insert(3, "outcome", f"{summary.column_variable}={summary.event_label}")
        frame["chi2"] = summary.chi2
        frame["dof"] = summary.dof
        frame["p_value"] = summary.p_value
        frame["cramers_v"] = summary.cramers_v
        frame["n"] = summary.n
        frames.append(frame)
    return pd.concat(frames, ignore_index=True)


def _odds_ratio_frame(models: dict[str, LogisticSummary]) -> pd.DataFrame:
    frames = []
    for name, summary in models.items():
        frame = summary.terms.copy()
        frame.insert(0, "model", name)
        frame["n"] = summary.n
        frames.append(frame)
    return pd.concat(frames, ignore_index=True)


def run_analysis(preprocessed: PreprocessOutputs, outputs_root: Path) -> AnalysisOutputs:
    """Evaluate the study questions on the statistics-ready table."""
    tables_dir = outputs_root / "tables"
    tables_dir.mkdir(parents=True, exist_ok=True)

    df = load_processed(preprocessed.analysis_path, preprocessed.levels_json_path)
    diabetes_df = _binary_diabetes(df)

    associations = {
        "diabetes_hypertension": association_summary(diabetes_df, "diabetes", "hypertension"),
        "insurance_blood_test": association_summary(df, "insurance", "blood_test"),
    }
    models = {
        "hypertension_diabetes_gender": logistic_summary(
            diabetes_df, "hypertension", "diabetes", "gender"
        ),
        "diabetes_age_insurance": logistic_summary(
            diabetes_df, "diabetes", "age_group", "insurance", interaction=True
        ),
    }
    for name, summary in associations.items():
        logger.info("%s: chi2=%.2f p=%.3g V=%.3f", name, summary.chi2, summary.p_value, summary.cramers_v)

    association_table = tables_dir / "association_summary.csv"
    odds_ratio_table = tables_dir / "odds_ratios.csv"
    _association_frame(associations).round(4).to_csv(association_table, index=False)
    _odds_ratio_frame(models).round(4).to_csv(odds_ratio_table, index=False)

    htn = associations["diabetes_hypertension"]
    htn_rr = htn.relative_risks.iloc[0]
    key_metrics: dict[str, float | int | str] = {
        "diabetes_hypertension_rr": float(htn_rr["relative_risk"]),
        "diabetes_hypertension_rr_low": float(htn_rr["ci_low"]),
        "diabetes_hypertension_rr_high": float(htn_rr["ci_high"]),
        "diabetes_hypertension_p": htn.p_value,
        "diabetes_hypertension_v": htn.cramers_v,
        "insurance_blood_test_p": associations["insurance_blood_test"].p_value,
        "insurance_blood_test_v": associations["insurance_blood_test"].cramers_v,
    }

    return AnalysisOutputs(
        associations=associations,
        models=models,
        association_table=association_table,
        odds_ratio_table=odds_ratio_table,
        key_metrics=key_metrics,
    )
