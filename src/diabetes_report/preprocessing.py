"""Table loading, merging, and recoding for the diabetes case study."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import Callable

import pandas as pd

from . import recodes


logger = logging.getLogger(__name__)

PIPELINE_VERSION = "1.0"
ID_COLUMN = "SEQN"
DATA_FILE_EXTENSION = ".xpt"


class PipelineError(RuntimeError):
    """Raised when the raw tables cannot support the merge plan."""


@dataclass(frozen=True)
class JoinStep:
    name: str
    code: str
    columns: tuple[str, ...]


@dataclass(frozen=True)
class RawTable:
    code: str
    name: str
    frame: pd.DataFrame


@dataclass(frozen=True)
class DerivationRule:
    output: str
    inputs: tuple[str, ...]
    rule: Callable[..., pd.Series]


@dataclass(frozen=True)
class PreprocessOutputs:
    processed_path: Path
    analysis_path: Path
    levels_json_path: Path
    summary_json_path: Path
    summary_stats: dict[str, int | float | str]


# The first step is the base table; every later step is left-joined on SEQN.
# Tables are looked up by file code; names are for logging only.
JOIN_PLAN: tuple[JoinStep, ...] = (
    JoinStep(
        "Demographic Variables and Sample Weights",
        "DEMO_J",
        ("RIDAGEYR", "RIAGENDR", "RIDRETH3", "DMDEDUC2"),
    ),
    JoinStep("Diabetes", "DIQ_J", ("DIQ010", "DID040", "DIQ160", "DIQ180")),
    JoinStep("Income", "INQ_J", ("INDFMMPC",)),
    JoinStep("Health Insurance", "HIQ_J", ("HIQ011",)),
    JoinStep("Body Measures", "BMX_J", ("BMXBMI",)),
    JoinStep("Blood Pressure & Cholesterol", "BPQ_J", ("BPQ020", "BPQ030", "BPQ050A")),
    JoinStep(
        "Blood Pressure",
        "BPX_J",
        ("BPXSY1", "BPXSY2", "BPXSY3", "BPXDI1", "BPXDI2", "BPXDI3"),
    ),
)


def _code_rule(code_map: recodes.CodeMap) -> Callable[[pd.Series], pd.Series]:
    def rule(series: pd.Series) -> pd.Series:
        return recodes.recode(series, code_map)

    return rule


def _average_rule(*readings: pd.Series) -> pd.Series:
    return recodes.average_reading(pd.concat(readings, axis=1))


# Rules run in order; later rules may read columns produced by earlier ones.
DERIVATION_RULES: tuple[DerivationRule, ...] = (
    DerivationRule("age_group", ("RIDAGEYR",), recodes.age_group),
    DerivationRule("bmi_group", ("BMXBMI",), recodes.bmi_group),
    DerivationRule("diagnosis_age", ("DID040",), recodes.diagnosis_age),
    DerivationRule("blood_test", ("DIQ180",), _code_rule(recodes.BLOOD_TEST)),
    DerivationRule("diabetes", ("DIQ010",), _code_rule(recodes.DIABETES)),
    DerivationRule("education", ("DMDEDUC2",), _code_rule(recodes.EDUCATION)),
    DerivationRule("gender", ("RIAGENDR",), _code_rule(recodes.GENDER)),
    DerivationRule("insurance", ("HIQ011",), _code_rule(recodes.INSURANCE)),
    DerivationRule("income", ("INDFMMPC",), _code_rule(recodes.INCOME)),
    DerivationRule("prediabetes", ("DIQ160",), _code_rule(recodes.PREDIABETES)),
    DerivationRule("race", ("RIDRETH3",), _code_rule(recodes.RACE)),
    DerivationRule("avg_systolic", ("BPXSY1", "BPXSY2", "BPXSY3"), _average_rule),
    DerivationRule("avg_diastolic", ("BPXDI1", "BPXDI2", "BPXDI3"), _average_rule),
    DerivationRule(
        "hypertension",
        ("BPQ020", "BPQ030", "BPQ050A", "avg_systolic", "avg_diastolic"),
        recodes.hypertension,
    ),
)

RENAMES = {ID_COLUMN: "seqn", "RIDAGEYR": "age", "BMXBMI": "bmi"}

OUTPUT_COLUMNS = [
    "seqn",
    "age",
    "bmi",
    "age_group",
    "bmi_group",
    "diagnosis_age",
    "blood_test",
    "diabetes",
    "education",
    "gender",
    "insurance",
    "income",
    "prediabetes",
    "race",
    "avg_systolic",
    "avg_diastolic",
    "hypertension",
]

# Reference label of each categorical column in the statistics-ready table.
BASELINES = {
    "age_group": "Young Adults",
    "bmi_group": "Normal Weight",
    "blood_test": "No",
    "diabetes": "No",
    "education": "College Graduate",
    "gender": "Male",
    "insurance": "Insured",
    "income": "High Income",
    "prediabetes": "No",
    "race": "Non-Hispanic White",
    "hypertension": "No",
}

EXCLUDED_AGE_GROUPS = ("Children/Teens", "Seniors")


def load_raw_tables(raw_dir: Path, descriptions: dict[str, str] | None = None) -> dict[str, RawTable]:
    """Read every XPT file in ``raw_dir``, keyed by file code.

    Each table is named by its catalog description when one is known.
    """
    descriptions = descriptions or {}
    tables: dict[str, RawTable] = {}
    paths = sorted(
        path for path in raw_dir.iterdir() if path.suffix.lower() == DATA_FILE_EXTENSION
    )
    for path in paths:
        code = path.stem.upper()
        if code in tables:
            raise PipelineError(f"{path.name} duplicates already loaded file code {code}")
        table = RawTable(
            code=code,
            name=descriptions.get(code, code),
            frame=pd.read_sas(path, format="xport"),
        )
        tables[code] = table
        logger.info("Loaded %s as %r (%d rows)", path.name, table.name, len(table.frame))
    return tables


def _resolve_table(tables: dict[str, RawTable], step: JoinStep) -> pd.DataFrame | None:
    table = tables.get(step.code)
    return None if table is None else table.frame


def _table_columns(table: pd.DataFrame, step: JoinStep) -> pd.DataFrame:
    missing = [column for column in (ID_COLUMN, *step.columns) if column not in table.columns]
    if missing:
        raise PipelineError(f"{step.code} is missing required columns: {', '.join(missing)}")
    return table[[ID_COLUMN, *step.columns]].copy()


def merge_tables(
    tables: dict[str, RawTable], plan: tuple[JoinStep, ...] = JOIN_PLAN
) -> pd.DataFrame:
    """Left-join the plan's tables onto its base table by respondent id."""
    base_step, *join_steps = plan
    base = _resolve_table(tables, base_step)
    if base is None:
        raise PipelineError(f"Base table {base_step.name!r} ({base_step.code}) was not loaded")

    merged = _table_columns(base, base_step)
    for step in join_steps:
        table = _resolve_table(tables, step)
        if table is None:
            logger.warning("Table %r (%s) not loaded; its columns will be missing", step.name, step.code)
            for column in step.columns:
                merged[column] = float("nan")
            continue
        merged = merged.merge(
            _table_columns(table, step),
            on=ID_COLUMN,
            how="left",
            validate="many_to_one",
        )
    return merged


def derive_columns(
    merged: pd.DataFrame, rules: tuple[DerivationRule, ...] = DERIVATION_RULES
) -> pd.DataFrame:
    df = merged.copy()
    for rule in rules:
        df[rule.output] = rule.rule(*(df[column] for column in rule.inputs))
    return df


def select_columns(derived: pd.DataFrame) -> pd.DataFrame:
    df = derived.rename(columns=RENAMES)
    df = df[OUTPUT_COLUMNS].copy()
    df["seqn"] = df["seqn"].astype("int64")
    return df


def build_processed_table(tables: dict[str, RawTable]) -> pd.DataFrame:
    return select_columns(derive_columns(merge_tables(tables)))


def apply_baselines(df: pd.DataFrame, baselines: dict[str, str] = BASELINES) -> pd.DataFrame:
    """Move each column's baseline label to the front of its categories."""
    df = df.copy()
    for column, baseline in baselines.items():
        if column not in df.columns:
            continue
        categories = list(df[column].cat.categories)
        if baseline not in categories:
            raise PipelineError(f"Baseline {baseline!r} is not a level of {column}")
        ordered = [baseline] + [label for label in categories if label != baseline]
        df[column] = df[column].cat.reorder_categories(ordered)
    return df


def build_analysis_table(processed: pd.DataFrame) -> pd.DataFrame:
    """Statistics-ready variant: baselines first, extreme age groups excluded."""
    df = apply_baselines(processed)
    df = df[~df["age_group"].isin(EXCLUDED_AGE_GROUPS)].copy()
    df["age_group"] = df["age_group"].cat.remove_categories(list(EXCLUDED_AGE_GROUPS))
    return df.reset_index(drop=True)


def category_levels(df: pd.DataFrame) -> dict[str, list[str]]:
    return {
        column: [str(label) for label in df[column].cat.categories]
        for column in df.columns
        if isinstance(df[column].dtype, pd.CategoricalDtype)
    }


def load_processed(csv_path: Path, levels_json_path: Path) -> pd.DataFrame:
    """Read a persisted table and restore its categorical level order."""
    with levels_json_path.open("r", encoding="utf-8") as levels_file:
        levels = json.load(levels_file)
    df = pd.read_csv(csv_path)
    for column, categories in levels.get(csv_path.name, {}).items():
        df[column] = pd.Categorical(df[column], categories=categories)
    return df


def run_preprocessing(
    raw_dir: Path, processed_root: Path, descriptions: dict[str, str] | None = None
) -> PreprocessOutputs:
    """Build and persist the processed and statistics-ready tables."""
    processed_root.mkdir(parents=True, exist_ok=True)

    tables = load_raw_tables(raw_dir, descriptions)
    processed = build_processed_table(tables)
    analysis = build_analysis_table(processed)

    processed_path = processed_root / "nhanes_processed.csv"
    analysis_path = processed_root / "nhanes_analysis.csv"
    levels_json_path = processed_root / "category_levels.json"
    summary_json_path = processed_root / "preprocessing_summary.json"

    processed.to_csv(processed_path, index=False)
    analysis.to_csv(analysis_path, index=False)
    with levels_json_path.open("w", encoding="utf-8") as levels_file:
        json.dump(
            {
                processed_path.name: category_levels(processed),
                analysis_path.name: category_levels(analysis),
            },
            levels_file,
            indent=2,
        )

    summary_stats: dict[str, int | float | str] = {
        "pipeline_version": PIPELINE_VERSION,
        "tables_loaded": int(len(tables)),
        "processed_rows": int(len(processed)),
        "analysis_rows": int(len(analysis)),
        "diabetes_known_rows": int(processed["diabetes"].notna().sum()),
        "hypertension_known_rows": int(processed["hypertension"].notna().sum()),
        "median_age": float(processed["age"].median()) if len(processed) else 0.0,
    }
    with summary_json_path.open("w", encoding="utf-8") as summary_file:
        json.dump(summary_stats, summary_file, indent=2, sort_keys=True)
    logger.info("Processed table: %d rows, analysis table: %d rows", len(processed), len(analysis))

    return PreprocessOutputs(
        processed_path=processed_path,
        analysis_path=analysis_path,
        levels_json_path=levels_json_path,
        summary_json_path=summary_json_path,
        summary_stats=summary_stats,
    )
