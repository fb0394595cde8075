"""Markdown and HTML report generation for the diabetes case study."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import markdown
import pandas as pd

from .analysis import AnalysisOutputs, AssociationSummary, LogisticSummary
from .eda import EDAOutputs, Figure
from .preprocessing import PreprocessOutputs


logger = logging.getLogger(__name__)


def _pct(value: float) -> str:
    return f"{value:.2f}%"


def _num(value: float) -> str:
    return f"{value:.2f}"


def _p(value: float) -> str:
    return "< 0.001" if value < 0.001 else f"{value:.3f}"


def _figure(figure: Figure, report_path: Path) -> str:
    relative = Path(os.path.relpath(figure.path, report_path.parent)).as_posix()
    return f"![{figure.caption}]({relative})\n\n*{figure.caption}*"


def _markdown_table(frame: pd.DataFrame) -> str:
    formatted = pd.DataFrame(
        {
            column: frame[column].map(_p)
            if column == "p_value"
            else frame[column].map(lambda value: _num(value) if isinstance(value, float) else str(value))
            for column in frame.columns
        }
    )
    return formatted.to_markdown(index=False, disable_numparse=True)


def _html_document(title: str, content: str) -> str:
    body = markdown.markdown(content, extensions=["tables"])
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title}</title>
</head>
<body>
{body}
</body>
</html>
"""


def _association_section(title: str, summary: AssociationSummary) -> str:
    risks = summary.relative_risks[["level", "relative_risk", "ci_low", "ci_high"]]
    strength = "weak" if summary.cramers_v < 0.1 else "moderate" if summary.cramers_v < 0.3 else "strong"
    return f"""### {title}

- Respondents with both answers: **{summary.n}**
- Chi-square: **{_num(summary.chi2)}** on {summary.dof} df, p {_p(summary.p_value)}
- Cramér's V: **{_num(summary.cramers_v)}** ({strength} association)
- Relative risk of `{summary.column_variable} = {summary.event_label}` against
  reference `{summary.row_variable} = {summary.row_reference}`:

{_markdown_table(risks)}
"""


def _model_section(title: str, summary: LogisticSummary) -> str:
    references = ", ".join(
        f"`{predictor} = {label}`" for predictor, label in summary.predictor_references.items()
    )
    terms = summary.terms[["term", "odds_ratio", "ci_low", "ci_high", "p_value"]]
    kind = "with" if summary.interaction else "without"
    return f"""### {title}

Logistic regression of `{summary.outcome} = {summary.event_label}` (reference
`{summary.outcome_reference}`) {kind} an interaction term, fitted on
**{summary.n}** respondents. Reference levels: {references}.

{_markdown_table(terms)}
"""


def write_report(
    preprocess_outputs: PreprocessOutputs,
    eda_outputs: EDAOutputs,
    analysis_outputs: AnalysisOutputs,
    report_path: Path,
) -> None:
    """Write the narrative Markdown report, plus an HTML copy beside it."""
    report_path.parent.mkdir(parents=True, exist_ok=True)

    respondents = int(eda_outputs.key_metrics["respondents"])
    diabetes_pct = float(eda_outputs.key_metrics["diabetes_pct"])
    hypertension_pct = float(eda_outputs.key_metrics["hypertension_pct"])
    senior_pct = float(eda_outputs.key_metrics["senior_diabetes_pct"])
    diagnosis_age = float(eda_outputs.key_metrics["median_diagnosis_age"])

    analysis_rows = int(preprocess_outputs.summary_stats["analysis_rows"])
    version = str(preprocess_outputs.summary_stats["pipeline_version"])

    rr = float(analysis_outputs.key_metrics["diabetes_hypertension_rr"])
    rr_low = float(analysis_outputs.key_metrics["diabetes_hypertension_rr_low"])
    rr_high = float(analysis_outputs.key_metrics["diabetes_hypertension_rr_high"])
    direction = "higher" if rr > 1 else "lower"

    figures = eda_outputs.figures
    associations = analysis_outputs.associations
    models = analysis_outputs.models

    content = f"""# Diabetes Case Study: NHANES 2017-2018

## Data and Methods

- Source: CDC NHANES 2017-2018 demographics, examination, and questionnaire files
- Processed table: `{preprocess_outputs.processed_path.name}` ({respondents} respondents, pipeline v{version})
- Statistics-ready table: `{preprocess_outputs.analysis_path.name}` ({analysis_rows} adults aged 18-64)
- Categorical comparisons use chi-square tests with Cramér's V and relative risks;
  adjusted comparisons use logistic regression odds ratios with 95% confidence intervals.

---

## Descriptive Findings

- Self-reported diabetes prevalence: **{_pct(diabetes_pct)}**
- Hypertension (self-report or measured >= 130/80 mm Hg): **{_pct(hypertension_pct)}**
- Diabetes prevalence among seniors (65+): **{_pct(senior_pct)}**
- Median self-reported age at diagnosis: **{_num(diagnosis_age)}** years

{_figure(figures["age"], report_path)}

{_figure(figures["bmi"], report_path)}

{_figure(figures["income"], report_path)}

{_figure(figures["diagnosis_age"], report_path)}

{_figure(figures["blood_pressure"], report_path)}

---

## Associations

Adults reporting diabetes have a **{direction}** risk of hypertension than those
without it (RR {_num(rr)}, 95% CI {_num(rr_low)}-{_num(rr_high)}).

{_association_section("Diabetes and Hypertension", associations["diabetes_hypertension"])}
{_association_section("Health Insurance and Blood Testing", associations["insurance_blood_test"])}
---

## Logistic Regression

{_model_section("Hypertension by Diabetes and Gender", models["hypertension_diabetes_gender"])}
{_model_section("Diabetes by Age Group and Insurance", models["diabetes_age_insurance"])}
---

## Tables

- Prevalence: `{eda_outputs.prevalence_table.name}`
- Associations: `{analysis_outputs.association_table.name}`
- Odds ratios: `{analysis_outputs.odds_ratio_table.name}`
"""

    report_path.write_text(content, encoding="utf-8")
    html_path = report_path.with_suffix(".html")
    html_path.write_text(_html_document("Diabetes Case Study", content), encoding="utf-8")
    logger.info("Wrote %s and %s", report_path, html_path)
