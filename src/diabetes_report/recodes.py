"""Recoding and binning rules for NHANES survey codes.

Every rule is a pure function of raw columns and returns either a float
series or a pandas ``Categorical`` whose categories are the rule's declared
label set. Codes outside a rule's mapping (refused, don't know, unmapped)
become missing rather than falling into a default category.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd


AGE_BINS = [0, 18, 35, 65, 100]
AGE_LABELS = ["Children/Teens", "Young Adults", "Middle-Aged", "Seniors"]

BMI_BINS = [0, 18.5, 25, 30, 35, 40, np.inf]
BMI_LABELS = [
    "Underweight",
    "Normal Weight",
    "Overweight",
    "Obesity Class 1",
    "Obesity Class 2",
    "Obesity Class 3",
]

# NHANES top-codes self-reported ages at 80; larger values are sentinels.
MAX_DIAGNOSIS_AGE = 80

SYSTOLIC_THRESHOLD = 130
DIASTOLIC_THRESHOLD = 80

YES_NO = {1: "Yes", 2: "No"}


@dataclass(frozen=True)
class CodeMap:
    """Mapping from integer survey codes to an ordered label set."""

    codes: dict[int, str]

    @property
    def labels(self) -> list[str]:
        labels: list[str] = []
        for label in self.codes.values():
            if label not in labels:
                labels.append(label)
        return labels


BLOOD_TEST = CodeMap(YES_NO)
DIABETES = CodeMap({1: "Yes", 2: "No", 3: "Borderline"})
EDUCATION = CodeMap(
    {
        1: "Less Than High School",
        2: "Less Than High School",
        3: "High School Graduate",
        4: "Some College",
        5: "College Graduate",
    }
)
GENDER = CodeMap({1: "Male", 2: "Female"})
INSURANCE = CodeMap({1: "Insured", 2: "Uninsured"})
INCOME = CodeMap({1: "Low Income", 2: "Middle Income", 3: "High Income"})
PREDIABETES = CodeMap(YES_NO)
# Code 5 is not used by RIDRETH3 and stays unmapped.
RACE = CodeMap(
    {
        1: "Mexican American",
        2: "Other Hispanic",
        3: "Non-Hispanic White",
        4: "Non-Hispanic Black",
        6: "Non-Hispanic Asian",
        7: "Other/Multiracial",
    }
)
HYPERTENSION_LABELS = ["Yes", "No"]


def recode(series: pd.Series, code_map: CodeMap) -> pd.Series:
    """Map raw survey codes onto ``code_map``'s categorical label set."""
    numeric = pd.to_numeric(series, errors="coerce")
    labels = numeric.map(code_map.codes)
    return pd.Series(
        pd.Categorical(labels, categories=code_map.labels),
        index=series.index,
        name=series.name,
    )


def age_group(age: pd.Series) -> pd.Series:
    """Bucket age in years into left-closed groups."""
    return pd.cut(
        pd.to_numeric(age, errors="coerce"),
        bins=AGE_BINS,
        labels=AGE_LABELS,
        right=False,
    )


def bmi_group(bmi: pd.Series) -> pd.Series:
    """Bucket BMI into standard clinical classes, left-closed."""
    return pd.cut(
        pd.to_numeric(bmi, errors="coerce"),
        bins=BMI_BINS,
        labels=BMI_LABELS,
        right=False,
    )


def diagnosis_age(raw_age: pd.Series) -> pd.Series:
    numeric = pd.to_numeric(raw_age, errors="coerce").astype("float64")
    return numeric.where(numeric <= MAX_DIAGNOSIS_AGE)


def average_reading(readings: pd.DataFrame) -> pd.Series:
    """Mean of repeated readings per row; missing only if every reading is."""
    numeric = readings.apply(pd.to_numeric, errors="coerce")
    return numeric.mean(axis=1, skipna=True)


def hypertension(
    diagnosed: pd.Series,
    told_high_twice: pd.Series,
    taking_medication: pd.Series,
    avg_systolic: pd.Series,
    avg_diastolic: pd.Series,
) -> pd.Series:
    """Flag hypertension from self-report or measured blood pressure.

    Any affirmative sub-condition gives ``Yes``. Otherwise the flag is ``No``
    when at least one sub-condition was observed, and missing when none was.
    """
    self_reports = [
        pd.to_numeric(column, errors="coerce")
        for column in (diagnosed, told_high_twice, taking_medication)
    ]
    systolic = pd.to_numeric(avg_systolic, errors="coerce")
    diastolic = pd.to_numeric(avg_diastolic, errors="coerce")

    conditions = pd.DataFrame(
        {
            "diagnosed": self_reports[0].map({1: True, 2: False}),
            "told_high_twice": self_reports[1].map({1: True, 2: False}),
            "taking_medication": self_reports[2].map({1: True, 2: False}),
            "high_systolic": (systolic >= SYSTOLIC_THRESHOLD).where(systolic.notna()),
            "high_diastolic": (diastolic >= DIASTOLIC_THRESHOLD).where(diastolic.notna()),
        },
        index=diagnosed.index,
    )

    any_true = conditions.eq(True).any(axis=1)
    any_observed = conditions.notna().any(axis=1)

    labels = pd.Series(np.nan, index=conditions.index, dtype="object")
    labels[any_observed] = "No"
    labels[any_true] = "Yes"
    return pd.Series(
        pd.Categorical(labels, categories=HYPERTENSION_LABELS),
        index=conditions.index,
        name="hypertension",
    )
