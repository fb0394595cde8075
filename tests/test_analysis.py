"""Tests for the association and logistic-regression summaries."""

from __future__ import annotations

import math
import unittest

import numpy as np
import pandas as pd

from src.diabetes_report import analysis


def _from_counts(counts: dict[tuple[str, str], int], exposure_levels: list[str]) -> pd.DataFrame:
    rows = []
    for (exposure, outcome), count in counts.items():
        rows.extend([{"exposure": exposure, "outcome": outcome}] * count)
    df = pd.DataFrame(rows)
    df["exposure"] = pd.Categorical(df["exposure"], categories=exposure_levels)
    df["outcome"] = pd.Categorical(df["outcome"], categories=["No", "Yes"])
    return df


TWO_BY_TWO = {("A", "No"): 50, ("A", "Yes"): 50, ("B", "No"): 20, ("B", "Yes"): 80}


class AssociationTests(unittest.TestCase):
    def test_two_by_two_summary(self) -> None:
        summary = analysis.association_summary(_from_counts(TWO_BY_TWO, ["A", "B"]), "exposure", "outcome")

        self.assertEqual(summary.table.to_numpy().tolist(), [[50, 50], [20, 80]])
        self.assertEqual(summary.n, 200)
        self.assertTrue(math.isfinite(summary.chi2))
        self.assertGreater(summary.chi2, 0)
        self.assertLess(summary.p_value, 0.05)
        self.assertGreaterEqual(summary.cramers_v, 0.0)
        self.assertLessEqual(summary.cramers_v, 1.0)

        rr = summary.relative_risks.iloc[0]
        self.assertEqual(rr["level"], "B")
        self.assertAlmostEqual(rr["relative_risk"], (80 / 100) / (50 / 100))
        self.assertLess(rr["ci_low"], rr["relative_risk"])
        self.assertGreater(rr["ci_high"], rr["relative_risk"])

    def test_zero_reference_cases_give_infinite_ratio(self) -> None:
        counts = {("A", "No"): 50, ("A", "Yes"): 0, ("B", "No"): 20, ("B", "Yes"): 80}
        summary = analysis.association_summary(_from_counts(counts, ["A", "B"]), "exposure", "outcome")

        self.assertEqual(summary.table.to_numpy().tolist(), [[50, 0], [20, 80]])
        self.assertTrue(math.isfinite(summary.chi2))
        rr = summary.relative_risks.iloc[0]
        self.assertTrue(math.isinf(rr["relative_risk"]))
        self.assertTrue(math.isnan(rr["ci_low"]))
        self.assertEqual(rr["reference_risk"], 0.0)

    def test_reference_labels_follow_category_order(self) -> None:
        summary = analysis.association_summary(_from_counts(TWO_BY_TWO, ["B", "A"]), "exposure", "outcome")
        self.assertEqual(summary.row_reference, "B")
        self.assertEqual(summary.column_reference, "No")
        self.assertEqual(summary.event_label, "Yes")
        self.assertAlmostEqual(summary.relative_risks.iloc[0]["relative_risk"], 0.5 / 0.8)

    def test_multi_level_exposure_gives_one_ratio_per_level(self) -> None:
        counts = dict(TWO_BY_TWO)
        counts.update({("C", "No"): 70, ("C", "Yes"): 30})
        summary = analysis.association_summary(_from_counts(counts, ["A", "B", "C"]), "exposure", "outcome")
        self.assertEqual(list(summary.relative_risks["level"]), ["B", "C"])
        self.assertEqual(summary.dof, 2)

    def test_missing_values_dropped_or_kept(self) -> None:
        df = _from_counts(TWO_BY_TWO, ["A", "B"])
        df.loc[:9, "exposure"] = np.nan

        dropped = analysis.association_summary(df, "exposure", "outcome")
        self.assertEqual(dropped.n, 190)

        kept = analysis.association_summary(df, "exposure", "outcome", dropna=False)
        self.assertEqual(kept.n, 200)
        self.assertIn(analysis.MISSING_LABEL, list(kept.relative_risks["level"]))

    def test_non_binary_outcome_is_rejected(self) -> None:
        df = pd.DataFrame(
            {
                "exposure": pd.Categorical(["A", "B", "A", "B", "A", "B"]),
                "outcome": pd.Categorical(["x", "y", "z", "x", "y", "z"]),
            }
        )
        with self.assertRaises(analysis.AnalysisError):
            analysis.association_summary(df, "exposure", "outcome")

    def test_unknown_column_is_rejected(self) -> None:
        with self.assertRaises(analysis.AnalysisError):
            analysis.association_summary(_from_counts(TWO_BY_TWO, ["A", "B"]), "exposure", "nope")


def _threshold_dataset(size: int = 2000) -> pd.DataFrame:
    rng = np.random.default_rng(7)
    score = rng.normal(size=size)
    latent = 1.5 * score + rng.logistic(size=size)
    return pd.DataFrame(
        {
            "outcome": pd.Categorical(np.where(latent > 0, "Yes", "No"), categories=["No", "Yes"]),
            "level": pd.Categorical(np.where(score > 0, "High", "Low"), categories=["Low", "High"]),
            "group": pd.Categorical(rng.choice(["A", "B"], size=size), categories=["A", "B"]),
        }
    )


class LogisticTests(unittest.TestCase):
    def test_higher_risk_level_has_odds_ratio_above_one(self) -> None:
        summary = analysis.logistic_summary(_threshold_dataset(), "outcome", "level", "group")

        self.assertEqual(summary.outcome_reference, "No")
        self.assertEqual(summary.event_label, "Yes")
        self.assertEqual(summary.predictor_references, {"level": "Low", "group": "A"})
        self.assertEqual(len(summary.terms), 3)

        high = summary.terms[summary.terms["term"].str.contains("High")].iloc[0]
        self.assertGreater(high["odds_ratio"], 1.0)
        self.assertGreater(high["ci_low"], 1.0)
        self.assertLess(high["p_value"], 0.05)

    def test_interaction_adds_a_term(self) -> None:
        summary = analysis.logistic_summary(
            _threshold_dataset(), "outcome", "level", "group", interaction=True
        )
        self.assertTrue(summary.interaction)
        self.assertEqual(len(summary.terms), 4)
        self.assertEqual(summary.terms["term"].str.contains(":").sum(), 1)

    def test_missing_predictors_are_dropped(self) -> None:
        df = _threshold_dataset()
        df.loc[:99, "group"] = np.nan
        summary = analysis.logistic_summary(df, "outcome", "level", "group")
        self.assertEqual(summary.n, 1900)

    def test_outcome_must_be_binary(self) -> None:
        df = _threshold_dataset()
        df["outcome"] = df["outcome"].cat.add_categories(["Maybe"])
        df.loc[:4, "outcome"] = "Maybe"
        with self.assertRaises(analysis.AnalysisError):
            analysis.logistic_summary(df, "outcome", "level", "group")

    def test_perfect_separation_fails(self) -> None:
        df = _threshold_dataset()
        df["outcome"] = pd.Categorical(
            np.where(df["level"] == "High", "Yes", "No"), categories=["No", "Yes"]
        )
        with self.assertRaises(analysis.AnalysisError):
            analysis.logistic_summary(df, "outcome", "level", "group")


if __name__ == "__main__":
    unittest.main()
