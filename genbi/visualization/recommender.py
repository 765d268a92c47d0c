import logging
from typing import List, Optional

import pandas as pd

from ..config import Settings, settings as default_settings
from ..models import ChartKind, ResultSet, SemanticType, VisualizationSpec


DIMENSION_TYPES = (SemanticType.STRING, SemanticType.DATE, SemanticType.BOOLEAN)


class VisualizationRecommender:
    """Suggests a chart from the shape of a result set.

    Charts are only suggested when every result column has a place on the
    chart; anything else falls back to the table view.
    """

    def __init__(self, config: Optional[Settings] = None):
        self.logger = logging.getLogger(__name__)
        self.config = config or default_settings

    def recommend(self, result: ResultSet) -> VisualizationSpec:
        try:
            return self._recommend(result)
        except Exception as e:
            self.logger.error(f"Visualization recommendation failed: {e}")
            return VisualizationSpec(ChartKind.TABLE, rationale="recommendation_failed")

    def _recommend(self, result: ResultSet) -> VisualizationSpec:
        if not result.rows or not result.columns:
            return VisualizationSpec(ChartKind.TABLE, rationale="empty_result")

        names = result.column_names
        df = pd.DataFrame(list(result.rows), columns=names)
        numeric = [c.name for c in result.columns if c.semantic_type == SemanticType.NUMBER]
        dimensions = [c for c in result.columns if c.semantic_type in DIMENSION_TYPES]

        if len(names) == 2 and len(numeric) == 2:
            return VisualizationSpec(
                ChartKind.SCATTER,
                x_axis=numeric[0],
                y_axis=(numeric[1],),
                rationale="two_numeric_columns",
                recommended=(ChartKind.SCATTER, ChartKind.TABLE),
            )

        if len(dimensions) == 1 and numeric and len(numeric) + 1 == len(names):
            dimension = dimensions[0]
            distinct = int(df[dimension.name].nunique(dropna=False))
            if distinct > self.config.max_chart_categories:
                return VisualizationSpec(ChartKind.TABLE, rationale="too_many_categories")

            if dimension.semantic_type == SemanticType.DATE and self._is_monotonic(df[dimension.name]):
                primary, rationale = ChartKind.LINE, "time_series"
            else:
                primary, rationale = ChartKind.BAR, "categorical_comparison"

            recommended: List[ChartKind] = [primary]
            if len(numeric) == 1 and distinct <= self.config.max_pie_categories:
                recommended.append(ChartKind.PIE)
            recommended.append(ChartKind.TABLE)
            return VisualizationSpec(
                primary,
                x_axis=dimension.name,
                y_axis=tuple(numeric),
                rationale=rationale,
                recommended=tuple(recommended),
            )

        return VisualizationSpec(ChartKind.TABLE, rationale="unrecognized_shape")

    @staticmethod
    def _is_monotonic(series: pd.Series) -> bool:
        parsed = pd.to_datetime(series, errors="coerce", format="ISO8601")
        if parsed.isna().any():
            return False
        return bool(parsed.is_monotonic_increasing or parsed.is_monotonic_decreasing)
