"""
Plot components for the Wave Plus dashboard.
"""

from datetime import datetime
from typing import List, Tuple

import plotly.graph_objects as go  # type: ignore
from plotly.subplots import make_subplots  # type: ignore

from ..publisher import FACET_RANGES, Facet
from .state import Sample

# (history key, subplot title, facet providing the axis range, line color)
PANELS: List[Tuple[str, str, Facet, str]] = [
    ("co2", "CO2 (ppm)", Facet.CO2, "red"),
    ("voc", "VOC (ppb)", Facet.AIR_QUALITY, "purple"),
    ("humidity", "Humidity (%)", Facet.HUMIDITY, "blue"),
    ("temperature", "Temperature (°C)", Facet.TEMPERATURE, "orange"),
]


def _padded_range(values: List[float], facet: Facet, min_padding: float) -> List[float]:
    """Auto-scale around the data, clipped to the facet's declared bounds."""
    bounds = FACET_RANGES[facet]
    low, high = min(values), max(values)
    padding = max(min_padding, (high - low) * 0.1)
    lower = max(bounds.min_value, low - padding)
    upper = high + padding
    if facet is not Facet.AIR_QUALITY:
        upper = min(bounds.max_value, upper)
    return [lower, upper]


def create_dashboard_layout(histories: dict[str, List[Sample]]) -> go.Figure:
    """Create the 2x2 grid of published values."""
    fig = make_subplots(
        rows=2,
        cols=2,
        subplot_titles=[title for _, title, _, _ in PANELS],
        vertical_spacing=0.15,
        horizontal_spacing=0.1,
    )

    for idx, (key, title, facet, color) in enumerate(PANELS):
        row, col = idx // 2 + 1, idx % 2 + 1
        samples = histories.get(key, [])
        if not samples:
            continue

        values = [s.value for s in samples]
        fig.add_trace(
            go.Scatter(
                x=[datetime.fromtimestamp(s.timestamp) for s in samples],
                y=values,
                mode="lines+markers",
                name=title,
                line=dict(color=color, width=2),
                line_shape="hv",
                showlegend=False,
            ),
            row=row,
            col=col,
        )
        min_padding = 1.0 if facet is Facet.TEMPERATURE else 5.0
        fig.update_yaxes(
            range=_padded_range(values, facet, min_padding), row=row, col=col
        )

    fig.update_layout(
        height=600,
        showlegend=False,
        margin=dict(l=50, r=50, t=80, b=50),
    )
    return fig
