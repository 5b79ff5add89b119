"""
Dash application showing the values published for a Wave Plus.
"""

import asyncio
import logging
import threading
import time
from typing import Optional

import dash  # type: ignore
from dash import dcc, html, Input, Output

from ..air_quality import AirQuality
from ..config import Settings
from ..monitor import run_monitor
from ..publisher import MANUFACTURER, MODEL
from .plots import PANELS, create_dashboard_layout
from .state import DashboardPublisher

logger = logging.getLogger(__name__)

_PANEL_STYLE = {
    "display": "inline-block",
    "verticalAlign": "top",
    "padding": "10px",
    "border": "1px solid #ddd",
    "borderRadius": "5px",
    "margin": "5px",
}

_AIR_QUALITY_COLORS = {
    AirQuality.GOOD: "green",
    AirQuality.FAIR: "orange",
    AirQuality.POOR: "red",
}


class DashboardApp:
    """Dash application fed by a DashboardPublisher.

    The monitor runs in a background thread with its own event loop; the
    Dash server runs in the calling thread.
    """

    def __init__(
        self,
        settings: Settings,
        publisher: Optional[DashboardPublisher] = None,
        refresh_seconds: int = 5,
    ):
        self.settings = settings
        self.publisher = publisher or DashboardPublisher()
        self.update_interval = refresh_seconds * 1000

        self._monitor_thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None

        self.app = dash.Dash(__name__)
        self._setup_layout()
        self._setup_callbacks()

    def _setup_layout(self) -> None:
        self.app.layout = html.Div(
            [
                html.H1(
                    f"{MANUFACTURER} {MODEL} - {self.settings.name}",
                    style={"textAlign": "center"},
                ),
                html.Div(
                    [
                        html.Div(
                            [
                                html.H3("Accessory"),
                                html.P(f"Manufacturer: {MANUFACTURER}"),
                                html.P(f"Model: {MODEL}"),
                                html.P(f"Serial Number: {self.settings.serial_number}"),
                            ],
                            style={**_PANEL_STYLE, "width": "30%"},
                        ),
                        html.Div(
                            [
                                html.H3("Current Values"),
                                html.Div(id="air-quality", children="No data"),
                                html.Div(id="current-values", children=""),
                            ],
                            style={**_PANEL_STYLE, "width": "65%"},
                        ),
                    ],
                    style={"margin": "20px", "display": "flex", "gap": "10px"},
                ),
                html.Div(
                    [
                        dcc.Graph(
                            id="facet-plot",
                            config={"displayModeBar": True},
                            style={"height": "650px"},
                        ),
                    ]
                ),
                dcc.Interval(
                    id="interval-component",
                    interval=self.update_interval,
                    n_intervals=0,
                ),
            ]
        )

    def _setup_callbacks(self) -> None:
        @self.app.callback(  # type: ignore
            [
                Output("facet-plot", "figure"),
                Output("air-quality", "children"),
                Output("current-values", "children"),
            ],
            [Input("interval-component", "n_intervals")],
        )
        def update_view(n_intervals: int):  # type: ignore
            return self.render()

    def render(self) -> tuple:
        """Build the figure and status panels from the publisher's state."""
        histories = {key: self.publisher.history(key) for key, _, _, _ in PANELS}
        figure = create_dashboard_layout(histories)
        current = self.publisher.current()

        if "air_quality" in current:
            quality = AirQuality(int(current["air_quality"]))
            air_quality = html.Span(
                f"Air Quality: {quality.name.title()}",
                style={
                    "color": _AIR_QUALITY_COLORS.get(quality, "gray"),
                    "fontWeight": "bold",
                    "fontSize": "16px",
                },
            )
        else:
            air_quality = html.Span("Air Quality: Unknown", style={"color": "gray"})

        last_update = self.publisher.last_update
        age = (
            f"{time.time() - last_update:.0f}s ago" if last_update is not None else "never"
        )
        details = html.Div(
            [
                html.P(
                    f"{title}: {current[key]:g}" if key in current else f"{title}: -",
                    style={"margin": "5px 0", "fontSize": "14px"},
                )
                for key, title, _, _ in PANELS
            ]
            + [
                html.P(
                    f"Last update: {age} ({self.publisher.updates} updates)",
                    style={"margin": "5px 0", "fontSize": "14px"},
                )
            ]
        )
        return figure, air_quality, details

    def _monitor_worker(self) -> None:
        """Background worker running the monitor on its own event loop."""

        async def monitor() -> None:
            self._stop_event = asyncio.Event()
            await run_monitor(self.settings, self.publisher, stop_event=self._stop_event)

        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        try:
            self._loop.run_until_complete(monitor())
        except Exception as e:
            logger.exception("Monitor worker fatal error: %s", e)
        finally:
            self._loop.close()
            self._loop = None

    def start_monitor(self) -> None:
        """Start the monitor thread."""
        if self._monitor_thread is None or not self._monitor_thread.is_alive():
            self._monitor_thread = threading.Thread(
                target=self._monitor_worker, daemon=True, name="WavePlusMonitor"
            )
            self._monitor_thread.start()

    def stop_monitor(self) -> None:
        """Stop the monitor thread."""
        loop, stop_event = self._loop, self._stop_event
        if loop is not None and stop_event is not None and not loop.is_closed():
            loop.call_soon_threadsafe(stop_event.set)
        if self._monitor_thread and self._monitor_thread.is_alive():
            self._monitor_thread.join(timeout=10.0)

    def run(self, host: str = "127.0.0.1", port: int = 8050, debug: bool = False) -> None:
        """Run the Dash server with the monitor in the background."""
        self.start_monitor()
        try:
            self.app.run(host=host, port=port, debug=debug)
        finally:
            self.stop_monitor()


def create_app(settings: Settings, **kwargs: int) -> DashboardApp:
    """Factory function to create a dashboard app."""
    return DashboardApp(settings, **kwargs)
