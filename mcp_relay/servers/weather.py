"""
Weather tool server backed by the US National Weather Service API.

Tools:
  - get-alerts: active alerts for a two-letter state code
  - get-forecast: forecast periods for a latitude/longitude (US only)

Launch:
    python3 -m mcp_relay.servers.weather
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mcp_relay.server import StdioToolServer, ToolError, ToolHandler

logger = logging.getLogger(__name__)

NWS_API_BASE = "https://api.weather.gov"
USER_AGENT = "weather-app/1.0"
MAX_ALERTS = 20


def nws_request(client: httpx.Client, url: str) -> dict[str, Any] | None:
    """GET a NWS resource; None when the request fails."""
    headers = {"User-Agent": USER_AGENT, "Accept": "application/geo+json"}
    try:
        response = client.get(url, headers=headers)
        response.raise_for_status()
        return response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Error making NWS request: {e}")
        return None


def format_alert(feature: dict[str, Any]) -> str:
    props = feature.get("properties") or {}
    return "\n".join([
        f"Event: {props.get('event') or 'Unknown'}",
        f"Area: {props.get('areaDesc') or 'Unknown'}",
        f"Severity: {props.get('severity') or 'Unknown'}",
        f"Status: {props.get('status') or 'Unknown'}",
        f"Headline: {props.get('headline') or 'No headline'}",
        "---",
    ])


def format_period(period: dict[str, Any]) -> str:
    return "\n".join([
        f"{period.get('name') or 'Unknown'}:",
        f"Temperature: {period.get('temperature') or 'Unknown'}°{period.get('temperatureUnit') or 'F'}",
        f"Wind: {period.get('windSpeed') or 'Unknown'} {period.get('windDirection') or ''}",
        f"{period.get('shortForecast') or 'No forecast available'}",
        "---",
    ])


class GetAlertsTool(ToolHandler):
    name = "get-alerts"
    description = "Get weather alerts for a state"
    parameters = {
        "state": {
            "type": "string",
            "description": "Two-letter state code (e.g. CA, NY)",
        },
    }
    required = ["state"]

    def __init__(self, client: httpx.Client):
        self.client = client

    def handle(self, params: dict) -> str:
        state = params.get("state")
        if not isinstance(state, str) or len(state) != 2:
            raise ToolError("Invalid arguments: state must be a two-letter code")
        state_code = state.upper()

        data = nws_request(self.client, f"{NWS_API_BASE}/alerts?area={state_code}")
        if data is None:
            return "Failed to retrieve alerts data"

        features = data.get("features") or []
        if not features:
            return f"No active alerts for {state_code}"

        alerts = [format_alert(f) for f in features[:MAX_ALERTS]]
        return f"Active alerts for {state_code}:\n\n" + "\n".join(alerts)


class GetForecastTool(ToolHandler):
    name = "get-forecast"
    description = "Get weather forecast for a location"
    parameters = {
        "latitude": {"type": "number", "description": "Latitude of the location"},
        "longitude": {"type": "number", "description": "Longitude of the location"},
    }
    required = ["latitude", "longitude"]

    def __init__(self, client: httpx.Client):
        self.client = client

    def handle(self, params: dict) -> str:
        try:
            latitude = float(params["latitude"])
            longitude = float(params["longitude"])
        except (KeyError, TypeError, ValueError):
            raise ToolError("Invalid arguments: latitude and longitude must be numbers")

        points = nws_request(self.client, f"{NWS_API_BASE}/points/{latitude:.4f},{longitude:.4f}")
        if points is None:
            return (
                f"Failed to retrieve grid point data for coordinates: {latitude}, {longitude}. "
                "This location may not be supported by the NWS API (only US locations are supported)."
            )

        forecast_url = (points.get("properties") or {}).get("forecast")
        if not forecast_url:
            return "Failed to get forecast URL from grid point data"

        forecast = nws_request(self.client, forecast_url)
        if forecast is None:
            return "Failed to retrieve forecast data"

        periods = (forecast.get("properties") or {}).get("periods") or []
        if not periods:
            return "No forecast periods available"

        return f"Forecast for {latitude}, {longitude}:\n\n" + "\n".join(format_period(p) for p in periods)


def build_server(client: httpx.Client) -> StdioToolServer:
    server = StdioToolServer("weather")
    server.register(GetAlertsTool(client))
    server.register(GetForecastTool(client))
    return server


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
    with httpx.Client(timeout=30.0) as http_client:
        build_server(http_client).run()
