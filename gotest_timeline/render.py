"""Render the timeline into a self-contained HTML page."""

import json
import logging
from collections.abc import Mapping, Sequence
from datetime import timedelta
from functools import cache
from typing import Any

from jinja2 import Environment, StrictUndefined, TemplateError
from markupsafe import Markup
from plotly.offline import get_plotlyjs

from gotest_timeline.chart import PlotlyTrace
from gotest_timeline.config import format_duration, round_duration
from gotest_timeline.errors import RenderError
from gotest_timeline.models.timeline import Timeline

log = logging.getLogger(__name__)

CHART_SETTINGS: Mapping[str, Any] = {
    "showlegend": False,
    "yaxis": {"visible": False},
    "xaxis": {"ticksuffix": "s"},
}

_MILLISECOND = timedelta(milliseconds=1)

_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
	<meta charset="utf-8">
	<title>Test Results ({{ duration }} {{ passed }} passed, {{ failed }} failed)</title>
	<style>
	body {
		-webkit-font-smoothing: antialiased;
	}

	#chart {
		width: 100%;
		min-height: 100vh;
		max-height: 100%;
		position: absolute;
		top: 0;
		left: 0;
		margin: 0 auto;
	}

	.popover {
		font-family: "Open Sans", verdana, arial, sans-serif;
		position: fixed;
		top: 60px;
		right: 60px;
		background-color: #f0f0f0;
		border: 1px solid #999;
		padding: 20px;
		box-shadow: 0 0 10px rgba(0,0,0,0.2);
		display: none;
		z-index: 1000;
		width: 330px;
	}

	.close-btn {
		cursor: pointer;
		float: right;
	}
	</style>
</head>
<body>
	<div id="popover" class="popover">
		<span class="close-btn" onclick="closePopover()">&times;</span>
		<p>You can zoom the chart with the controls or by selecting an area.</p>
	</div>
	<div id="chart"></div>

	<script>
	{{ plotly_js }}
	</script>

	<script>
	Plotly.newPlot(
		document.getElementById('chart'),
		{{ traces_json }},
		{{ settings_json }}
	);
	</script>
{% if call_on_load %}
	<script>
	window.onload = function() {
		fetch('/loaded').then(() => console.log('Loaded signal sent'));
	};
	</script>
{% endif %}
	<script>
	function closePopover() {
		document.getElementById('popover').style.display = 'none';
		localStorage.setItem('popoverShown', 'true');
	}

	document.addEventListener('DOMContentLoaded', function() {
		if (!localStorage.getItem('popoverShown')) {
			document.getElementById('popover').style.display = 'block';
		}
	});
	</script>
</body>
</html>
"""

_environment = Environment(
    autoescape=True,
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


@cache
def plotly_source() -> str:
    """Source of the plotly.js bundle shipped with the ``plotly`` package."""
    return get_plotlyjs()


def _script_json(value: Any) -> Markup:
    # "</" would close the surrounding <script> element early
    text = json.dumps(value, indent=2, ensure_ascii=False)
    return Markup(text.replace("</", "<\\/"))


def render_html(
    timeline: Timeline,
    traces: Sequence[PlotlyTrace],
    *,
    call_on_load: bool,
) -> str:
    """Render the chart page.

    Traces are drawn bottom-up, so they are reversed to put the test that
    started first at the top of the chart.

    Args:
        timeline: Finalized timeline, used for the title counters
        traces: Traces ordered by start time
        call_on_load: Include the script that reports ``GET /loaded``

    Raises:
        RenderError: If the template cannot be rendered

    """
    ordered = [trace.model_dump(mode="json") for trace in reversed(traces)]

    try:
        traces_json = _script_json(ordered)
        settings_json = _script_json(CHART_SETTINGS)
        template = _environment.from_string(_TEMPLATE)
        html = template.render(
            plotly_js=Markup(plotly_source()),
            traces_json=traces_json,
            settings_json=settings_json,
            call_on_load=call_on_load,
            passed=timeline.passed,
            failed=timeline.failed,
            duration=format_duration(
                round_duration(timeline.duration, _MILLISECOND)
            ),
        )
    except (TemplateError, TypeError, ValueError) as exc:
        raise RenderError(f"Error rendering HTML: {exc}") from exc

    log.debug("Generated HTML with %d trace(s)", len(ordered))
    return html
