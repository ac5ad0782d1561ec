import io
from typing import Optional

from matplotlib.figure import Figure
from matplotlib.ticker import MaxNLocator

from data_models import DailyOverview
from utils import format_duration_hms

PASSED_COLOR = "#2da44e"
FAILED_COLOR = "#cf222e"
TOTAL_COLOR = "#57606a"


def render_hourly_chart(overview: DailyOverview, title: str = "Workflow runs by hour (UTC)",
                        out_file: Optional[str] = None) -> bytes:
    """
    Plot one day's runs per UTC hour as stacked passed/failed bars.

    The line shows every run started in the hour, including ones that are
    still running or ended without success or failure.

    :param overview: Overview of the day
    :param title: Figure title
    :param out_file: Also write the PNG to this path when given
    :return: PNG bytes
    """
    hours = list(range(24))
    passed = [bucket.passed for bucket in overview.hourly_breakdown]
    failed = [bucket.failed for bucket in overview.hourly_breakdown]

    # Not registered with pyplot: the figure is private to this call
    fig = Figure(figsize=(12, 5))
    ax = fig.subplots()
    ax.bar(hours, passed, color=PASSED_COLOR, label="Passed")
    ax.bar(hours, failed, bottom=passed, color=FAILED_COLOR, label="Failed")
    ax.plot(hours, overview.runs_by_hour, color=TOTAL_COLOR, marker='o', linewidth=1, label="All runs")
    if overview.total_runs:
        ax.axhline(overview.avg_runs_per_hour, color=TOTAL_COLOR, linestyle='--', alpha=0.6,
                   label=f"Avg {overview.avg_runs_per_hour}/h")

    ax.set_xticks(hours)
    ax.set_xticklabels([f"{h:02d}" for h in hours])
    ax.set_xlabel("Hour (UTC)")
    ax.set_ylabel("Runs")
    ax.yaxis.set_major_locator(MaxNLocator(integer=True))
    ax.grid(True, axis='y', linestyle='--', alpha=0.3)
    ax.legend(loc='upper left')

    subtitle = (f"{overview.total_runs} runs | {overview.passed_runs} passed | {overview.failed_runs} failed | "
                f"success rate {overview.success_rate}% | runtime {format_duration_hms(overview.total_runtime * 1000)}")
    fig.suptitle(f"{title}\n{subtitle}")
    fig.tight_layout(rect=[0, 0.03, 1, 0.92])

    buffer = io.BytesIO()
    fig.savefig(buffer, format='png')

    png = buffer.getvalue()
    if out_file:
        with open(out_file, 'wb') as f:
            f.write(png)
    return png
