"""Report rendering: boxed text tables and a JSON document.

Both renderers consume the output of ``reduce_all`` and nothing else.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from routebench import __version__
from routebench.constants import MAX_ENDPOINT_NAME_LENGTH, NO_MATCH_ENDPOINT
from routebench.reducer import ExtractionStatus, MetricsRow, ParameterMetrics
from routebench.scenario import Scenario

ReportTable = Sequence[tuple[str, dict[str, MetricsRow]]]

BOX_WIDTH = 100

DISPLAY_NAMES = {
    "cohere": "Cohere",
    "claude": "Claude",
    "anthropic": "Claude",
    "deepseek": "DeepSeek",
}


def display_name(provider: str) -> str:
    return DISPLAY_NAMES.get(provider.lower(), provider)


def truncate_endpoint_name(endpoint: str) -> str:
    if len(endpoint) > MAX_ENDPOINT_NAME_LENGTH:
        return f"{endpoint[: MAX_ENDPOINT_NAME_LENGTH - 3]}..."
    return endpoint


def format_parameter(metrics: ParameterMetrics | None) -> str:
    """One parameter cell; the three extraction states render differently."""
    if metrics is None or metrics.status is ExtractionStatus.NOT_FOUND:
        return "Not found"
    if metrics.status is ExtractionStatus.NOT_EXTRACTED:
        return f"Not extracted ({metrics.extracted_pct}%)"
    return (
        f"'{metrics.most_common_value}' ({metrics.extracted_pct}% extracted, "
        f"{metrics.consistency_pct}% consistent)"
    )


def format_latency(row: MetricsRow) -> str:
    if row.avg_latency_ms is None:
        return "N/A"
    return f"{row.avg_latency_ms}ms"


def format_tokens(row: MetricsRow) -> str:
    if row.avg_tokens_in is None and row.avg_tokens_out is None:
        return "N/A"
    tokens_in = "N/A" if row.avg_tokens_in is None else row.avg_tokens_in
    tokens_out = "N/A" if row.avg_tokens_out is None else row.avg_tokens_out
    return f"{tokens_in} in / {tokens_out} out"


def format_completion(row: MetricsRow) -> str:
    if row.avg_completion_pct is None:
        return "N/A"
    return f"{row.avg_completion_pct}%"


def _branch(index: int, count: int) -> str:
    return "└─" if index == count - 1 else "├─"


def _endpoint_lines(row: MetricsRow) -> list[str]:
    if not row.has_data:
        return ["No data"]
    lines = []
    for item in row.endpoints:
        name = "No endpoint matched" if item.endpoint == NO_MATCH_ENDPOINT else item.endpoint
        lines.append(f"{truncate_endpoint_name(name)}: {item.count} times ({item.match_pct}%)")
    if row.error_count:
        lines.append(f"Errors: {row.error_count}/{row.iterations_seen}")
    if row.iterations_seen < row.iterations_expected:
        lines.append(f"Partial: {row.iterations_seen}/{row.iterations_expected} iterations")
    return lines


def render_prompt_version(prompt_version: str, rows: dict[str, MetricsRow]) -> list[str]:
    providers = list(rows)
    count = len(providers)
    title = f"╔═ PROMPT VERSION {prompt_version.upper()} "
    lines = [title + "═" * max(0, BOX_WIDTH - len(title) - 1) + "╗"]

    lines.append("║ ENDPOINT MATCHING")
    for i, provider in enumerate(providers):
        lines.append(f"║ {_branch(i, count)} {display_name(provider)}:")
        stem = "│" if i < count - 1 else " "
        lines.extend(f"║ {stem}  {text}" for text in _endpoint_lines(rows[provider]))
    lines.append("║")

    lines.append("║ PARAMETER EXTRACTION VALUES")
    parameter_names: list[str] = []
    for row in rows.values():
        for name in row.parameters:
            if name not in parameter_names:
                parameter_names.append(name)
    for p, name in enumerate(parameter_names):
        lines.append(f"║ {_branch(p, len(parameter_names))} {name}:")
        stem = "│" if p < len(parameter_names) - 1 else " "
        for i, provider in enumerate(providers):
            cell = format_parameter(rows[provider].parameters.get(name))
            lines.append(f"║ {stem}  {_branch(i, count)} {display_name(provider)}: {cell}")
    lines.append("║")

    lines.append("║ PERFORMANCE")
    lines.append("║ ├─ Response Time (ms):")
    for i, provider in enumerate(providers):
        lines.append(
            f"║ │  {_branch(i, count)} {display_name(provider)}: {format_latency(rows[provider])}"
        )
    lines.append("║ ├─ Token Usage (in/out):")
    for i, provider in enumerate(providers):
        lines.append(
            f"║ │  {_branch(i, count)} {display_name(provider)}: {format_tokens(rows[provider])}"
        )
    lines.append("║ └─ Parameter Completion (%):")
    for i, provider in enumerate(providers):
        lines.append(
            f"║    {_branch(i, count)} {display_name(provider)}: {format_completion(rows[provider])}"
        )
    lines.append("╚" + "═" * (BOX_WIDTH - 2) + "╝")
    return lines


def render_text_report(table: ReportTable, scenario: Scenario) -> str:
    """The boxed comparison report, one box per prompt version."""
    lines = [
        "",
        "=== MODEL COMPARISON RESULTS ===",
        f"Test sentence: '{scenario.utterance}'",
        f"Iterations per configuration: {scenario.iterations_per_config}",
        "",
    ]
    for prompt_version, rows in table:
        lines.extend(render_prompt_version(prompt_version, rows))
        lines.append("")
    return "\n".join(lines)


def build_json_report(
    table: ReportTable,
    scenario: Scenario,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Machine-readable report with a flat summary and the full rows."""
    report: dict[str, Any] = {
        "metadata": {
            "timestamp": datetime.now(tz=UTC).isoformat(),
            "version": __version__,
            **(metadata or {}),
        },
        "scenario": scenario.to_dict(),
        "summary": [],
        "results": {},
    }

    for prompt_version, rows in table:
        report["results"][prompt_version] = {p: row.to_dict() for p, row in rows.items()}
        for provider, row in rows.items():
            report["summary"].append(
                {
                    "prompt_version": prompt_version,
                    "provider": provider,
                    "iterations_seen": row.iterations_seen,
                    "error_count": row.error_count,
                    "most_common_endpoint": row.most_common_endpoint,
                    "endpoint_consistency_pct": row.endpoint_consistency_pct,
                    "extracted_pct": {n: m.extracted_pct for n, m in row.parameters.items()},
                    "consistency_pct": {
                        n: m.consistency_pct for n, m in row.parameters.items()
                    },
                    "avg_latency_ms": row.avg_latency_ms,
                    "avg_tokens_in": row.avg_tokens_in,
                    "avg_tokens_out": row.avg_tokens_out,
                    "avg_completion_pct": row.avg_completion_pct,
                }
            )

    return report
