"""
Evaluation result reporting.

Renders an ``EvaluationSummary`` as the plain-text performance block that
is appended to the evaluator's message log, as a markdown table, or as a
JSON results file.

Usage:
    from menta_bench.benchmark_report import format_summary, diagnose

    print(format_summary(summary))
    print(diagnose(summary.accuracy, "Menta", "task1_stress"))
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from .metrics import EvaluationSummary


def format_summary(summary: EvaluationSummary) -> str:
    """Plain-text performance block."""
    n = summary.total_samples
    lines: list[str] = []
    lines.append("=== PERFORMANCE METRICS ===")
    lines.append(f"Task completed - Accuracy: {summary.accuracy:.1f}% ({summary.correct}/{n})")
    lines.append(f"Time-to-First-Token (TTFT): {summary.ttft:.3f} sec")
    lines.append(f"Input Token Per Second (ITPS): {summary.itps:.1f} tokens/sec")
    lines.append(f"Output Token Per Second (OTPS): {summary.otps:.1f} tokens/sec")
    lines.append(f"Output Evaluation Time (OET): {summary.oet:.3f} sec")
    lines.append(f"Total Time: {summary.total_time:.3f} sec")
    lines.append(f"CPU Usage: {summary.cpu_percent:.1f}%")
    lines.append(f"RAM Usage: {summary.ram_gb:.2f} GB (Model: {summary.model_memory_gb:.2f} GB)")

    lines.append(f"OOM: {summary.oom_count}/{n} samples ({summary.oom_rate:.1f}%)")
    if summary.oom_count > 0:
        lines.append(
            f"OOM Memory: Avg {summary.avg_oom_memory_gb:.2f} GB, "
            f"Total {summary.total_oom_memory_gb:.2f} GB"
        )
        lines.append(f"Warning: {summary.oom_count} samples experienced out-of-memory errors")
    else:
        lines.append("OOM Memory: 0.00 GB (no OOM occurred)")
    return "\n".join(lines)


def diagnose(accuracy: float, model_name: str, task_name: str) -> str:
    """Short human-readable assessment of an accuracy figure."""
    if accuracy >= 90.0:
        text = f"Excellent performance! The model shows strong capability for {task_name}. "
    elif accuracy >= 80.0:
        text = f"Good performance with room for improvement in {task_name}. "
    elif accuracy >= 70.0:
        text = (
            "Moderate performance. Consider tuning parameters or prompt engineering "
            f"for {task_name}. "
        )
    else:
        text = f"Performance below expectations for {task_name}. Further optimization recommended. "

    lowered = model_name.lower()
    if lowered.startswith("menta"):
        text += "Menta demonstrates specialized training effectiveness. "
        if accuracy >= 85.0:
            text += "LoRA fine-tuning shows positive impact on mental health tasks."
        else:
            text += "May benefit from additional training data or hyperparameter tuning."
    elif "phi-4-mini" in lowered or "qwen3-4b-instruct" in lowered:
        text += "General model shows baseline performance for mental health evaluation. "
        if accuracy < 75.0:
            text += "Consider using domain-specific models like Menta for better results."
    else:
        text += "Model performance analysis completed."
    return text.rstrip()


def generate_markdown_report(
    summary: EvaluationSummary,
    model_name: str,
    task_name: str,
) -> str:
    """
    Markdown report with a metrics table and diagnosis.

    Args:
        summary: Finished run summary
        model_name: Model display name
        task_name: Task display name

    Returns:
        Markdown string
    """
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    lines: list[str] = []
    lines.append(f"# {task_name}: {model_name}")
    lines.append("")
    lines.append(f"*Generated: {timestamp}*")
    lines.append("")
    lines.append("| Metric | Value |")
    lines.append("|--------|-------|")
    lines.append(f"| Accuracy | {summary.accuracy:.1f}% ({summary.correct}/{summary.total_samples}) |")
    lines.append(f"| TTFT | {summary.ttft:.3f} s |")
    lines.append(f"| ITPS | {summary.itps:.1f} tok/s |")
    lines.append(f"| OTPS | {summary.otps:.1f} tok/s |")
    lines.append(f"| OET | {summary.oet:.3f} s |")
    lines.append(f"| Total time | {summary.total_time:.3f} s |")
    lines.append(f"| CPU | {summary.cpu_percent:.1f}% |")
    lines.append(f"| RAM | {summary.ram_gb:.2f} GB |")
    lines.append(f"| OOM | {summary.oom_count} ({summary.oom_rate:.1f}%) |")
    lines.append("")
    lines.append("## Diagnosis")
    lines.append("")
    lines.append(diagnose(summary.accuracy, model_name, task_name))
    lines.append("")
    return "\n".join(lines)


def save_results_json(
    summary: EvaluationSummary,
    output: str | Path,
    metadata: dict[str, Any] | None = None,
) -> Path:
    """Write the summary (plus optional run metadata) as JSON."""
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "timestamp": datetime.now().isoformat(),
        "metadata": metadata or {},
        "summary": summary.to_dict(),
    }
    with open(output, "w") as f:
        json.dump(payload, f, indent=2)
    return output
