"""Command-line interface for running menta-bench evaluations."""

import logging

import click

from .config import BatchConfig, ModelProfile, SamplingConfig
from .errors import ConfigError, ModelLoadError

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]
BATCH_PRESETS = ["default", "fast", "low-memory"]
TASK_NAMES = [
    "task1_stress",
    "task2_depression_binary",
    "task3_depression_severity",
    "task4_suicide_ideation",
    "task5_suicide_risk_binary",
    "task6_suicide_risk_severity",
]


@click.group()
@click.option(
    "--log-level",
    default="WARNING",
    envvar="MENTA_BENCH_LOG_LEVEL",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Logging verbosity (env: MENTA_BENCH_LOG_LEVEL)",
)
def cli(log_level):
    """menta-bench: on-device mental-health classification benchmark."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option("--task", "-t", "task_name", required=True, type=click.Choice(TASK_NAMES))
@click.option("--model", "-m", "model_path", required=True, help="Path to GGUF weights")
@click.option(
    "--profile",
    default=None,
    type=click.Choice([p.value for p in ModelProfile]),
    help="Model variant settings (guessed from the filename if omitted)",
)
@click.option("--max-samples", default=10, type=int, show_default=True)
@click.option("--dataset", "-d", type=click.Path(exists=True, dir_okay=False), help="CSV or JSON dataset")
@click.option("--batch-preset", default="default", type=click.Choice(BATCH_PRESETS), show_default=True)
@click.option("--seed", default=None, type=int, help="Sampler seed for reproducible runs")
@click.option("--threads", default=None, type=int, help="Backend worker threads")
@click.option("--temperature", default=0.7, type=float, show_default=True)
@click.option("--top-p", default=0.8, type=float, show_default=True)
@click.option("--top-k", default=20, type=int, show_default=True)
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write summary JSON here")
@click.option("--markdown", type=click.Path(dir_okay=False), help="Write a markdown report here")
def evaluate(
    task_name,
    model_path,
    profile,
    max_samples,
    dataset,
    batch_preset,
    seed,
    threads,
    temperature,
    top_p,
    top_k,
    output,
    markdown,
):
    """Evaluate a model on one classification task."""
    from pathlib import Path

    from .benchmark_report import diagnose, format_summary, generate_markdown_report, save_results_json
    from .evaluator import Evaluator, ProgressEvent, SampleEvent
    from .tasks import get_task

    try:
        sampling = SamplingConfig(temperature=temperature, top_p=top_p, top_k=top_k)
    except ConfigError as exc:
        raise click.BadParameter(str(exc)) from exc

    model_profile = ModelProfile.from_name(profile) if profile else ModelProfile.guess(model_path)
    task = get_task(task_name)
    evaluator = Evaluator(
        batch_config=BatchConfig.preset(batch_preset),
        sampling_config=sampling,
        seed=seed,
        threads=threads,
    )

    click.echo(f"{task.name} | model={model_path} | profile={model_profile.config.name}")
    try:
        for event in evaluator.run_evaluation(
            task_name,
            model_path,
            max_samples=max_samples,
            profile=model_profile,
            dataset=dataset,
        ):
            if isinstance(event, SampleEvent):
                mark = "ok" if event.correct else "x"
                click.echo(
                    f"  Sample {event.index + 1}: {event.response!r} -> {event.predicted} "
                    f"(expected: {event.expected}) [{mark}]"
                )
            elif isinstance(event, ProgressEvent):
                click.echo(event.message)
    except ModelLoadError as exc:
        raise click.ClickException(str(exc)) from exc

    summary = evaluator.summary
    if summary is None:
        raise click.ClickException("Evaluation produced no summary")

    click.echo()
    click.echo(format_summary(summary))
    click.echo()
    click.echo(diagnose(summary.accuracy, Path(model_path).stem, task.name))

    if output:
        path = save_results_json(
            summary,
            output,
            metadata={
                "task": task_name,
                "model": model_path,
                "profile": model_profile.value,
                "seed": seed,
            },
        )
        click.echo(f"Results written to {path}")
    if markdown:
        Path(markdown).write_text(generate_markdown_report(summary, Path(model_path).stem, task.name))
        click.echo(f"Report written to {markdown}")


@cli.command()
def tasks():
    """List available classification tasks."""
    from .tasks import all_tasks

    for task in all_tasks():
        classes = ", ".join(task.class_names)
        click.echo(f"{task.task_type.value:30s} {task.name} [classes: {classes}; weight {task.weight}]")


@cli.command()
def profiles():
    """List model variant profiles."""
    for profile in ModelProfile:
        cfg = profile.config
        click.echo(
            f"{profile.value:12s} {cfg.name:18s} gpu_layers={cfg.gpu_layers} "
            f"n_ctx={cfg.context_size} n_batch={cfg.batch_size} ~{cfg.memory_gb:.1f} GB"
        )


def main():
    cli()


if __name__ == "__main__":
    main()
