from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import Any, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table
import yaml

from runmatrix._logging import setup_logging
from runmatrix.encode import build_run_rows
from runmatrix.expand import check_run_limit, count_runs
from runmatrix.job import (
    apply_job_update,
    build_job_update,
    generate_runs,
    prepare_job,
)
from runmatrix.models import ConfigError
from runmatrix.reconcile import initial_selection, reconcile_with_report
from runmatrix.settings import EngineSettings, load_settings
from runmatrix.store import (
    load_job,
    load_pipeline,
    load_strategy,
    write_job,
    write_strategy,
)
from runmatrix.strategy import compile_strategy, flatten_strategy, with_domain

_cli_log = logging.getLogger("runmatrix.cli")

_PREVIEW_ROWS = 50


def _console() -> Console:
    return Console(highlight=False)


def _settings(args: argparse.Namespace) -> EngineSettings:
    _, settings = load_settings(args.settings)
    return settings


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _short_text(value: Any, *, width: int) -> str:
    text = str(value)
    if len(text) <= width:
        return text
    return text[: width - 3] + "..."


def _render_rows_table(
    title: str, rows: Sequence[dict[str, Any]], *, selected: set[int] | None = None
) -> Table:
    table = Table(title=title, box=box.SIMPLE)
    table.add_column("#", justify="right", style="bold")
    if selected is not None:
        table.add_column("Selected")
    table.add_column("Run specification")
    for row in rows[:_PREVIEW_ROWS]:
        index = int(row["index"])
        label = escape(_short_text(row["label"], width=120))
        if row["details"].get("parameterless"):
            label = f"[italic]{label}[/italic]"
        cells = [str(index)]
        if selected is not None:
            cells.append("yes" if index in selected else "")
        cells.append(label)
        table.add_row(*cells)
    if len(rows) > _PREVIEW_ROWS:
        extra = ["...", f"{len(rows) - _PREVIEW_ROWS} more"]
        if selected is not None:
            extra.insert(1, "")
        table.add_row(*extra)
    if not rows:
        empty = ["-", "0 runs will be created"]
        if selected is not None:
            empty.insert(1, "")
        table.add_row(*empty)
    return table


def _render_strategy_table(strategy_json: dict[str, Any], *, title: str) -> Table:
    table = Table(title=title, box=box.SIMPLE)
    table.add_column("Node", style="bold")
    table.add_column("Title")
    table.add_column("Parameter")
    table.add_column("Candidates")
    for node_id, node in strategy_json.items():
        for name, text in dict(node.get("parameters", {})).items():
            table.add_row(
                escape(node_id),
                escape(str(node.get("title", ""))),
                escape(name),
                escape(str(text)),
            )
    if not strategy_json:
        table.add_row("<none>", "", "", "")
    return table


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="runmatrix",
        description="Expand parameter strategies into runs and restore run selections",
    )
    parser.add_argument(
        "--settings",
        default=None,
        help="Settings YAML path (default: ./runmatrix.yaml if present)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser(
        "init-strategy", help="Compile a strategy from pipeline parameter defaults"
    )
    init.add_argument("--pipeline", required=True, help="Pipeline JSON/YAML")
    init.add_argument("--out", default=None, help="Write the strategy to this path")
    init.add_argument("--format", choices=["json", "yaml", "table"], default="json")
    init.set_defaults(handler=_cmd_init_strategy)

    set_domain = sub.add_parser(
        "set-domain", help="Replace one parameter's candidate list in a strategy"
    )
    set_domain.add_argument("--strategy", required=True, help="Strategy file")
    set_domain.add_argument("--node", required=True, help="Node id")
    set_domain.add_argument("--param", required=True, help="Parameter name")
    set_domain.add_argument(
        "--values", required=True, help="JSON array of candidate values"
    )
    set_domain.set_defaults(handler=_cmd_set_domain)

    expand = sub.add_parser("expand", help="List every run a strategy generates")
    expand.add_argument("--strategy", required=True, help="Strategy file")
    expand.add_argument("--pipeline-name", default="", help="Pipeline name for details")
    expand.add_argument("--format", choices=["json", "table"], default="table")
    expand.set_defaults(handler=_cmd_expand)

    reconcile = sub.add_parser(
        "reconcile", help="Map a job's saved runs onto a strategy's generated runs"
    )
    reconcile.add_argument("--strategy", required=True, help="Strategy file")
    reconcile.add_argument("--job", required=True, help="Job JSON/YAML")
    reconcile.add_argument("--format", choices=["json", "table"], default="table")
    reconcile.set_defaults(handler=_cmd_reconcile)

    prepare = sub.add_parser(
        "prepare", help="Build the editor state for a job and its pipeline"
    )
    prepare.add_argument("--pipeline", required=True, help="Pipeline JSON/YAML")
    prepare.add_argument("--job", required=True, help="Job JSON/YAML")
    prepare.add_argument("--format", choices=["json", "table"], default="table")
    prepare.set_defaults(handler=_cmd_prepare)

    select = sub.add_parser(
        "select", help="Build a job update payload from selected run indices"
    )
    select.add_argument("--strategy", required=True, help="Strategy file")
    select.add_argument("--job", required=True, help="Job JSON/YAML")
    target = select.add_mutually_exclusive_group()
    target.add_argument(
        "--index",
        action="append",
        type=int,
        default=None,
        help="Selected run index (repeatable)",
    )
    target.add_argument(
        "--restore",
        action="store_true",
        help="Select the runs restored from the job's saved parameters",
    )
    select.add_argument("--confirm-draft", action="store_true")
    select.add_argument(
        "--write", action="store_true", help="Store the update in the job file"
    )
    select.set_defaults(handler=_cmd_select)
    return parser


def _cmd_init_strategy(args: argparse.Namespace) -> int:
    settings = _settings(args)
    pipeline = load_pipeline(args.pipeline)
    strategy = compile_strategy(pipeline, reserved_key=settings.reserved_key)
    payload = strategy.to_json()
    if args.out:
        output_path = write_strategy(args.out, strategy)
        _cli_log.info("Wrote strategy to %s", output_path)

    if args.format == "json":
        _print_json(payload)
    elif args.format == "yaml":
        print(yaml.safe_dump(payload, sort_keys=False, allow_unicode=True), end="")
    else:
        title = f"Strategy: {escape(pipeline.name)}"
        _console().print(_render_strategy_table(payload, title=title))
    return 0


def _cmd_set_domain(args: argparse.Namespace) -> int:
    settings = _settings(args)
    strategy = load_strategy(args.strategy, reserved_key=settings.reserved_key)
    updated = with_domain(strategy, args.node, args.param, args.values)
    total = count_runs(flatten_strategy(updated))
    check_run_limit(total, settings.max_runs)
    output_path = write_strategy(args.strategy, updated)
    _print_json({"strategy_path": str(output_path), "total_runs": total})
    return 0


def _cmd_expand(args: argparse.Namespace) -> int:
    settings = _settings(args)
    strategy = load_strategy(args.strategy, reserved_key=settings.reserved_key)
    runs = generate_runs(strategy, settings=settings)
    rows = [
        row.to_json()
        for row in build_run_rows(runs, pipeline_name=args.pipeline_name)
    ]
    if args.format == "json":
        _print_json({"total_runs": len(runs), "rows": rows})
        return 0
    _console().print(_render_rows_table(f"Generated Runs ({len(rows)})", rows))
    return 0


def _cmd_reconcile(args: argparse.Namespace) -> int:
    settings = _settings(args)
    strategy = load_strategy(args.strategy, reserved_key=settings.reserved_key)
    job = load_job(args.job)
    runs = generate_runs(strategy, settings=settings)
    result = reconcile_with_report(runs, job.parameters)
    payload = {"total_runs": len(runs), **result.to_json()}
    if args.format == "json":
        _print_json(payload)
        return 0

    console = _console()
    overview = Table(title="Reconciliation", show_header=False)
    overview.add_column("Field", style="bold cyan")
    overview.add_column("Value")
    overview.add_row("Job", job.name or job.uuid)
    overview.add_row("Generated Runs", str(len(runs)))
    overview.add_row("Saved Runs", str(len(job.parameters)))
    overview.add_row("Selected", ", ".join(str(i) for i in result.selected) or "-")
    overview.add_row("Unmatched", str(len(result.unmatched)))
    console.print(overview)
    if result.unmatched:
        unmatched = Table(title="Unmatched Saved Runs", box=box.SIMPLE)
        unmatched.add_column("Parameters")
        for item in result.unmatched:
            unmatched.add_row(escape(_short_text(json.dumps(item), width=120)))
        console.print(unmatched)
    return 0


def _cmd_prepare(args: argparse.Namespace) -> int:
    settings = _settings(args)
    pipeline = load_pipeline(args.pipeline)
    job = load_job(args.job)
    state = prepare_job(job, pipeline, settings=settings)
    payload = state.to_json()
    payload["settings"] = settings.to_json()
    if args.format == "json":
        _print_json(payload)
        return 0

    console = _console()
    overview = Table(title="Job Editor", show_header=False)
    overview.add_column("Field", style="bold cyan")
    overview.add_column("Value")
    overview.add_row("Job", job.name or job.uuid)
    overview.add_row("Status", job.status)
    overview.add_row("Pipeline", pipeline.name)
    overview.add_row("Strategy Source", "compiled" if state.compiled else "saved")
    overview.add_row("Generated Runs", str(len(state.runs)))
    overview.add_row("Selected Runs", str(len(state.selected)))
    overview.add_row("Reserved Key", escape(settings.reserved_key))
    overview.add_row(
        "Max Runs", "unlimited" if settings.max_runs is None else str(settings.max_runs)
    )
    console.print(overview)
    console.print(_render_strategy_table(payload["strategy_json"], title="Strategy"))
    console.print(
        _render_rows_table("Runs", payload["rows"], selected=set(state.selected))
    )
    return 0


def _cmd_select(args: argparse.Namespace) -> int:
    settings = _settings(args)
    strategy = load_strategy(args.strategy, reserved_key=settings.reserved_key)
    job = load_job(args.job)
    runs = generate_runs(strategy, settings=settings)
    if args.index is not None:
        selected = list(args.index)
    elif args.restore:
        selected = initial_selection(runs, job.parameters)
    else:
        selected = list(range(len(runs)))

    update = build_job_update(
        job, strategy, runs, selected, confirm_draft=bool(args.confirm_draft)
    )
    payload: dict[str, Any] = {"update": update, "job_path": None}
    if args.write:
        job_path = write_job(args.job, apply_job_update(job, update))
        payload["job_path"] = str(job_path)
        _cli_log.info(
            "Stored %d selected run(s) in %s", len(update["parameters"]), job_path
        )
    _print_json(payload)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    setup_logging()
    parser = _build_parser()
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    args = parser.parse_args(raw_argv)
    command = str(getattr(args, "command", "unknown"))
    started = time.perf_counter()
    _cli_log.info("cli_command_start command=%s argv=%s", command, " ".join(raw_argv))

    exit_code = 1
    try:
        exit_code = int(args.handler(args))
    except ConfigError as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=config error=%s", command, exc
        )
        print(f"[config error] {exc}", file=sys.stderr)
        exit_code = 2
    except KeyboardInterrupt:
        _cli_log.error("cli_command_error command=%s kind=interrupted", command)
        print("\n[interrupted]", file=sys.stderr)
        exit_code = 130
    except RuntimeError as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=runtime error=%s", command, exc
        )
        print(f"[runtime error] {exc}", file=sys.stderr)
        exit_code = 1
    except (OSError, KeyError, ValueError) as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=%s error=%s",
            command,
            type(exc).__name__,
            exc,
        )
        print(f"[error] {type(exc).__name__}: {exc}", file=sys.stderr)
        exit_code = 1
    finally:
        _cli_log.info(
            "cli_command_end command=%s exit_code=%s duration_sec=%.3f",
            command,
            exit_code,
            time.perf_counter() - started,
        )

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
