#!/usr/bin/env python3
"""
CLI Entry Point: run the media orchestrator from a terminal
===========================================================
Usage:
    media-orchestrator plan job.yaml
    media-orchestrator generate job.yaml [--dry-run]
    media-orchestrator resume [--batch BATCH_ID]
    media-orchestrator status [--batch BATCH_ID]
    media-orchestrator health [--reset [MODEL_ID]]
    media-orchestrator priority video [--set ID ...] [--reset]

Settings come from the environment and a .env file (see config.py).
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
load_dotenv(override=True)  # override=True: .env values win over empty system env vars

from .api_log import ApiCallLog
from .config import Settings
from .errors import OrchestratorError
from .health import ModelHealthTracker
from .models import BatchStatus, ModelCategory, TaskGroup
from .planner import plan_task_groups
from .priority import ModelPriorityResolver
from .progress import ProgressRenderer
from .project_file import JobFileResult, load_job_file
from .prompts import build_story_prompt
from .providers import MockProvider, ProviderAdapter, build_providers
from .state import StateManager
from .supervisor import GenerationSupervisor
from .tracing import TracingConfig, configure_tracing, shutdown_tracing

logger = logging.getLogger("media_orchestrator.cli")

DRY_RUN_POLL_INTERVAL = 0.2


def setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
        force=True,  # re-apply even if already configured
    )
    # per-request lines from the HTTP client drown the polling log
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _build_tracing_cfg(args) -> Optional[TracingConfig]:
    """Return a TracingConfig when --tracing is set, otherwise None."""
    if getattr(args, "tracing", False):
        return TracingConfig(
            enabled=True,
            otlp_endpoint=getattr(args, "otlp_endpoint", None),
        )
    return None


# ─────────────────────────────────────────────
# Runtime wiring
# ─────────────────────────────────────────────

@dataclass
class Runtime:
    settings: Settings
    store: StateManager
    health: ModelHealthTracker
    resolver: ModelPriorityResolver
    providers: dict[str, ProviderAdapter]
    call_log: ApiCallLog

    def supervisor(self, groups=(), poll_interval: Optional[float] = None) -> GenerationSupervisor:
        return GenerationSupervisor(
            groups, self.providers, self.resolver,
            store=self.store,
            poll_interval=poll_interval or self.settings.poll_interval,
            task_timeout=self.settings.task_timeout,
            stale_after=self.settings.stale_after,
        )

    async def close(self) -> None:
        for adapter in self.providers.values():
            await adapter.close()
        await self.store.close()
        shutdown_tracing()


async def open_runtime(args, dry_run: bool = False) -> Runtime:
    settings = Settings.from_env(dotenv=False)
    if getattr(args, "db", None):
        settings.db_path = Path(args.db)
    tracing_cfg = _build_tracing_cfg(args)
    if tracing_cfg is not None:
        configure_tracing(tracing_cfg)

    store = StateManager(settings.db_path)
    health = ModelHealthTracker(threshold=settings.health_threshold, store=store)
    await health.load()
    call_log = ApiCallLog()
    if dry_run:
        providers: dict[str, ProviderAdapter] = {"mock": MockProvider(call_log=call_log)}
    else:
        providers = build_providers(settings, call_log=call_log)
    resolver = ModelPriorityResolver(health, providers=providers.keys(), store=store)
    await resolver.load()
    return Runtime(settings, store, health, resolver, providers, call_log)


def _load_job(path: str) -> JobFileResult:
    try:
        return load_job_file(path)
    except (FileNotFoundError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)


def _prompt_for(job: JobFileResult, group: TaskGroup) -> str:
    return job.prompts.get(group.task_number) or build_story_prompt(group.shots)


def _print_groups(groups: list[TaskGroup]) -> None:
    print(f"{'Group':<22} {'Shots':>5} {'Dur':>6} {'Status':<13} {'Prog':>4}  Result / error")
    print("-" * 78)
    for g in groups:
        detail = g.result_url or g.error or ""
        print(f"{g.id:<22} {len(g.shot_ids):>5} {g.total_duration:>5.1f}s "
              f"{g.status.value:<13} {g.progress:>3}%  {detail[:60]}")


# ─────────────────────────────────────────────
# Subcommands
# ─────────────────────────────────────────────

def cmd_plan(args) -> None:
    job = _load_job(args.file)
    settings = Settings.from_env(dotenv=False)
    max_duration = args.max_duration or job.max_group_duration or settings.max_group_duration
    groups = plan_task_groups(job.shots, max_duration, job.config, job.batch_id)
    print(f"Batch {groups[0].batch_id}: {len(job.shots)} shot(s) → {len(groups)} task group(s) "
          f"(max {max_duration:g}s)")
    for g in groups:
        print(f"\n[{g.task_number}] {g.id}  {g.total_duration:.1f}s  shots={', '.join(g.shot_ids)}")
        if args.show_prompts:
            print(_prompt_for(job, g))


async def _async_generate(args) -> int:
    job = _load_job(args.file)
    runtime = await open_runtime(args, dry_run=args.dry_run)
    try:
        if not runtime.providers:
            print("ERROR: no provider API key configured (or use --dry-run)", file=sys.stderr)
            return 1
        for category, ids in job.priorities.items():
            await runtime.resolver.set_preference(category, ids)

        max_duration = (args.max_duration or job.max_group_duration
                        or runtime.settings.max_group_duration)
        groups = plan_task_groups(job.shots, max_duration, job.config, job.batch_id)
        poll_interval = DRY_RUN_POLL_INTERVAL if args.dry_run else None
        supervisor = runtime.supervisor(groups, poll_interval=poll_interval)
        for group in groups:
            orch = supervisor.orchestrator(group.id)
            orch.set_prompt(_prompt_for(job, group))
            if job.reference_media:
                orch.attach_reference(job.reference_media)
        await supervisor.save()

        print(f"Batch {groups[0].batch_id}: {len(groups)} task group(s)"
              f"{'  [dry run]' if args.dry_run else ''}")
        renderer = ProgressRenderer(quiet=args.quiet)
        async for event in supervisor.run_streaming():
            renderer.handle(event)

        _print_groups(supervisor.groups)
        if args.log_calls:
            runtime.call_log.export_jsonl(args.log_calls)
        return 0 if supervisor.overall_status() == BatchStatus.COMPLETED else 1
    finally:
        await runtime.close()


async def _async_resume(args) -> int:
    runtime = await open_runtime(args)
    try:
        supervisor = runtime.supervisor()
        await supervisor.load(args.batch)
        in_flight = [g for g in supervisor.groups if g.is_active]
        if not in_flight:
            print("No in-flight task groups.")
            return 0
        print(f"Resuming {len(in_flight)} in-flight task group(s)...")
        renderer = ProgressRenderer(quiet=args.quiet)
        async for event in supervisor.run_streaming(resume=True, generate=False,
                                                    batch_id=args.batch):
            renderer.handle(event)
        _print_groups(supervisor.groups)
        if args.log_calls:
            runtime.call_log.export_jsonl(args.log_calls)
        return 0 if supervisor.overall_status() != BatchStatus.FAILED else 1
    finally:
        await runtime.close()


async def _async_status(args) -> int:
    settings = Settings.from_env(dotenv=False)
    store = StateManager(Path(args.db) if args.db else settings.db_path)
    try:
        if args.batch:
            groups = await store.load_groups(args.batch)
            if not groups:
                print(f"Batch {args.batch} not found.")
                return 1
            _print_groups(groups)
            return 0
        batches = await store.list_batches()
        if not batches:
            print("No saved batches.")
            return 0
        print(f"{'Batch':<22} {'Groups':>6}  {'Updated'}")
        print("-" * 50)
        for b in batches:
            updated = datetime.fromtimestamp(b["updated_at"]).strftime("%Y-%m-%d %H:%M")
            print(f"{b['batch_id']:<22} {b['groups']:>6}  {updated}")
        return 0
    finally:
        await store.close()


async def _async_health(args) -> int:
    runtime = await open_runtime(args)
    try:
        if args.reset is not None:
            await runtime.health.reset(args.reset or None)
            print(f"Health reset: {args.reset or 'all models'}")
            return 0
        records = runtime.health.records()
        if not records:
            print("No health data recorded yet.")
            return 0
        print(f"{'Model':<30} {'Healthy':<8} {'Rate':>6} {'Attempts':>8} {'Consec.':>7}")
        print("-" * 64)
        for model_id, health in runtime.health.snapshot().items():
            rec = records[model_id]
            print(f"{model_id:<30} {'yes' if health.healthy else 'NO':<8} "
                  f"{health.success_rate:>5.0f}% {rec.attempts:>8} {health.consecutive_failures:>7}")
        return 0
    finally:
        await runtime.close()


async def _async_priority(args) -> int:
    runtime = await open_runtime(args)
    try:
        category = ModelCategory(args.category)
        if args.reset:
            await runtime.resolver.reset_preference(category)
        elif args.set:
            await runtime.resolver.set_preference(category, args.set)

        order = runtime.resolver.candidate_order(category)
        if not order:
            print(f"No {category.value} model available (configure a provider API key).")
            return 1
        print(f"{category.value} models, in resolution order:")
        for i, model in enumerate(runtime.resolver.fallback_chain(category), start=1):
            flag = "" if runtime.health.is_healthy(model.id) else "  [unhealthy]"
            print(f"  {i}. {model.id:<28} {model.display_name}{flag}")
        return 0
    finally:
        await runtime.close()


def _run(coro) -> None:
    try:
        code = asyncio.run(coro)
    except OrchestratorError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        # in-flight groups stay persisted; `resume` picks them up
        print("\nInterrupted. Run `media-orchestrator resume` to continue.", file=sys.stderr)
        sys.exit(130)
    sys.exit(code)


# ─────────────────────────────────────────────
# Parser
# ─────────────────────────────────────────────

def _common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--verbose", "-v", action="store_true")
    p.add_argument("--db", type=str, default=None,
                   help="State database path (default: MEDIA_ORCH_DB or .media_orchestrator/state.db)")


def _run_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--quiet", "-q", action="store_true", help="Suppress live progress")
    p.add_argument("--log-calls", type=str, default=None, metavar="PATH",
                   help="Append the provider call log to PATH as JSON lines")
    p.add_argument(
        "--tracing",
        action="store_true",
        default=False,
        help="Enable OpenTelemetry tracing. OTLP export requires: pip install -e '.[tracing]'"
    )
    p.add_argument(
        "--otlp-endpoint",
        type=str,
        default=None,
        metavar="URL",
        help="OTLP gRPC endpoint for tracing export (e.g. http://localhost:4317). "
             "If --tracing is set but this is omitted, spans are printed to console."
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="media-orchestrator",
        description="Multi-provider media generation orchestrator",
    )
    subparsers = parser.add_subparsers(dest="subcommand", metavar="SUBCOMMAND")

    p = subparsers.add_parser("plan", help="Split a job file into task groups and print them")
    _common(p)
    p.add_argument("file", help="YAML job file")
    p.add_argument("--max-duration", type=float, default=None,
                   help="Max seconds of footage per task group")
    p.add_argument("--show-prompts", action="store_true")
    p.set_defaults(func=cmd_plan)

    p = subparsers.add_parser("generate", help="Plan a job file and generate every task group")
    _common(p)
    _run_options(p)
    p.add_argument("file", help="YAML job file")
    p.add_argument("--max-duration", type=float, default=None,
                   help="Max seconds of footage per task group")
    p.add_argument("--dry-run", action="store_true",
                   help="Use the in-process mock provider instead of real services")
    p.set_defaults(func=lambda a: _run(_async_generate(a)))

    p = subparsers.add_parser("resume", help="Re-attach to task groups left in flight")
    _common(p)
    _run_options(p)
    p.add_argument("--batch", type=str, default=None, help="Limit to one batch")
    p.set_defaults(func=lambda a: _run(_async_resume(a)))

    p = subparsers.add_parser("status", help="List saved batches or one batch's groups")
    _common(p)
    p.add_argument("--batch", type=str, default=None)
    p.set_defaults(func=lambda a: _run(_async_status(a)))

    p = subparsers.add_parser("health", help="Show or reset model health")
    _common(p)
    p.add_argument("--reset", nargs="?", const="", default=None, metavar="MODEL_ID",
                   help="Reset one model, or all models when no id is given")
    p.set_defaults(func=lambda a: _run(_async_health(a)))

    p = subparsers.add_parser("priority", help="Show or change model priority for a category")
    _common(p)
    p.add_argument("category", choices=[c.value for c in ModelCategory])
    group = p.add_mutually_exclusive_group()
    group.add_argument("--set", nargs="+", metavar="MODEL_ID",
                       help="Preferred model ids, most preferred first")
    group.add_argument("--reset", action="store_true", help="Back to default order")
    p.set_defaults(func=lambda a: _run(_async_priority(a)))

    return parser


def main(argv: Optional[list[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.subcommand is None:
        parser.print_help()
        sys.exit(2)
    setup_logging(getattr(args, "verbose", False))
    args.func(args)


if __name__ == "__main__":
    main()
