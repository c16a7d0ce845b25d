from __future__ import annotations

import argparse
import sys
from typing import List, NoReturn, Sequence

from .admin import (
    DEFAULT_STATUS_PREVIEW,
    clear_state,
    describe_pipeline_state,
    open_store,
    queue_status,
)
from .clone import CloneError, check_git, clone_all, fetch_org_repositories
from .config import BatchConfig, get_batch_config, get_github_config
from .discovery import discover_jobs
from .logging_config import configure_logging
from .models import RequeueResult, RunSummary
from .pipelines import (
    PIPELINES,
    EnvironmentCheckError,
    Pipeline,
    PipelinePaths,
    get_pipeline,
)
from .requeue import DEFAULT_PREVIEW_LIMIT, MissingLogDirectoryError, rebuild_queue_from_logs
from .worker import run_batch

EXIT_INTERRUPTED = 130

CONFIRM_PROMPT = "Are you sure you want to continue? (y/N): "


def _fail(message: str, code: int = 1) -> NoReturn:
    print(f"ERROR: {message}", file=sys.stderr)
    sys.exit(code)


def _confirm(assume_yes: bool) -> bool:
    if assume_yes:
        return True
    try:
        answer = input(CONFIRM_PROMPT)
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def _pipeline_from_args(args: argparse.Namespace) -> Pipeline:
    try:
        return get_pipeline(args.pipeline)
    except ValueError as exc:
        _fail(str(exc))


def _print_run_summary(summary: RunSummary, pipeline: Pipeline, paths: PipelinePaths) -> None:
    print("")
    print(f"{pipeline.name} batch summary")
    print("-----------------------------------------")
    if summary.resumed:
        print("Resumed an existing queue.")
    else:
        print(f"Repositories checked:      {summary.repositories_checked}")
        print(f"Repositories with targets: {summary.repositories_with_targets}")
        print(f"Jobs discovered:           {summary.discovered}")
    print(f"Attempted:  {summary.attempted}")
    print(f"Succeeded:  {summary.succeeded}")
    print(f"Failed:     {summary.failed}")
    print(f"Skipped:    {summary.skipped}")
    print(f"Remaining:  {summary.remaining}")

    if summary.failed:
        print("")
        print("Failed jobs:")
        for job in summary.failed_jobs:
            print(f"  - {job.identity} ({job.target_path})")
        print(f"Error report:  {paths.errors_file}")
        print(f"Detailed logs: {paths.log_dir}")
        print("Run 'repo-batch requeue' to queue the failed jobs again.")

    if summary.interrupted:
        print("")
        print("Run interrupted; re-run the same command to resume the remaining queue.")


def _print_requeue_result(result: RequeueResult, pipeline: Pipeline, paths: PipelinePaths) -> None:
    print("")
    print(f"{pipeline.name} requeue summary")
    print("-----------------------------------------")
    print(f"Log files processed: {result.processed}")
    print(f"Valid jobs queued:   {result.valid_count}")
    print(f"Invalid/skipped:     {result.invalid_count}")
    for backup in result.backups:
        print(f"Backup written:      {backup}")

    if result.invalid:
        print("")
        print("Invalid logs:")
        for log_path, reason in result.invalid:
            print(f"  - {log_path.name}: {reason}")

    if result.jobs:
        print("")
        print(f"Queue file: {paths.queue_file}")
        print("Queued jobs:")
        for job in result.jobs[:DEFAULT_PREVIEW_LIMIT]:
            print(f"  - {job.identity} -> {job.target_name}")
        hidden = result.valid_count - DEFAULT_PREVIEW_LIMIT
        if hidden > 0:
            print(f"  ... and {hidden} more")
        print("")
        print("Run 'repo-batch run' to process the requeued jobs.")


# === Command implementations ===


def cmd_check_env(args: argparse.Namespace) -> None:
    pipeline = _pipeline_from_args(args)
    config = get_batch_config(repos_dir=args.repos_dir, state_dir=args.state_dir)
    paths = pipeline.paths(config.state_dir)

    print(f"Repo Batch – Environment Check ({pipeline.name})")
    print("-----------------------------------------")
    print(f"Repositories dir: {config.repos_dir}")
    for line in describe_pipeline_state(pipeline, paths):
        print(line)
    print("")

    try:
        versions = pipeline.check_environment()
    except EnvironmentCheckError as exc:
        _fail(str(exc))
    for version in versions:
        print(f"Found: {version}")

    if config.repos_dir.is_dir():
        print("Repositories directory exists.")
    else:
        print(f"WARNING: repositories directory '{config.repos_dir}' does not exist.")

    try:
        config.ensure_state_dir()
    except RuntimeError as exc:
        _fail(str(exc))
    else:
        print("State directory exists and is writable.")


def cmd_discover(args: argparse.Namespace) -> None:
    pipeline = _pipeline_from_args(args)
    config = get_batch_config(repos_dir=args.repos_dir)
    if not config.repos_dir.is_dir():
        _fail(f"Repositories directory '{config.repos_dir}' not found.")

    result = discover_jobs(config.repos_dir, pipeline)
    for job in result.jobs:
        print(f"{job.identity}\t{job.target_path}")
    print("")
    print(f"Repositories checked:      {result.repositories_checked}")
    print(f"Repositories with targets: {result.repositories_with_targets}")
    print(f"Jobs found:                {len(result.jobs)}")


def cmd_run(args: argparse.Namespace) -> None:
    pipeline = _pipeline_from_args(args)
    config = get_batch_config(
        repos_dir=args.repos_dir,
        state_dir=args.state_dir,
        job_timeout_seconds=args.timeout,
    )
    paths = pipeline.paths(config.state_dir)

    try:
        summary = run_batch(pipeline, config, stream_output=not args.no_stream)
    except EnvironmentCheckError as exc:
        _fail(str(exc))
    except KeyboardInterrupt:
        print("\nInterrupted; the queue is left in place for resuming.", file=sys.stderr)
        sys.exit(EXIT_INTERRUPTED)

    _print_run_summary(summary, pipeline, paths)
    if summary.interrupted:
        sys.exit(EXIT_INTERRUPTED)


def _requeue_create(pipeline: Pipeline, config: BatchConfig) -> None:
    paths = pipeline.paths(config.state_dir)
    print(f"Scanning {paths.log_dir} for failed {pipeline.log_kind} logs...")
    try:
        result = rebuild_queue_from_logs(pipeline, paths, config.repos_dir)
    except MissingLogDirectoryError as exc:
        _fail(str(exc))
    if result.processed == 0:
        print(f"No log files found in {paths.log_dir}; nothing to requeue.")
        return
    _print_requeue_result(result, pipeline, paths)


def _requeue_status(pipeline: Pipeline, config: BatchConfig) -> None:
    paths = pipeline.paths(config.state_dir)
    status = queue_status(open_store(paths), DEFAULT_STATUS_PREVIEW)

    print(f"{pipeline.name} queue status")
    print("-----------------------------------------")
    if not status.queue_exists:
        print(f"No queue file found ({paths.queue_file}).")
    print(f"Remaining {pipeline.log_kind} jobs in queue: {status.remaining}")
    print(f"Completed {pipeline.log_kind} jobs:         {status.completed}")

    if status.next_up:
        print("")
        print(f"Next {len(status.next_up)} in queue:")
        for job in status.next_up:
            print(f"  - {job.identity} -> {job.target_name}")
    if status.recent:
        print("")
        print(f"Last {len(status.recent)} completed:")
        for record in status.recent:
            print(f"  - {record.timestamp} {record.identity}: {record.outcome.value}")


def _requeue_clear(pipeline: Pipeline, config: BatchConfig, assume_yes: bool) -> None:
    paths = pipeline.paths(config.state_dir)
    store = open_store(paths)
    if not store.exists() and not store.ledger.exists():
        print("No queue or progress file to clear.")
        return

    print(f"This will clear {paths.queue_file} and {paths.progress_file} (backups are kept).")
    if not _confirm(assume_yes):
        print("Operation cancelled.")
        return
    for backup in clear_state(store):
        print(f"Backup written: {backup}")
    print("Queue and progress files cleared.")


def cmd_requeue(args: argparse.Namespace) -> None:
    pipeline = _pipeline_from_args(args)
    config = get_batch_config(repos_dir=args.repos_dir, state_dir=args.state_dir)
    if args.status:
        _requeue_status(pipeline, config)
    elif args.clear:
        _requeue_clear(pipeline, config, args.yes)
    else:
        _requeue_create(pipeline, config)


def cmd_clone(args: argparse.Namespace) -> None:
    github = get_github_config(org=args.org)
    config = get_batch_config(repos_dir=args.repos_dir)

    try:
        check_git()
        names = fetch_org_repositories(github)
    except CloneError as exc:
        _fail(str(exc))

    print(f"Found {len(names)} repositories in {github.org}.")
    summary = clone_all(github.org, names, config.repos_dir)

    print("")
    print("Clone summary")
    print("-----------------------------------------")
    print(f"Total repositories: {summary.total}")
    print(f"Cloned:             {len(summary.cloned)}")
    print(f"Skipped (existing): {len(summary.skipped)}")
    print(f"Failed:             {len(summary.failed)}")
    for name in summary.failed:
        print(f"  - {name}")
    if summary.failed:
        sys.exit(1)


# === Parser ===


def _add_pipeline_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--pipeline",
        choices=sorted(PIPELINES),
        default="docker",
        help="Which batch pipeline to operate on (default: docker).",
    )


def _add_dir_arguments(parser: argparse.ArgumentParser, *, state: bool = True) -> None:
    parser.add_argument(
        "--repos-dir",
        default=None,
        help="Directory of cloned repositories (default: $REPO_BATCH_REPOS_DIR or ./repos).",
    )
    if state:
        parser.add_argument(
            "--state-dir",
            default=None,
            help="Directory for queue, progress and log files "
            "(default: $REPO_BATCH_STATE_DIR or the current directory).",
        )


def _add_requeue_mode_arguments(parser: argparse.ArgumentParser) -> None:
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "-c",
        "--create",
        action="store_true",
        help="Create a new queue from failed logs (default).",
    )
    mode.add_argument(
        "-s",
        "--status",
        action="store_true",
        help="Show remaining and completed counts without changing anything.",
    )
    mode.add_argument(
        "--clear",
        action="store_true",
        help="Back up, then remove the queue and progress files.",
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Do not ask for confirmation before --clear.",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repo-batch",
        description="Resumable batch Docker builds and npm installs across many repositories.",
    )
    subparsers = parser.add_subparsers(
        dest="command",
        metavar="COMMAND",
        required=True,
    )

    # check-env
    p_env = subparsers.add_parser(
        "check-env",
        help="Check the pipeline's tools, repositories directory and state directory.",
    )
    _add_pipeline_argument(p_env)
    _add_dir_arguments(p_env)
    p_env.set_defaults(func=cmd_check_env)

    # discover
    p_discover = subparsers.add_parser(
        "discover",
        help="List the jobs a fresh run would queue, without running anything.",
    )
    _add_pipeline_argument(p_discover)
    _add_dir_arguments(p_discover, state=False)
    p_discover.set_defaults(func=cmd_discover)

    # run
    p_run = subparsers.add_parser(
        "run",
        help="Run or resume a batch until the queue is drained.",
    )
    _add_pipeline_argument(p_run)
    _add_dir_arguments(p_run)
    p_run.add_argument(
        "--timeout",
        type=int,
        default=None,
        help="Per-job timeout in seconds (default: $REPO_BATCH_JOB_TIMEOUT or 600).",
    )
    p_run.add_argument(
        "--no-stream",
        action="store_true",
        help="Do not echo tool output to the console (logs are still written).",
    )
    p_run.set_defaults(func=cmd_run)

    # requeue
    p_requeue = subparsers.add_parser(
        "requeue",
        help="Rebuild the queue from failed-job logs, show status, or clear state.",
    )
    _add_pipeline_argument(p_requeue)
    _add_dir_arguments(p_requeue)
    _add_requeue_mode_arguments(p_requeue)
    p_requeue.set_defaults(func=cmd_requeue)

    # clone
    p_clone = subparsers.add_parser(
        "clone",
        help="Clone every repository of a GitHub organisation into the repositories directory.",
    )
    p_clone.add_argument(
        "--org",
        default=None,
        help="GitHub organisation (default: $REPO_BATCH_GITHUB_ORG or DEFRA).",
    )
    _add_dir_arguments(p_clone, state=False)
    p_clone.set_defaults(func=cmd_clone)

    return parser


def build_requeue_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repo-batch-requeue",
        description="Rebuild a batch queue from failed-job logs, show its status, or clear it.",
    )
    _add_pipeline_argument(parser)
    _add_dir_arguments(parser)
    _add_requeue_mode_arguments(parser)
    return parser


def main(argv: List[str] | None = None) -> None:
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)
    args.func(args)


def requeue_main(argv: Sequence[str] | None = None) -> None:
    configure_logging()
    args = build_requeue_parser().parse_args(argv)
    cmd_requeue(args)


if __name__ == "__main__":
    main()
