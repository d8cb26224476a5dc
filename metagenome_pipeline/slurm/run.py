#!/usr/bin/env python3
"""
run.py

Entry point for running one metagenome pipeline stage on SLURM.

Each invocation handles exactly one stage:
  1. Check that every prerequisite stage has finished for all samples
  2. Build the sbatch resource request from the configuration
  3. Submit the stage's job script (one array job, or one single job)

Stages are run one at a time; wait for a stage's job to finish before
starting the next.

Usage:
    # Submit a stage
    python -m metagenome_pipeline.slurm.run --stage fastqc

    # Preview the sbatch command
    python -m metagenome_pipeline.slurm.run --stage fastqc --dry-run

    # Check the configuration only
    python -m metagenome_pipeline.slurm.run --validate-config
"""

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .config import PipelineConfig, load_config
from .errors import DependencyNotMetError, PipelineError, ScriptNotFoundError
from .jobs import SlurmScheduler, SubmissionRequest, build_request, resolve_script
from .samples import file_exists, is_stage_complete, load_samples, progress_table
from .stage_config import Stage, get_stage_config, list_stages


SUBMITTED = 'submitted'
SKIPPED = 'skipped'
DRY_RUN = 'dry_run'
VALIDATED = 'validated'


@dataclass
class RunMode:
    dry_run: bool = False
    resume: bool = False
    validate_only: bool = False
    parallel: bool = True


@dataclass
class StageResult:
    status: str
    success: bool = True
    stage: Optional[Stage] = None
    job_id: Optional[str] = None
    request: Optional[SubmissionRequest] = None


def check_dependencies(
    stage: Stage,
    samples: list,
    config: PipelineConfig,
    resume: bool = False,
    exists: Callable[[Path], bool] = file_exists,
) -> None:
    """Raise DependencyNotMetError for the first incomplete prerequisite."""
    for dep in get_stage_config(stage).depends_on:
        if not is_stage_complete(dep, samples, config, exists):
            raise DependencyNotMetError(stage.value, dep.value)
        if resume:
            print(f"Dependency '{dep}' already completed")


def validate_configuration(config: PipelineConfig) -> bool:
    """Print validation diagnostics and return the verdict."""
    print("Validating configuration...")
    report = config.validate()

    for warning in report.warnings:
        print(f"WARNING: {warning}", file=sys.stderr)
    for error in report.errors:
        print(f"ERROR: {error}", file=sys.stderr)

    if report.ok:
        print("Configuration validation passed")
    else:
        print(
            f"Configuration validation failed with {len(report.errors)} errors",
            file=sys.stderr,
        )
    return report.ok


def run_stage(
    stage,
    mode: RunMode,
    config: PipelineConfig,
    scheduler=None,
    exists: Callable[[Path], bool] = file_exists,
) -> StageResult:
    """
    Run one pipeline stage: check prerequisites, build and submit its job.

    Args:
        stage: Stage name (ignored when mode.validate_only is set)
        mode: Dry-run / resume / validate-only / array flags
        config: Pipeline configuration
        scheduler: Object with submit(request, script_path) -> job_id
        exists: Existence check for expected output files

    Returns:
        StageResult; failures raise a PipelineError subclass instead
    """
    if mode.validate_only:
        ok = validate_configuration(config)
        return StageResult(status=VALIDATED, success=ok)

    stage = Stage.parse(stage)
    definition = get_stage_config(stage)

    print(f"\n{'='*60}")
    print(f"Stage: {stage} ({definition.description})")
    print(f"Script version: {'array' if mode.parallel else 'original'}")
    print(f"{'='*60}")

    samples = load_samples(config.sample_list)
    print(f"Found {len(samples)} samples in {config.sample_list}")

    if config.create_dirs and not mode.dry_run:
        for path in config.create_directories():
            print(f"Created directory: {path}")

    check_dependencies(stage, samples, config, resume=mode.resume, exists=exists)

    if mode.resume and is_stage_complete(stage, samples, config, exists):
        print(f"Step '{stage}' already completed, skipping")
        return StageResult(status=SKIPPED, stage=stage)

    script_path = resolve_script(stage, config, mode.parallel)
    request = build_request(
        stage,
        config,
        sample_count=len(samples),
        parallel=mode.parallel,
        script_path=script_path,
    )

    if mode.dry_run:
        if not script_path.is_file():
            print(f"WARNING: Script not found: {script_path}", file=sys.stderr)
        print(f"[DRY-RUN] Would submit: {request.format_command()}")
        return StageResult(status=DRY_RUN, stage=stage, request=request)

    if not script_path.is_file():
        raise ScriptNotFoundError(script_path)

    if scheduler is None:
        scheduler = SlurmScheduler()

    print(f"Submitting step '{stage}': {request.format_command()}")
    job_id = scheduler.submit(request, script_path)
    print(f"Step '{stage}' submitted (Job ID: {job_id})")

    return StageResult(status=SUBMITTED, stage=stage, job_id=job_id, request=request)


def report_status(
    config: PipelineConfig,
    exists: Callable[[Path], bool] = file_exists,
) -> None:
    """Print per-stage completion for the loaded sample set."""
    samples = load_samples(config.sample_list)
    print(f"Found {len(samples)} samples in {config.sample_list}\n")
    table = progress_table(samples, config, exists, show_progress=True)
    print(table.to_string(index=False))


def build_parser() -> argparse.ArgumentParser:
    stage_lines = '\n'.join(
        f"  {name:<12} {get_stage_config(name).description}"
        for name in list_stages()
    )
    parser = argparse.ArgumentParser(
        prog='metagenome-pipeline',
        description="Metagenome pipeline runner - submits pipeline steps as SLURM jobs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Steps (run in this order):
{stage_lines}

Examples:
  # Run download step
  metagenome-pipeline --stage download

  # Preview fastqc submission
  metagenome-pipeline --stage fastqc --dry-run

  # Run trimgalore, skip if already completed
  metagenome-pipeline --stage trimgalore --resume

  # Use single-job scripts
  metagenome-pipeline --stage fastqc --mode original

  # Check configuration
  metagenome-pipeline --validate-config

Run steps sequentially; wait for each to complete before the next.
The download step is never an array job.
""",
    )

    parser.add_argument(
        '--stage', '--step',
        dest='stage',
        type=str,
        help='Pipeline step to run (see Steps below)',
    )
    parser.add_argument(
        '--mode', '--script-version',
        dest='mode',
        choices=['original', 'array'],
        default='array',
        help="Use 'array' job scripts or 'original' single-job scripts (default: array)",
    )
    parser.add_argument(
        '--config',
        type=Path,
        default=Path('config/config.yaml'),
        help='Path to config.yaml',
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Show what would be submitted without submitting',
    )
    parser.add_argument(
        '--resume',
        action='store_true',
        help='Skip the step if its outputs already exist for every sample',
    )
    parser.add_argument(
        '--validate-config',
        action='store_true',
        help='Validate configuration only',
    )
    parser.add_argument(
        '--status',
        action='store_true',
        help="Show per-step completion and exit (no --stage)",
    )
    return parser


def main(argv=None, scheduler=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.status and (args.stage or args.validate_config):
        parser.error("--status cannot be combined with --stage or --validate-config")

    mode = RunMode(
        dry_run=args.dry_run,
        resume=args.resume,
        validate_only=args.validate_config,
        parallel=args.mode == 'array',
    )

    try:
        config = load_config(args.config)

        if args.status:
            report_status(config)
            return 0

        result = run_stage(args.stage, mode, config, scheduler=scheduler)
    except PipelineError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if result.success and result.job_id:
        # Job ID alone on the last line so callers can capture it
        print(result.job_id)

    return 0 if result.success else 1


if __name__ == '__main__':
    sys.exit(main())
