"""
SLURM Stage Driver

This module provides a single entry point for submitting the stages of the
metagenome pipeline as SLURM jobs.

Usage:
    # Submit a stage (array job, one task per sample):
    python -m metagenome_pipeline.slurm.run --stage fastqc

    # Single-job scripts that loop over all samples:
    python -m metagenome_pipeline.slurm.run --stage fastqc --mode original

    # Skip a stage whose outputs already exist:
    python -m metagenome_pipeline.slurm.run --stage kraken2 --resume
"""

from .config import PipelineConfig, load_config
from .jobs import SlurmScheduler, SubmissionRequest, build_request
from .run import RunMode, StageResult, run_stage
from .samples import is_stage_complete, load_samples
from .stage_config import Stage

__all__ = [
    'PipelineConfig',
    'load_config',
    'SlurmScheduler',
    'SubmissionRequest',
    'build_request',
    'RunMode',
    'StageResult',
    'run_stage',
    'is_stage_complete',
    'load_samples',
    'Stage',
]
