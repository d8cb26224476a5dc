"""
jobs.py

SLURM submission: resource requests and sbatch.

This module handles:
  - Building a stage's sbatch resource request from the configuration
  - Rendering the request as sbatch arguments
  - Submitting a job script and parsing the job ID

Jobs are submitted and left to the scheduler; nothing here waits on them.
"""

import os
import re
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .config import PipelineConfig
from .errors import SubmissionError
from .stage_config import SCRIPT_SUBDIRS, Stage, get_stage_config, script_name


@dataclass
class SubmissionRequest:
    stage: Stage
    script_path: Path
    partition: Optional[str] = None
    account: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None
    cpus: Optional[int] = None
    mem: Optional[str] = None
    time: Optional[str] = None
    array_size: Optional[int] = None
    max_concurrent: Optional[int] = None
    environment: Dict[str, str] = field(default_factory=dict)

    @property
    def is_array(self) -> bool:
        return self.array_size is not None

    def sbatch_args(self) -> List[str]:
        """sbatch options for this request, unset fields left out."""
        args = []
        if self.partition:
            args.append(f'--partition={self.partition}')
        if self.account:
            args.append(f'--account={self.account}')
        if self.output:
            args.append(f'--output={self.output}')
        if self.error:
            args.append(f'--error={self.error}')
        if self.cpus:
            args.append(f'--cpus-per-task={self.cpus}')
        if self.mem:
            args.append(f'--mem={self.mem}')
        if self.time:
            args.append(f'--time={self.time}')
        if self.is_array:
            args.append(f'--array=1-{self.array_size}%{self.max_concurrent}')
        return args

    def command(self) -> List[str]:
        return ['sbatch', *self.sbatch_args(), str(self.script_path)]

    def format_command(self) -> str:
        return shlex.join(self.command())


def resolve_script(stage, config: PipelineConfig, array_mode: bool) -> Path:
    """Job script path for a stage under the configured scripts directory."""
    subdir = SCRIPT_SUBDIRS['array' if array_mode else 'original']
    path = config.scripts_dir / subdir / script_name(stage, array_mode)
    return Path(os.path.normpath(path))


def build_request(
    stage,
    config: PipelineConfig,
    sample_count: int,
    parallel: bool,
    script_path: Optional[Path] = None,
) -> SubmissionRequest:
    """
    Merge global and stage resources into a submission request.

    Args:
        stage: Stage (or stage name)
        config: Pipeline configuration
        sample_count: Number of samples (array bound)
        parallel: Array mode; stages that cannot run as arrays ignore it
        script_path: Job script (defaults to the one for this mode)

    Returns:
        SubmissionRequest with unset optional fields left as None
    """
    stage = Stage.parse(stage)
    definition = get_stage_config(stage)
    resources = config.stage_resources(stage)

    if script_path is None:
        script_path = resolve_script(stage, config, parallel)

    request = SubmissionRequest(
        stage=stage,
        script_path=Path(script_path),
        partition=config.partition,
        account=config.account,
        cpus=resources.get('cpus'),
        mem=resources.get('mem'),
        environment=config.environment(num_samples=sample_count),
    )

    logs_dir = config.logs_dir
    if logs_dir:
        request.output = f'{logs_dir}/{stage.value}_%A_%a.out'
        request.error = f'{logs_dir}/{stage.value}_%A_%a.err'

    # Single-job scripts loop over every sample, so they get the longer limit
    if parallel or not definition.array_capable:
        request.time = resources.get('time')
    else:
        request.time = resources.get('single_time')

    if parallel and definition.array_capable:
        request.array_size = sample_count
        request.max_concurrent = resources.get(
            'max_concurrent', definition.default_max_concurrent,
        )

    return request


class SlurmScheduler:
    """Submits job scripts with sbatch."""

    def __init__(self, sbatch: str = 'sbatch'):
        self.sbatch = sbatch

    def submit(self, request: SubmissionRequest, script_path: Optional[Path] = None) -> str:
        """
        Submit a job script.

        Args:
            request: Resource request (its environment is exported to the job)
            script_path: Job script; defaults to request.script_path

        Returns:
            SLURM job ID
        """
        script_path = Path(script_path or request.script_path)
        cmd = [self.sbatch, *request.sbatch_args(), str(script_path)]

        env = os.environ.copy()
        env.update(request.environment)

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                env=env,
            )
        except FileNotFoundError as e:
            raise SubmissionError(f"Cannot run {self.sbatch}: {e}") from e
        except subprocess.CalledProcessError as e:
            message = (e.stderr or e.stdout or '').strip()
            raise SubmissionError(
                f"sbatch exited with status {e.returncode}: {message}"
            ) from e

        # Parse job ID from output: "Submitted batch job 12345"
        match = re.search(r'Submitted batch job (\d+)', result.stdout)
        if match:
            return match.group(1)

        raise SubmissionError(f"Failed to parse job ID from: {result.stdout.strip()}")
