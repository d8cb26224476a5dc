"""
samples.py

Sample list loading and per-stage completion tracking.

There is no state file: whether a stage has run is always re-derived from
the filesystem by checking each sample's expected output files. The check
is injected (``exists``) so the checks can run against an in-memory fake.
"""

from pathlib import Path
from typing import Callable, Iterable, List, Optional

import pandas as pd
from tqdm import tqdm

from .config import PipelineConfig
from .errors import SampleListError
from .stage_config import Stage


def file_exists(path: Path) -> bool:
    return Path(path).is_file()


def load_samples(sample_list: Optional[Path]) -> List[str]:
    """
    Read sample identifiers, one per line.

    Blank lines and surrounding whitespace are ignored. A list that is
    unset, missing or has no identifiers is an error: an empty sample set
    would otherwise make every stage look complete.

    Args:
        sample_list: Path to the sample list file

    Returns:
        Sample identifiers in file order
    """
    if sample_list is None:
        raise SampleListError("Sample list is not set (sample_list)")

    sample_list = Path(sample_list)
    if not sample_list.is_file():
        raise SampleListError(f"Sample list not found: {sample_list}")

    try:
        with open(sample_list, encoding='utf-8') as f:
            samples = [line.strip() for line in f if line.strip()]
    except (OSError, UnicodeDecodeError) as e:
        raise SampleListError(f"Cannot read sample list {sample_list}: {e}") from e

    if not samples:
        raise SampleListError(f"Sample list is empty: {sample_list}")

    return samples


def expected_outputs(stage, sample: str, config: PipelineConfig) -> List[Path]:
    """Output files a stage must produce for one sample."""
    output_dir = config.output_dir(stage)
    return [
        output_dir / template.format(sample=sample)
        for template in config.output_templates(stage)
    ]


def is_sample_complete(
    stage,
    sample: str,
    config: PipelineConfig,
    exists: Callable[[Path], bool] = file_exists,
) -> bool:
    return all(exists(path) for path in expected_outputs(stage, sample, config))


def is_stage_complete(
    stage,
    samples: Iterable[str],
    config: PipelineConfig,
    exists: Callable[[Path], bool] = file_exists,
) -> bool:
    """
    Check whether a stage has produced its outputs for every sample.

    Args:
        stage: Stage (or stage name)
        samples: Sample identifiers
        config: Pipeline configuration (output directories and templates)
        exists: Existence check, called once per expected path

    Returns:
        True iff samples is non-empty and every sample is complete
    """
    samples = list(samples)
    if not samples:
        return False
    return all(is_sample_complete(stage, s, config, exists) for s in samples)


def stage_progress(
    stage,
    samples: Iterable[str],
    config: PipelineConfig,
    exists: Callable[[Path], bool] = file_exists,
    show_progress: bool = False,
) -> dict:
    """
    Get progress statistics for a stage.

    Returns:
        Dict with 'total', 'completed', 'pending', 'percent' keys
    """
    stage = Stage.parse(stage)
    samples = list(samples)

    iterator = tqdm(
        samples,
        desc=f"Checking {stage.value}",
        unit="sample",
        disable=not show_progress,
    )
    completed = sum(
        1 for sample in iterator
        if is_sample_complete(stage, sample, config, exists)
    )

    total = len(samples)
    percent = (completed / total * 100) if total > 0 else 0

    return {
        'total': total,
        'completed': completed,
        'pending': total - completed,
        'percent': percent,
    }


def progress_table(
    samples: Iterable[str],
    config: PipelineConfig,
    exists: Callable[[Path], bool] = file_exists,
    show_progress: bool = False,
) -> pd.DataFrame:
    """One row per stage, in pipeline order, with completion counts."""
    samples = list(samples)
    rows = []
    for stage in Stage:
        progress = stage_progress(stage, samples, config, exists, show_progress)
        rows.append({
            'stage': stage.value,
            'completed': progress['completed'],
            'total': progress['total'],
            'percent': round(progress['percent'], 1),
            'complete': bool(samples) and progress['pending'] == 0,
        })
    return pd.DataFrame(rows, columns=['stage', 'completed', 'total', 'percent', 'complete'])
