from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from metagenome_pipeline.slurm.config import PipelineConfig, load_config
from metagenome_pipeline.slurm.errors import SubmissionError
from metagenome_pipeline.slurm.samples import expected_outputs
from metagenome_pipeline.slurm.stage_config import SCRIPT_SUBDIRS, STAGES

PROJECT_ROOT = Path(__file__).resolve().parents[1]


class FakeFilesystem:
    """In-memory set of files standing in for the output directories."""

    def __init__(self):
        self.files = set()
        self.checked = []

    def exists(self, path) -> bool:
        self.checked.append(Path(path))
        return Path(path) in self.files

    def complete(self, stage, samples, config: PipelineConfig) -> None:
        for sample in samples:
            self.files.update(expected_outputs(stage, sample, config))


class RecordingScheduler:
    """Scheduler double that records submissions instead of calling sbatch."""

    def __init__(self, job_id: str = "12345", error: str | None = None):
        self.job_id = job_id
        self.error = error
        self.calls = []

    def submit(self, request, script_path):
        self.calls.append((request, Path(script_path)))
        if self.error:
            raise SubmissionError(self.error)
        return self.job_id


@pytest.fixture(scope="session")
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture
def config_data(tmp_path: Path) -> dict:
    """A complete config mapping pointing into tmp_path."""
    sample_list = tmp_path / "samples.txt"
    sample_list.write_text("A\nB\n")

    scripts_dir = tmp_path / "scripts"
    for definition in STAGES.values():
        for subdir, name in (
            (SCRIPT_SUBDIRS["array"], definition.array_script),
            (SCRIPT_SUBDIRS["original"], definition.single_script),
        ):
            script = (scripts_dir / subdir / name).resolve()
            script.parent.mkdir(parents=True, exist_ok=True)
            script.write_text("#!/bin/bash\n")

    trimmomatic = tmp_path / "trimmomatic"
    trimmomatic.mkdir()

    return {
        "project_id": "test",
        "base_dir": str(tmp_path / "work"),
        "database_dir": str(tmp_path / "db"),
        "sample_list": "samples.txt",
        "scripts_dir": "scripts",
        "slurm": {"partition": "normal", "account": "lab"},
        "resources": {
            "download": {"cpus": 4, "mem": "4G", "time": "48:00:00"},
            "fastqc": {
                "cpus": 4,
                "mem": "8G",
                "time": "4:00:00",
                "single_time": "48:00:00",
                "max_concurrent": 10,
            },
            "trimgalore": {"cpus": 16, "mem": "32G", "time": "8:00:00"},
        },
        "trimmomatic_path": str(trimmomatic),
        "tools": {"trimgalore_quality": 0},
    }


@pytest.fixture
def write_config(tmp_path: Path):
    """Write a config mapping to tmp_path/config.yaml and return its path."""

    def _write(data: dict) -> Path:
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(data))
        return path

    return _write


@pytest.fixture
def config_path(config_data: dict, write_config) -> Path:
    return write_config(config_data)


@pytest.fixture
def config(config_path: Path) -> PipelineConfig:
    return load_config(config_path)


@pytest.fixture
def fs() -> FakeFilesystem:
    return FakeFilesystem()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def recording_scheduler():
    return RecordingScheduler
