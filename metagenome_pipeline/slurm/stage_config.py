"""
stage_config.py

Stage definitions for the six-stage metagenome pipeline.

Each stage is one SLURM submission whose job script runs an external tool
over every sample in the sample list:
  1. download     raw reads (sequential, never an array job)
  2. fastqc       quality control
  3. trimgalore   read trimming and adapter removal
  4. kneaddata    host genome removal
  5. kraken2      taxonomic classification
  6. humann3      functional profiling

A stage is complete when every sample has all of its expected output
files on disk.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

from .errors import UnknownStageError


class Stage(Enum):
    DOWNLOAD = 'download'
    FASTQC = 'fastqc'
    TRIMGALORE = 'trimgalore'
    KNEADDATA = 'kneaddata'
    KRAKEN2 = 'kraken2'
    HUMANN3 = 'humann3'

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, name) -> 'Stage':
        """Look up a stage by its CLI name, raising UnknownStageError."""
        if isinstance(name, cls):
            return name
        try:
            return cls(name)
        except ValueError:
            raise UnknownStageError(name, list_stages()) from None


@dataclass(frozen=True)
class StageDefinition:
    description: str
    array_script: str
    single_script: str
    depends_on: Tuple[Stage, ...]
    output_dir_key: str
    outputs: Tuple[str, ...]
    default_max_concurrent: int = 20
    array_capable: bool = True


# Script names are relative to <scripts_dir>/array_optimized or
# <scripts_dir>/single_job depending on --mode.
STAGES = {
    Stage.DOWNLOAD: StageDefinition(
        description='Download raw reads (sequential)',
        array_script='01_download_fixed.slurm',
        # Download only ships an array_optimized script
        single_script='../array_optimized/01_download_fixed.slurm',
        depends_on=(),
        output_dir_key='raw_data',
        outputs=(
            '{sample}_1.fastq.gz',
            '{sample}_2.fastq.gz',
        ),
        array_capable=False,
    ),
    Stage.FASTQC: StageDefinition(
        description='Quality control assessment',
        array_script='02_fastqc_array.slurm',
        single_script='02_fastqc.slurm',
        depends_on=(Stage.DOWNLOAD,),
        output_dir_key='fastqc',
        outputs=(
            '{sample}/{sample}_1_fastqc.html',
            '{sample}/{sample}_2_fastqc.html',
        ),
        default_max_concurrent=20,
    ),
    Stage.TRIMGALORE: StageDefinition(
        description='Read trimming and adapter removal',
        array_script='03_trimgalore_array.slurm',
        single_script='03_trimgalore.slurm',
        depends_on=(Stage.DOWNLOAD, Stage.FASTQC),
        output_dir_key='trimmed',
        outputs=(
            '{sample}/{sample}_1_val_1.fq.gz',
            '{sample}/{sample}_2_val_2.fq.gz',
        ),
        default_max_concurrent=8,
    ),
    Stage.KNEADDATA: StageDefinition(
        description='Host genome removal',
        array_script='04_kneaddata_array.slurm',
        single_script='04_kneaddata.slurm',
        depends_on=(Stage.TRIMGALORE,),
        output_dir_key='kneaddata',
        # Kneaddata names its output after the trimmed R1 input
        outputs=(
            '{sample}/{sample}_1_val_1_kneaddata_paired_1.fastq',
            '{sample}/{sample}_1_val_1_kneaddata_paired_2.fastq',
        ),
        default_max_concurrent=6,
    ),
    Stage.KRAKEN2: StageDefinition(
        description='Taxonomic classification',
        array_script='05_kraken2_array.slurm',
        single_script='05_kraken2.slurm',
        depends_on=(Stage.KNEADDATA,),
        output_dir_key='kraken2',
        outputs=(
            '{sample}/{sample}_kraken_report.txt',
            '{sample}/{sample}_kraken_output.txt',
        ),
        default_max_concurrent=4,
    ),
    Stage.HUMANN3: StageDefinition(
        description='Functional profiling',
        array_script='06_humann3_array.slurm',
        single_script='06_humann3.slurm',
        depends_on=(Stage.KNEADDATA,),
        output_dir_key='humann3',
        outputs=(
            '{sample}/{sample}_concatenated_genefamilies.tsv',
        ),
        default_max_concurrent=20,
    ),
}

# Directory for each script version (--mode)
SCRIPT_SUBDIRS = {
    'array': 'array_optimized',
    'original': 'single_job',
}


def get_stage_config(stage) -> StageDefinition:
    """Get the static definition of a stage."""
    return STAGES[Stage.parse(stage)]


def list_stages() -> list:
    """List all stage names in pipeline order."""
    return [stage.value for stage in Stage]


def script_name(stage, array_mode: bool) -> str:
    """Job script file name for a stage, relative to its mode directory."""
    definition = get_stage_config(stage)
    return definition.array_script if array_mode else definition.single_script
