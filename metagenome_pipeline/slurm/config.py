"""
config.py

Pipeline configuration loaded from YAML.

The config file is read once per invocation into a PipelineConfig, which is
passed explicitly to everything that needs it. Relative paths in the file
resolve against the directory holding the config file.

Example (see config/config.example.yaml for every key):

    base_dir: /scratch/project
    sample_list: samples.txt
    slurm:
      partition: normal
    resources:
      fastqc: {cpus: 4, mem: 8G, time: "4:00:00", max_concurrent: 20}
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from .errors import ConfigurationError
from .stage_config import STAGES, Stage, list_stages


# Output directory names under base_dir, keyed by StageDefinition.output_dir_key
DEFAULT_DIRECTORIES = {
    'raw_data': 'raw_reads',
    'fastqc': 'fastqc_results',
    'trimmed': 'trimmed_reads',
    'kneaddata': 'kneaddata_output',
    'kraken2': 'kraken2_output',
    'humann3': 'humann3_output',
    'logs': 'logs',
}

# Database locations under database_dir
DEFAULT_DATABASES = {
    'kneaddata': 'kneaddata/human/hg_39',
    'kraken2': 'kraken2/pluspf',
    'humann_nucleotide': 'humann3/chocophlan',
    'humann_protein': 'humann3/uniref',
    'metaphlan': 'metaphlan4/mpa_vOct22_CHOCOPhlAnSGB_202403',
}

RESOURCE_KEYS = ('cpus', 'mem', 'time', 'single_time', 'max_concurrent')

# Environment names the job scripts read
DIRECTORY_ENV = {
    'raw_data': 'RAW_DATA_DIR',
    'fastqc': 'FASTQC_DIR',
    'trimmed': 'TRIMMED_DIR',
    'kneaddata': 'KNEADDATA_DIR',
    'kraken2': 'KRAKEN2_DIR',
    'humann3': 'HUMANN3_DIR',
    'logs': 'LOGS_DIR',
}
DATABASE_ENV = {
    'kneaddata': 'KNEADDATA_DB',
    'kraken2': 'KRAKEN2_DB',
    'humann_nucleotide': 'HUMANN_NUC_DB',
    'humann_protein': 'HUMANN_PROT_DB',
    'metaphlan': 'METAPHLAN_DB',
}

TRIMMOMATIC_HINT = (
    "To find your path, run: "
    "conda activate kneaddata && echo $CONDA_PREFIX/share/trimmomatic-*/"
)


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader without YAML 1.1 base-60 integers, so 48:00:00 stays a string."""


ConfigLoader.yaml_implicit_resolvers = {
    first: [
        (tag, regexp) for tag, regexp in resolvers
        if tag != 'tag:yaml.org,2002:int'
    ]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
ConfigLoader.add_implicit_resolver(
    'tag:yaml.org,2002:int',
    re.compile(r'''^(?:[-+]?0b[0-1_]+
        |[-+]?0[0-7_]+
        |[-+]?(?:0|[1-9][0-9_]*)
        |[-+]?0x[0-9a-fA-F_]+)$''', re.X),
    list('-+0123456789'),
)


@dataclass
class ValidationReport:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class PipelineConfig:
    root: Path
    base_dir: Path
    database_dir: Optional[Path] = None
    project_id: str = ''
    sample_list: Optional[Path] = None
    scripts_dir: Optional[Path] = None
    directories: Dict[str, Path] = field(default_factory=dict)
    partition: Optional[str] = None
    account: Optional[str] = None
    email: Optional[str] = None
    resources: Dict[str, dict] = field(default_factory=dict)
    databases: Dict[str, Optional[Path]] = field(default_factory=dict)
    trimmomatic_path: Optional[Path] = None
    tools: dict = field(default_factory=dict)
    outputs: Dict[str, List[str]] = field(default_factory=dict)
    auto_resume: bool = True
    create_dirs: bool = True
    verbose: bool = True
    config_path: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: dict, root: Path) -> 'PipelineConfig':
        """
        Build a config from a parsed YAML mapping.

        Args:
            data: Mapping as returned by load_config's YAML loader
            root: Directory that relative paths resolve against

        Returns:
            PipelineConfig with every path resolved
        """
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError("Config must be a YAML mapping")

        root = Path(root).resolve()
        base_dir = _resolve(data.get('base_dir'), root) or root
        database_dir = _resolve(data.get('database_dir'), root)

        directories = {}
        overrides = _section(data, 'directories')
        for key, default in DEFAULT_DIRECTORIES.items():
            directories[key] = _resolve(overrides.get(key), root) or base_dir / default
        unknown = set(overrides) - set(DEFAULT_DIRECTORIES)
        if unknown:
            raise ConfigurationError(
                f"Unknown directories: {', '.join(sorted(unknown))}"
            )

        databases = {}
        db_overrides = _section(data, 'databases')
        for key, default in DEFAULT_DATABASES.items():
            path = _resolve(db_overrides.get(key), root)
            if path is None and database_dir is not None:
                path = database_dir / default
            databases[key] = path

        slurm = _section(data, 'slurm')

        return cls(
            root=root,
            base_dir=base_dir,
            database_dir=database_dir,
            project_id=str(data.get('project_id') or ''),
            sample_list=_resolve(data.get('sample_list'), root),
            scripts_dir=_resolve(data.get('scripts_dir'), root) or root / 'scripts',
            directories=directories,
            partition=_optional_str(slurm.get('partition')),
            account=_optional_str(slurm.get('account')),
            email=_optional_str(slurm.get('email')),
            resources=_parse_resources(_section(data, 'resources')),
            databases=databases,
            trimmomatic_path=_resolve(data.get('trimmomatic_path'), root),
            tools=_section(data, 'tools'),
            outputs=_parse_outputs(_section(data, 'outputs')),
            auto_resume=bool(data.get('auto_resume', True)),
            create_dirs=bool(data.get('create_dirs', True)),
            verbose=bool(data.get('verbose', True)),
        )

    def output_dir(self, stage) -> Path:
        """Root output directory of a stage."""
        return self.directories[STAGES[Stage.parse(stage)].output_dir_key]

    @property
    def logs_dir(self) -> Path:
        return self.directories['logs']

    def stage_resources(self, stage) -> dict:
        """Configured resources of a stage (only the keys that are set)."""
        return dict(self.resources.get(Stage.parse(stage).value, {}))

    def output_templates(self, stage) -> List[str]:
        """Expected per-sample output templates, config override first."""
        stage = Stage.parse(stage)
        if stage.value in self.outputs:
            return list(self.outputs[stage.value])
        return list(STAGES[stage].outputs)

    def validate(self) -> ValidationReport:
        """
        Check paths the job scripts depend on.

        Missing sample list, inaccessible base directory and an unusable
        Trimmomatic path are errors; missing databases only warn, since a
        run can stop before the stage that needs them.

        Returns:
            ValidationReport; validation passes when it has no errors
        """
        report = ValidationReport()

        if self.sample_list is None:
            report.errors.append("Sample list is not set (sample_list)")
        elif not self.sample_list.is_file():
            report.errors.append(f"Sample list file not found: {self.sample_list}")

        if not self.base_dir.parent.is_dir():
            report.errors.append(
                f"Cannot access base directory parent: {self.base_dir.parent}"
            )

        # The kneaddata database is a bowtie2 index prefix, not a directory
        kneaddata_db = self.databases.get('kneaddata')
        if kneaddata_db is None or not any(
            kneaddata_db.parent.glob(f"{kneaddata_db.name}.*.bt2")
        ):
            report.warnings.append(f"Kneaddata database not found: {kneaddata_db}")

        for key, label in (
            ('kraken2', 'Kraken2 database'),
            ('humann_nucleotide', 'HUMAnN3 nucleotide database'),
            ('humann_protein', 'HUMAnN3 protein database'),
        ):
            path = self.databases.get(key)
            if path is None or not path.is_dir():
                report.warnings.append(f"{label} not found: {path}")

        if self.trimmomatic_path is None:
            report.errors.append(
                f"trimmomatic_path is not set. {TRIMMOMATIC_HINT}"
            )
        elif not self.trimmomatic_path.is_dir():
            report.errors.append(
                f"Trimmomatic directory not found: {self.trimmomatic_path}. "
                f"{TRIMMOMATIC_HINT}"
            )

        return report

    def create_directories(self) -> List[Path]:
        """Create every stage output directory and the log directory."""
        created = []
        for path in self.directories.values():
            if not path.is_dir():
                path.mkdir(parents=True, exist_ok=True)
                created.append(path)
        return created

    def environment(self, num_samples: Optional[int] = None) -> Dict[str, str]:
        """
        Settings exported to job scripts as environment variables.

        Unset values are left out rather than exported empty.
        """
        env = {
            'PROJECT_ID': self.project_id,
            'BASE_DIR': self.base_dir,
            'DATABASE_DIR': self.database_dir,
            'SAMPLE_LIST': self.sample_list,
            'SLURM_PARTITION': self.partition,
            'SLURM_ACCOUNT': self.account,
            'SLURM_EMAIL': self.email,
            'TRIMMOMATIC_PATH': self.trimmomatic_path,
            'AUTO_RESUME': _flag(self.auto_resume),
            'CREATE_DIRS': _flag(self.create_dirs),
            'VERBOSE': _flag(self.verbose),
        }
        if num_samples is not None:
            env['NUM_SAMPLES'] = num_samples
        for key, name in DIRECTORY_ENV.items():
            env[name] = self.directories.get(key)
        for key, name in DATABASE_ENV.items():
            env[name] = self.databases.get(key)
        for stage_name, values in self.resources.items():
            prefix = stage_name.upper()
            for key, value in values.items():
                if key == 'max_concurrent':
                    env[f'MAX_CONCURRENT_{prefix}'] = value
                else:
                    env[f'{prefix}_{key.upper()}'] = value
        for key, value in self.tools.items():
            env[str(key).upper()] = value

        return {
            name: _flag(value) if isinstance(value, bool) else str(value)
            for name, value in env.items()
            if value is not None and value != ''
        }


def load_config(config_path: Path) -> PipelineConfig:
    """Load pipeline configuration from YAML."""
    config_path = Path(config_path)
    if not config_path.is_file():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, encoding='utf-8') as f:
            data = yaml.load(f, Loader=ConfigLoader)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Cannot parse {config_path}: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Cannot read {config_path}: {e}") from e

    config = PipelineConfig.from_dict(data, config_path.resolve().parent)
    config.config_path = config_path.resolve()
    return config


def format_time(value) -> str:
    """
    Render a wall-clock limit for sbatch --time.

    Strings pass through unchanged. A bare integer is minutes, as SLURM
    reads it; ConfigLoader keeps unquoted 48:00:00 a string.
    """
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ConfigurationError(f"Invalid time limit: {value!r}")
    return str(value)


def _parse_resources(section: dict) -> Dict[str, dict]:
    resources = {}
    for stage_name, values in section.items():
        if stage_name not in list_stages():
            raise ConfigurationError(
                f"Unknown stage in resources: {stage_name}. "
                f"Valid stages: {', '.join(list_stages())}"
            )
        values = values or {}
        if not isinstance(values, dict):
            raise ConfigurationError(f"resources.{stage_name} must be a mapping")
        unknown = set(values) - set(RESOURCE_KEYS)
        if unknown:
            raise ConfigurationError(
                f"Unknown keys in resources.{stage_name}: {', '.join(sorted(unknown))}"
            )

        parsed = {}
        for key, value in values.items():
            if value is None or value == '':
                continue
            if key in ('time', 'single_time'):
                value = format_time(value)
            elif key in ('cpus', 'max_concurrent'):
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    raise ConfigurationError(
                        f"resources.{stage_name}.{key} must be an integer, got {value!r}"
                    ) from None
                if value < 1:
                    raise ConfigurationError(
                        f"resources.{stage_name}.{key} must be at least 1, got {value}"
                    )
            else:
                value = str(value)
            parsed[key] = value
        resources[stage_name] = parsed
    return resources


def _parse_outputs(section: dict) -> Dict[str, List[str]]:
    outputs = {}
    for stage_name, templates in section.items():
        if stage_name not in list_stages():
            raise ConfigurationError(
                f"Unknown stage in outputs: {stage_name}. "
                f"Valid stages: {', '.join(list_stages())}"
            )
        if isinstance(templates, str):
            templates = [templates]
        if not templates or any('{sample}' not in str(t) for t in templates):
            raise ConfigurationError(
                f"outputs.{stage_name} must list templates containing {{sample}}"
            )
        templates = [str(t) for t in templates]
        for template in templates:
            try:
                template.format(sample='x')
            except (KeyError, IndexError, ValueError, AttributeError) as e:
                raise ConfigurationError(
                    f"outputs.{stage_name}: template {template!r} may only use "
                    f"the {{sample}} placeholder ({e!r})"
                ) from None
        outputs[stage_name] = templates
    return outputs


def _section(data: dict, key: str) -> dict:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"'{key}' must be a mapping")
    return value


def _resolve(value, root: Path) -> Optional[Path]:
    if value is None or value == '':
        return None
    path = Path(str(value)).expanduser()
    if not path.is_absolute():
        path = root / path
    return path


def _optional_str(value) -> Optional[str]:
    if value is None or value == '':
        return None
    return str(value)


def _flag(value: bool) -> str:
    return 'true' if value else 'false'
