from __future__ import annotations

from pathlib import Path

import pytest

from metagenome_pipeline.slurm.config import (
    PipelineConfig,
    format_time,
    load_config,
)
from metagenome_pipeline.slurm.errors import ConfigurationError


def test_load_config_resolves_paths(config: PipelineConfig, tmp_path: Path) -> None:
    root = tmp_path.resolve()
    assert config.sample_list == root / "samples.txt"
    assert config.scripts_dir == root / "scripts"
    assert config.base_dir == tmp_path / "work"
    assert config.output_dir("download") == tmp_path / "work" / "raw_reads"
    assert config.output_dir("humann3") == tmp_path / "work" / "humann3_output"
    assert config.logs_dir == tmp_path / "work" / "logs"
    assert config.databases["kraken2"] == tmp_path / "db" / "kraken2" / "pluspf"
    assert config.partition == "normal"
    assert config.account == "lab"


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        load_config(tmp_path / "nope.yaml")


def test_malformed_yaml(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("resources: [unclosed\n")
    with pytest.raises(ConfigurationError, match="Cannot parse"):
        load_config(path)


def test_config_not_utf8(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_bytes(b"project_id: \xff\xfe\n")
    with pytest.raises(ConfigurationError, match="Cannot read"):
        load_config(path)


def test_config_must_be_mapping(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigurationError, match="mapping"):
        load_config(path)


def test_unknown_stage_in_resources(config_data: dict, write_config) -> None:
    config_data["resources"]["assembly"] = {"cpus": 8}
    with pytest.raises(ConfigurationError, match="assembly"):
        load_config(write_config(config_data))


def test_unknown_resource_key(config_data: dict, write_config) -> None:
    config_data["resources"]["fastqc"]["gpus"] = 1
    with pytest.raises(ConfigurationError, match="gpus"):
        load_config(write_config(config_data))


def test_empty_slurm_fields_are_unset(config_data: dict, write_config) -> None:
    config_data["slurm"] = {"partition": "", "account": None}
    config = load_config(write_config(config_data))
    assert config.partition is None
    assert config.account is None


def test_unquoted_time_stays_a_clock(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    # Plain SafeLoader would read this as the base-60 integer 172800
    path.write_text("resources:\n  download:\n    time: 48:00:00\n")
    config = load_config(path)
    assert config.stage_resources("download")["time"] == "48:00:00"


@pytest.mark.parametrize(
    "value, expected",
    [
        (90, "90"),
        ("4:00:00", "4:00:00"),
        ("12:00:00", "12:00:00"),
        ("1-00:00:00", "1-00:00:00"),
    ],
)
def test_format_time(value, expected: str) -> None:
    assert format_time(value) == expected


@pytest.mark.parametrize("value", [True, 1.5, ["4:00:00"]])
def test_format_time_rejects_other_types(value) -> None:
    with pytest.raises(ConfigurationError, match="Invalid time limit"):
        format_time(value)


def test_bare_number_time_is_minutes(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("resources:\n  fastqc:\n    time: 90\n    cpus: 4\n")
    resources = load_config(path).stage_resources("fastqc")
    assert resources["time"] == "90"
    assert resources["cpus"] == 4


@pytest.mark.parametrize("key", ["cpus", "max_concurrent"])
@pytest.mark.parametrize("value", [0, -2])
def test_resource_counts_must_be_positive(
    key: str, value: int, config_data: dict, write_config
) -> None:
    config_data["resources"]["fastqc"][key] = value
    with pytest.raises(ConfigurationError, match=f"fastqc.{key} must be at least 1"):
        load_config(write_config(config_data))


def test_output_template_override(config_data: dict, write_config) -> None:
    config_data["outputs"] = {"humann3": "{sample}/{sample}_pathabundance.tsv"}
    config = load_config(write_config(config_data))
    assert config.output_templates("humann3") == ["{sample}/{sample}_pathabundance.tsv"]
    assert config.output_templates("kraken2") == [
        "{sample}/{sample}_kraken_report.txt",
        "{sample}/{sample}_kraken_output.txt",
    ]


def test_output_template_needs_sample_placeholder(config_data: dict, write_config) -> None:
    config_data["outputs"] = {"humann3": ["genefamilies.tsv"]}
    with pytest.raises(ConfigurationError, match=r"\{sample\}"):
        load_config(write_config(config_data))


@pytest.mark.parametrize(
    "template",
    ["{sample}_{read}.fastq.gz", "{sample}_{}.txt", "{sample}/{sample.name}.txt", "{sample}_{"],
)
def test_output_template_rejects_other_fields(
    template: str, config_data: dict, write_config
) -> None:
    config_data["outputs"] = {"download": [template]}
    with pytest.raises(ConfigurationError, match="outputs.download"):
        load_config(write_config(config_data))


def test_validate_passes(config: PipelineConfig) -> None:
    report = config.validate()
    assert report.ok, report.errors
    # No databases were created, so every database is only a warning
    assert len(report.warnings) == 4


def test_validate_finds_databases(config: PipelineConfig, tmp_path: Path) -> None:
    kneaddata = tmp_path / "db" / "kneaddata" / "human"
    kneaddata.mkdir(parents=True)
    (kneaddata / "hg_39.1.bt2").write_text("")
    for sub in ("kraken2/pluspf", "humann3/chocophlan", "humann3/uniref"):
        (tmp_path / "db" / sub).mkdir(parents=True)

    report = config.validate()
    assert report.ok
    assert report.warnings == []


def test_validate_missing_sample_list(config_data: dict, write_config) -> None:
    config_data["sample_list"] = "missing.txt"
    report = load_config(write_config(config_data)).validate()
    assert not report.ok
    assert any("Sample list file not found" in e for e in report.errors)


def test_validate_trimmomatic(config_data: dict, write_config) -> None:
    config_data["trimmomatic_path"] = ""
    report = load_config(write_config(config_data)).validate()
    assert any("trimmomatic_path is not set" in e for e in report.errors)

    config_data["trimmomatic_path"] = "/nonexistent/trimmomatic"
    report = load_config(write_config(config_data)).validate()
    assert any("Trimmomatic directory not found" in e for e in report.errors)


def test_create_directories(config: PipelineConfig) -> None:
    created = config.create_directories()
    assert len(created) == 7
    for path in created:
        assert path.is_dir()
    # Second call has nothing to do
    assert config.create_directories() == []


def test_environment_exports_settings(config: PipelineConfig, tmp_path: Path) -> None:
    env = config.environment(num_samples=2)
    assert env["NUM_SAMPLES"] == "2"
    assert env["RAW_DATA_DIR"] == str(tmp_path / "work" / "raw_reads")
    assert env["KRAKEN2_DB"] == str(tmp_path / "db" / "kraken2" / "pluspf")
    assert env["FASTQC_CPUS"] == "4"
    assert env["FASTQC_SINGLE_TIME"] == "48:00:00"
    assert env["MAX_CONCURRENT_FASTQC"] == "10"
    assert env["TRIMGALORE_QUALITY"] == "0"
    assert env["AUTO_RESUME"] == "true"
    assert env["SLURM_PARTITION"] == "normal"
    assert "SLURM_EMAIL" not in env
    assert all(isinstance(v, str) for v in env.values())


def test_environment_exports_email(config_data: dict, write_config) -> None:
    config_data["slurm"]["email"] = "lab@example.org"
    config = load_config(write_config(config_data))
    assert config.email == "lab@example.org"
    assert config.environment()["SLURM_EMAIL"] == "lab@example.org"


def test_environment_omits_unset_values(tmp_path: Path) -> None:
    config = PipelineConfig.from_dict({}, tmp_path)
    env = config.environment()
    assert "SLURM_ACCOUNT" not in env
    assert "NUM_SAMPLES" not in env
    assert "PROJECT_ID" not in env
    assert "KRAKEN2_DB" not in env


def test_example_config_loads(project_root: Path) -> None:
    config = load_config(project_root / "config" / "config.example.yaml")
    assert config.partition == "normal"
    assert config.account is None
    assert config.email is None
    assert config.stage_resources("humann3")["time"] == "16:00:00"
    assert config.stage_resources("humann3")["cpus"] == 32
