"""
errors.py

Exceptions raised by the stage driver. Each failing invocation raises
exactly one of these; the CLI turns it into an ``ERROR:`` line and exit 1.
"""


class PipelineError(Exception):
    """Base exception for all pipeline driver errors."""


class ConfigurationError(PipelineError):
    """Raised when the config file is missing, unreadable or malformed."""


class UnknownStageError(PipelineError):
    """Raised for a stage name outside the fixed stage set."""

    def __init__(self, stage, valid):
        self.stage = stage
        self.valid = list(valid)
        label = f"'{stage}'" if stage else "(none given)"
        super().__init__(
            f"Unknown stage: {label}. Valid stages: {', '.join(self.valid)}"
        )


class SampleListError(PipelineError):
    """Raised when the sample list is unset, missing, unreadable or empty."""


class DependencyNotMetError(PipelineError):
    """Raised when a prerequisite stage has not completed for every sample."""

    def __init__(self, stage, prerequisite):
        self.stage = stage
        self.prerequisite = prerequisite
        super().__init__(
            f"Dependency '{prerequisite}' not completed. "
            f"Please run step '{prerequisite}' before '{stage}'."
        )


class ScriptNotFoundError(PipelineError):
    """Raised when a stage's job script is absent from the scripts directory."""

    def __init__(self, script_path):
        self.script_path = script_path
        super().__init__(f"Script not found: {script_path}")


class SubmissionError(PipelineError):
    """Raised when sbatch rejects or fails to acknowledge a submission."""
