"""Metagenome pipeline: SLURM stage driver."""

__version__ = "0.1.0"
