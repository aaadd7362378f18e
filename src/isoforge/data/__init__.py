"""Package data files for isoforge.

This package contains data files used by isoforge, including:
- poa_nucleotide.mat: Nucleotide scoring matrix for poa draft consensus
"""

from importlib import resources
from pathlib import Path

POA_MATRIX = "poa_nucleotide.mat"


def get_data_path(filename: str) -> Path:
    """Get the path to a data file.

    Args:
        filename: Name of the data file.

    Returns:
        Path to the data file.
    """
    return resources.files(__name__).joinpath(filename)


def poa_matrix_path() -> Path:
    """Path to the bundled poa scoring matrix."""
    return Path(str(get_data_path(POA_MATRIX)))


__all__ = ["POA_MATRIX", "get_data_path", "poa_matrix_path"]
