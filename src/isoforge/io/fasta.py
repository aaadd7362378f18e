"""FASTA handling for read and consensus sequences.

Example:
    >>> from isoforge.io.fasta import write_fasta, iter_fasta
    >>> write_fasta([("iso1", "ACGT")], "consensus.fas")
    >>> list(iter_fasta("consensus.fas"))
    [('iso1', 'ACGT')]
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Iterator

logger = logging.getLogger(__name__)

# =============================================================================
# Complement Table
# =============================================================================

COMPLEMENT_TABLE = str.maketrans(
    "ACGTacgtNnRYSWKMBDHVryswkmbdhv",
    "TGCAtgcaNnYRSWMKVHDByrswmkvhdb",
)

LINE_WIDTH = 80


# =============================================================================
# Utility Functions
# =============================================================================


def reverse_complement(sequence: str) -> str:
    """Get the reverse complement of a DNA sequence.

    Handles IUPAC ambiguity codes and preserves case.

    Args:
        sequence: DNA sequence string.

    Returns:
        Reverse complement sequence.
    """
    return sequence.translate(COMPLEMENT_TABLE)[::-1]


def iter_fasta(path: Path | str) -> Iterator[tuple[str, str]]:
    """Iterate over (name, sequence) records.

    The name is the header up to the first whitespace.

    Raises:
        FileNotFoundError: If the file doesn't exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"FASTA file not found: {path}")

    name = None
    chunks: list[str] = []
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            if line.startswith(">"):
                if name is not None:
                    yield name, "".join(chunks)
                header = line[1:].split()
                name = header[0] if header else ""
                chunks = []
            else:
                chunks.append(line)

    if name is not None:
        yield name, "".join(chunks)


def write_fasta(
    records: Iterable[tuple[str, str]],
    path: Path | str,
    line_width: int | None = LINE_WIDTH,
) -> int:
    """Write (header, sequence) records.

    Args:
        records: Header (without ``>``) and sequence pairs.
        path: Output file path.
        line_width: Wrap sequences at this width (None = no wrapping).

    Returns:
        Number of records written.
    """
    n = 0
    with open(path, "w") as f:
        for header, sequence in records:
            f.write(f">{header}\n")
            if line_width:
                for i in range(0, len(sequence), line_width):
                    f.write(sequence[i : i + line_width] + "\n")
            else:
                f.write(sequence + "\n")
            n += 1
    return n
