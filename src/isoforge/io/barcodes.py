"""Cell barcode whitelist loading."""

from __future__ import annotations

import gzip
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def load_cell_list(path: Path | str) -> frozenset[str]:
    """Load accepted cell barcodes.

    The first comma- or tab-separated field of each line is taken as the
    barcode. Blank lines, comments and a leading header line named
    ``barcode``/``cell`` are ignored.

    Args:
        path: Whitelist file (csv, tsv or plain list; optionally gzipped).

    Returns:
        Frozen set of barcodes.

    Raises:
        FileNotFoundError: If the file doesn't exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Cell barcode file not found: {path}")

    opener = gzip.open if path.suffix == ".gz" else open
    cells = set()
    with opener(path, "rt") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            barcode = line.replace("\t", ",").split(",")[0].strip().strip('"')
            if barcode.lower() in ("barcode", "barcodes", "cell", "cellbarcode"):
                continue
            if barcode:
                cells.add(barcode)

    logger.info(f"Loaded {len(cells)} cell barcodes from {path.name}")
    return frozenset(cells)
