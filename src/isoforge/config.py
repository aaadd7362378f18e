"""Configuration management for isoforge.

Configuration can come from:
- Default values
- A TOML configuration file
- Command-line arguments (override the file)

Example configuration file::

    [collapse]
    delta = 2
    min_evidence = 2
    rn_min = 3

    [validation]
    cage_cutoff = 50

    [consensus]
    threads = 8

    [tags]
    umi = "UB"

Example:
    >>> from isoforge.config import Config
    >>> config = Config.load("isoforge.toml")
    >>> config.collapse.delta
    2
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

import attrs

from isoforge.io.bam import TagNames
from isoforge.isoforms.consensus import ConsensusTools

logger = logging.getLogger(__name__)

# =============================================================================
# Default Configuration Values
# =============================================================================

# Collapsing defaults
DEFAULT_DELTA = 2
DEFAULT_MIN_EVIDENCE = 2
DEFAULT_RN_MIN = 3

# Validation cutoffs
DEFAULT_CAGE_CUTOFF = 50
DEFAULT_POLYA_CUTOFF = 50
DEFAULT_JUNCTION_CUTOFF = 1

# Consensus defaults
DEFAULT_THREADS = 20
DEFAULT_MIN_SUPPORT = 1
DEFAULT_MAX_SEQUENCES = 100

_non_negative = attrs.validators.ge(0)
_positive = attrs.validators.ge(1)


# =============================================================================
# Configuration Classes
# =============================================================================


@attrs.define
class CollapseConfig:
    """Configuration for molecule collapsing and isoform clustering.

    Attributes:
        delta: Maximum boundary difference in bases.
        min_evidence: Minimum molecules for a novel isoform.
        rn_min: Minimum reads for a molecule.
    """

    delta: int = attrs.field(default=DEFAULT_DELTA, validator=_non_negative)
    min_evidence: int = attrs.field(default=DEFAULT_MIN_EVIDENCE, validator=_positive)
    rn_min: int = attrs.field(default=DEFAULT_RN_MIN, validator=_positive)


@attrs.define
class ValidationConfig:
    """Configuration for evidence validation.

    Attributes:
        cage_cutoff: Maximum TSS distance to a CAGE peak.
        polya_cutoff: Maximum TES distance to a polyA site.
        junction_cutoff: Minimum short reads per intron.
    """

    cage_cutoff: int = attrs.field(default=DEFAULT_CAGE_CUTOFF, validator=_non_negative)
    polya_cutoff: int = attrs.field(default=DEFAULT_POLYA_CUTOFF, validator=_non_negative)
    junction_cutoff: int = attrs.field(default=DEFAULT_JUNCTION_CUTOFF, validator=_positive)


@attrs.define
class ConsensusConfig:
    """Configuration for consensus calling.

    Attributes:
        threads: Worker pool size.
        tmp_dir: Directory for temporary files (system default if None).
        min_support: Minimum molecules for a cluster to be called.
        max_sequences: Maximum sequences per cluster.
        poa: poa executable name or path.
        racon: racon executable name or path.
        minimap2: minimap2 executable name or path.
    """

    threads: int = attrs.field(default=DEFAULT_THREADS, validator=_positive)
    tmp_dir: str | None = None
    min_support: int = attrs.field(default=DEFAULT_MIN_SUPPORT, validator=_positive)
    max_sequences: int = attrs.field(default=DEFAULT_MAX_SEQUENCES, validator=_positive)
    poa: str = "poa"
    racon: str = "racon"
    minimap2: str = "minimap2"


@attrs.define
class TagConfig:
    """BAM tag names carried by the long reads."""

    cell: str = "BC"
    umi: str = "U8"
    gene: str = "IG"
    isoform: str = "IT"
    read_count: str = "RN"

    def to_tag_names(self) -> TagNames:
        """Convert to the reader's tag tuple."""
        return TagNames(self.cell, self.umi, self.gene, self.isoform, self.read_count)


_SECTIONS = {
    "collapse": CollapseConfig,
    "validation": ValidationConfig,
    "consensus": ConsensusConfig,
    "tags": TagConfig,
}


@attrs.define
class Config:
    """Main configuration container for isoforge.

    Attributes:
        collapse: Collapsing and clustering configuration.
        validation: Validation cutoffs.
        consensus: Consensus calling configuration.
        tags: BAM tag names.
    """

    collapse: CollapseConfig = attrs.Factory(CollapseConfig)
    validation: ValidationConfig = attrs.Factory(ValidationConfig)
    consensus: ConsensusConfig = attrs.Factory(ConsensusConfig)
    tags: TagConfig = attrs.Factory(TagConfig)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from a TOML file.

        Args:
            path: Path to configuration file. If None, returns the
                default configuration.

        Returns:
            Loaded configuration object.

        Raises:
            FileNotFoundError: If configuration file doesn't exist.
            ValueError: If the file has unknown sections or keys, or
                invalid values.
        """
        if path is None:
            return cls()

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "rb") as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ValueError(f"Invalid configuration file {path}: {e}") from e

        config = cls.from_dict(data)
        logger.debug(f"Loaded configuration from {path}")
        return config

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Build a configuration from nested dictionaries.

        Raises:
            ValueError: On unknown sections or keys, or invalid values.
        """
        unknown = set(data) - set(_SECTIONS)
        if unknown:
            raise ValueError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")

        sections = {}
        for name, section_cls in _SECTIONS.items():
            values = data.get(name, {})
            if not isinstance(values, dict):
                raise ValueError(f"Configuration section [{name}] must be a table")
            fields = {f.name for f in attrs.fields(section_cls)}
            bad = set(values) - fields
            if bad:
                raise ValueError(f"Unknown keys in [{name}]: {', '.join(sorted(bad))}")
            try:
                sections[name] = section_cls(**values)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid value in [{name}]: {e}") from e

        return cls(**sections)

    def override(self, **sections: dict[str, Any]) -> "Config":
        """Return a copy with the given non-None values replaced.

        Example:
            >>> config.override(collapse={"delta": 5, "rn_min": None})
        """
        updated = {}
        for name, values in sections.items():
            if name not in _SECTIONS:
                raise ValueError(f"Unknown configuration section: {name}")
            changes = {k: v for k, v in values.items() if v is not None}
            updated[name] = attrs.evolve(getattr(self, name), **changes)
        return attrs.evolve(self, **updated)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Dictionary representation of configuration.
        """
        return attrs.asdict(self)


# =============================================================================
# Capabilities
# =============================================================================


@attrs.frozen
class Capabilities:
    """Optional pipeline stages available for a run.

    Computed once before processing and passed to the pipeline.

    Attributes:
        validation: CAGE, polyA and short-read evidence are all present.
        consensus_tools: Resolved consensus executables, None if any is
            missing.
    """

    validation: bool = False
    consensus_tools: ConsensusTools | None = None

    @property
    def consensus(self) -> bool:
        """Whether consensus calling can run."""
        return self.consensus_tools is not None


def _exists(path: Path | str | None) -> bool:
    return path is not None and Path(path).exists()


def detect_capabilities(
    cage: Path | str | None = None,
    polya: Path | str | None = None,
    short: Path | str | None = None,
    consensus: ConsensusConfig | None = None,
) -> Capabilities:
    """Determine which optional stages can run.

    Args:
        cage: CAGE peak BED file.
        polya: PolyA site BED file.
        short: Short-read BAM or junction BED file.
        consensus: Consensus configuration naming the executables. If
            None, consensus calling is disabled.

    Returns:
        Capabilities for the run.
    """
    validation = _exists(cage) and _exists(polya) and _exists(short)
    if validation:
        logger.info("Validation enabled using the provided CAGE, polyA and short-read evidence")
    else:
        logger.info("Validation disabled (provide CAGE, polyA and short-read evidence files)")

    tools = None
    if consensus is not None:
        tools = ConsensusTools.from_path(consensus.poa, consensus.racon, consensus.minimap2)

    return Capabilities(validation=validation, consensus_tools=tools)
