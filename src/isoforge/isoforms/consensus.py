"""Consensus sequence calling for isoform clusters.

Each cluster's molecule sequences are turned into one consensus with
three external tools:

1. ``poa`` builds a draft by partial-order alignment (heaviest bundle).
2. ``minimap2`` maps the sequences back onto the draft.
3. ``racon`` polishes the draft from those alignments.

Clusters are independent, so they are processed on a thread pool and
results are keyed by isoform id. A failing cluster is recorded and never
aborts the others.

Example:
    >>> from isoforge.isoforms.consensus import ConsensusCaller, ConsensusTools
    >>> tools = ConsensusTools.from_path()
    >>> caller = ConsensusCaller(tools, threads=8)
    >>> report = caller.call(clusters, sequences)
    >>> report.sequences["ENST0001"]
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Mapping, NamedTuple

import attrs

from isoforge.data import poa_matrix_path
from isoforge.io.fasta import iter_fasta, reverse_complement, write_fasta
from isoforge.parallel.executor import ExecutionStats, ParallelExecutor

if TYPE_CHECKING:
    from isoforge.isoforms.cluster import IsoformCluster
    from isoforge.isoforms.molecules import MoleculeKey

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_THREADS = 20
DEFAULT_MIN_SUPPORT = 1
DEFAULT_MAX_SEQUENCES = 100
CONSENSUS_PREFIX = "CONSENS"


class ConsensusError(RuntimeError):
    """An external consensus tool failed or produced no output."""


# =============================================================================
# Data Structures
# =============================================================================


@attrs.frozen(slots=True)
class ConsensusTools:
    """Resolved paths of the external executables.

    Attributes:
        poa: Partial-order aligner.
        racon: Polisher.
        minimap2: Read mapper.
        matrix: poa scoring matrix.
    """

    poa: str
    racon: str
    minimap2: str
    matrix: Path = attrs.field(factory=poa_matrix_path)

    @classmethod
    def from_path(
        cls,
        poa: str = "poa",
        racon: str = "racon",
        minimap2: str = "minimap2",
    ) -> ConsensusTools | None:
        """Resolve the executables on PATH.

        Returns:
            ConsensusTools, or None if any executable is missing.
        """
        resolved = {}
        for name, executable in (("poa", poa), ("racon", racon), ("minimap2", minimap2)):
            path = shutil.which(executable)
            if path is None:
                logger.info(f"Unable to find {executable} on PATH, consensus calling disabled")
                return None
            resolved[name] = path
        return cls(**resolved)


class ConsensusTask(NamedTuple):
    """Input of one consensus computation."""

    isoform_id: str
    strand: str
    sequences: tuple[tuple[str, str], ...]


@attrs.define(slots=True)
class ConsensusReport:
    """Outcome of consensus calling.

    Attributes:
        sequences: Consensus per isoform id, in transcript orientation.
        failures: Error message per failed isoform id.
        skipped: Clusters without enough supporting sequences.
        stats: Execution statistics.
    """

    sequences: dict[str, str] = attrs.Factory(dict)
    failures: dict[str, str] = attrs.Factory(dict)
    skipped: int = 0
    stats: ExecutionStats = attrs.Factory(ExecutionStats.empty)

    @property
    def n_called(self) -> int:
        """Clusters with a consensus."""
        return len(self.sequences)


# =============================================================================
# PIR Parsing
# =============================================================================


def parse_pir_consensus(path: Path | str) -> str:
    """Extract the consensus row from a poa PIR alignment.

    Args:
        path: PIR file written by ``poa -pir``.

    Returns:
        Consensus sequence with alignment gaps removed.

    Raises:
        ConsensusError: If no consensus row is present.
    """
    for name, aligned in iter_fasta(path):
        if name.startswith("P1;"):
            name = name[3:]
        if name.startswith(CONSENSUS_PREFIX):
            return aligned.replace(".", "").replace("-", "").rstrip("*")
    raise ConsensusError(f"No {CONSENSUS_PREFIX} row in {path}")


# =============================================================================
# Consensus Caller
# =============================================================================


class ConsensusCaller:
    """Compute consensus sequences for isoform clusters.

    Attributes:
        tools: External executables.
        threads: Worker pool size.
        tmp_dir: Parent directory for per-cluster working directories.
        min_support: Minimum molecules for a cluster to be called.
        max_sequences: Maximum sequences given to poa per cluster.
    """

    def __init__(
        self,
        tools: ConsensusTools,
        threads: int = DEFAULT_THREADS,
        tmp_dir: Path | str | None = None,
        min_support: int = DEFAULT_MIN_SUPPORT,
        max_sequences: int = DEFAULT_MAX_SEQUENCES,
    ) -> None:
        self.tools = tools
        self.threads = threads
        self.tmp_dir = Path(tmp_dir) if tmp_dir else Path(tempfile.gettempdir())
        self.min_support = min_support
        self.max_sequences = max_sequences

    def make_tasks(
        self,
        clusters: Iterable["IsoformCluster"],
        sequences: Mapping["MoleculeKey", str],
    ) -> tuple[list[ConsensusTask], int]:
        """Gather member sequences per cluster.

        Returns:
            Tuple of (tasks, number of clusters skipped).
        """
        tasks = []
        skipped = 0
        for cluster in clusters:
            seqs = [
                (f"{key.cell}_{key.umi}", sequences[key])
                for key in cluster.members
                if sequences.get(key)
            ]
            if cluster.n_molecules < self.min_support or not seqs:
                skipped += 1
                continue
            tasks.append(
                ConsensusTask(
                    isoform_id=cluster.isoform_id,
                    strand=cluster.strand,
                    sequences=tuple(seqs[: self.max_sequences]),
                )
            )
        return tasks, skipped

    def call(
        self,
        clusters: Iterable["IsoformCluster"],
        sequences: Mapping["MoleculeKey", str],
    ) -> ConsensusReport:
        """Call consensus sequences for all eligible clusters.

        Args:
            clusters: Clusters to process.
            sequences: Representative read sequence per molecule key.

        Returns:
            ConsensusReport keyed by isoform id.
        """
        tasks, skipped = self.make_tasks(clusters, sequences)
        self.tmp_dir.mkdir(parents=True, exist_ok=True)

        executor = ParallelExecutor(n_workers=self.threads)
        results, stats = executor.map_items(
            self.consensus,
            tasks,
            ids=[t.isoform_id for t in tasks],
        )

        report = ConsensusReport(skipped=skipped, stats=stats)
        for r in results:
            if r.success:
                report.sequences[r.task_id] = r.result
            else:
                report.failures[r.task_id] = r.error or "unknown error"

        logger.info(
            f"Consensus called for {report.n_called} isoforms "
            f"({len(report.failures)} failed, {skipped} skipped)"
        )
        return report

    def consensus(self, task: ConsensusTask) -> str:
        """Compute one consensus sequence.

        Args:
            task: Cluster id, strand and member sequences.

        Returns:
            Consensus in transcript orientation.

        Raises:
            ConsensusError: If a tool fails.
        """
        if len(task.sequences) == 1:
            sequence = task.sequences[0][1]
        else:
            with tempfile.TemporaryDirectory(prefix=f"{task.isoform_id}.", dir=self.tmp_dir) as tmp:
                sequence = self._polished_consensus(task, Path(tmp))

        if task.strand == "-":
            sequence = reverse_complement(sequence)
        return sequence

    def _polished_consensus(self, task: ConsensusTask, workdir: Path) -> str:
        reads = workdir / "reads.fa"
        pir = workdir / "draft.pir"
        draft = workdir / "draft.fa"
        sam = workdir / "aln.sam"

        write_fasta(task.sequences, reads, line_width=None)

        self._run(
            [
                self.tools.poa,
                "-read_fasta", str(reads),
                "-pir", str(pir),
                "-do_progressive",
                "-hb",
                str(self.tools.matrix),
            ],
        )
        draft_sequence = parse_pir_consensus(pir)
        if not draft_sequence:
            raise ConsensusError(f"poa produced an empty draft for {task.isoform_id}")
        write_fasta([(task.isoform_id, draft_sequence)], draft, line_width=None)

        self._run(
            [self.tools.minimap2, "-ax", "map-ont", str(draft), str(reads)],
            stdout_path=sam,
        )

        polished = workdir / "polished.fa"
        self._run(
            [self.tools.racon, str(reads), str(sam), str(draft)],
            stdout_path=polished,
        )

        records = list(iter_fasta(polished))
        if not records or not records[0][1]:
            # racon emits nothing when no read maps to the draft
            logger.debug(f"racon returned no sequence for {task.isoform_id}, keeping draft")
            return draft_sequence
        return records[0][1]

    @staticmethod
    def _run(cmd: list[str], stdout_path: Path | None = None) -> None:
        """Run an external tool, optionally capturing stdout to a file.

        Raises:
            ConsensusError: If the tool exits with an error.
        """
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                check=True,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as e:
            raise ConsensusError(f"{Path(cmd[0]).name} failed: {e.stderr}") from e

        if stdout_path is not None:
            stdout_path.write_text(result.stdout)


def consensus_records(
    clusters: Iterable["IsoformCluster"],
    report: ConsensusReport,
) -> list[tuple[str, str]]:
    """FASTA records for clusters with a consensus.

    Headers carry the isoform id followed by gene and support fields.
    """
    records = []
    for cluster in clusters:
        sequence = report.sequences.get(cluster.isoform_id)
        if sequence is None:
            continue
        header = (
            f"{cluster.isoform_id} gene={cluster.gene} "
            f"molecules={cluster.n_molecules} reads={cluster.n_reads} cells={cluster.n_cells}"
        )
        records.append((header, sequence))
    return records
