"""Command-line interface for isoforge.

This module provides the main entry point for the isoforge CLI tool.
It uses Click to define commands.

Commands:
    collapse: Collapse tagged long-read molecules into an isoform catalog

Example:
    $ isoforge --help
    $ isoforge collapse -i molecules.bam --refflat refFlat.txt --cells barcodes.csv -o out
    $ isoforge collapse -i molecules.bam --refflat refFlat.txt --cells barcodes.csv -o out \\
        --cage cage.bed --polya polya.bed --short short.bam -t 16
"""

from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from isoforge import __version__

# Initialize rich console for pretty output
console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="isoforge")
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-vv for debug).")
@click.option("-q", "--quiet", is_flag=True, help="Suppress non-error output.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Also write debug-level logs to this file.",
)
@click.pass_context
def main(ctx: click.Context, verbose: int, quiet: bool, log_file: Optional[Path]) -> None:
    """isoforge: Collapse single-cell long reads into an evidence-backed isoform catalog.

    Reads tagged with cell barcode, UMI and gene are merged into molecules,
    clustered into isoforms, filtered, classified against a reference gene
    model, validated against CAGE, polyA and short-read evidence, and
    optionally consensus-sequenced.
    """
    from isoforge.utils.logging import setup_logging

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    verbosity = 0 if quiet else 1 + verbose
    setup_logging(verbosity=verbosity, log_file=log_file)


# =============================================================================
# collapse command
# =============================================================================


@main.command()
@click.option(
    "--input",
    "-i",
    "input_bam",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Tagged long-read BAM file.",
)
@click.option(
    "--refflat",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Reference gene model in refFlat format.",
)
@click.option(
    "--cells",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Cell barcode whitelist (.csv, .tsv or one barcode per line).",
)
@click.option(
    "--outdir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    required=True,
    help="Output directory.",
)
@click.option(
    "--prefix",
    default="CollapseModel",
    show_default=True,
    help="Prefix for output file names.",
)
# Collapsing options (defaults come from the configuration)
@click.option("--delta", type=click.IntRange(min=0), help="Boundary tolerance in bases [default: 2].")
@click.option(
    "--min-evidence",
    type=click.IntRange(min=1),
    help="Minimum molecules for a novel isoform [default: 2].",
)
@click.option("--rn-min", type=click.IntRange(min=1), help="Minimum reads per molecule [default: 3].")
# Tag options
@click.option("--cell-tag", help="Cell barcode tag [default: BC].")
@click.option("--umi-tag", help="UMI tag [default: U8].")
@click.option("--gene-tag", help="Gene name tag [default: IG].")
@click.option("--isoform-tag", help="Isoform tag [default: IT].")
@click.option("--rn-tag", help="Read count tag [default: RN].")
# Validation options
@click.option(
    "--short",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Short-read BAM or junction BED for junction validation.",
)
@click.option("--cage", type=click.Path(dir_okay=False, path_type=Path), help="CAGE peaks BED file.")
@click.option("--polya", type=click.Path(dir_okay=False, path_type=Path), help="PolyA sites BED file.")
@click.option("--cage-cutoff", type=click.IntRange(min=0), help="CAGE distance cutoff [default: 50].")
@click.option("--polya-cutoff", type=click.IntRange(min=0), help="PolyA distance cutoff [default: 50].")
@click.option(
    "--junction-cutoff",
    type=click.IntRange(min=1),
    help="Minimum short reads per junction [default: 1].",
)
# Consensus options
@click.option("--threads", "-t", type=click.IntRange(min=1), help="Consensus worker threads [default: 20].")
@click.option(
    "--tmp-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for temporary consensus files.",
)
@click.option(
    "--no-consensus",
    is_flag=True,
    help="Skip consensus calling even if poa, racon and minimap2 are available.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="TOML configuration file.",
)
@click.pass_context
def collapse(
    ctx: click.Context,
    input_bam: Path,
    refflat: Path,
    cells: Path,
    outdir: Path,
    prefix: str,
    delta: Optional[int],
    min_evidence: Optional[int],
    rn_min: Optional[int],
    cell_tag: Optional[str],
    umi_tag: Optional[str],
    gene_tag: Optional[str],
    isoform_tag: Optional[str],
    rn_tag: Optional[str],
    short: Optional[Path],
    cage: Optional[Path],
    polya: Optional[Path],
    cage_cutoff: Optional[int],
    polya_cutoff: Optional[int],
    junction_cutoff: Optional[int],
    threads: Optional[int],
    tmp_dir: Optional[Path],
    no_consensus: bool,
    config_path: Optional[Path],
) -> None:
    """Collapse tagged long reads into an isoform catalog.

    \b
    Steps performed:
    1. Build molecules from reads sharing cell barcode, UMI and gene
    2. Cluster molecules into isoforms (reference transcripts as seeds)
    3. Drop novel isoforms supported by fewer than MIN_EVIDENCE molecules
    4. Classify isoforms as known or novel
    5. Validate TSS, TES and junctions (needs --cage, --polya and --short)
    6. Call consensus sequences (needs poa, racon and minimap2 on PATH)

    \b
    Outputs ({prefix}.d{delta}.rn{rn_min}.e{min_evidence}.*):
    - .txt: Isoform table
    - .refflat.txt / .gff: All kept isoforms
    - .final.refflat.txt / .final.gff: Fully validated isoforms only
    - .summary.txt / .summary.json: Run statistics
    - .fas: Consensus sequences

    \b
    Examples:
        $ isoforge collapse -i molecules.bam --refflat refFlat.txt \\
            --cells barcodes.csv -o out --delta 2 --rn-min 3
    """
    from isoforge.config import Config, detect_capabilities
    from isoforge.core.collapse import CollapsePipeline, CollapseReportWriter, OutputPaths
    from isoforge.io.bam import iter_tagged_reads
    from isoforge.io.barcodes import load_cell_list
    from isoforge.io.refflat import ReferenceGeneModel
    from isoforge.isoforms.evidence import load_evidence

    verbose = ctx.obj.get("verbose", 0)
    quiet = ctx.obj.get("quiet", False)

    try:
        config = Config.load(config_path).override(
            collapse={"delta": delta, "min_evidence": min_evidence, "rn_min": rn_min},
            validation={
                "cage_cutoff": cage_cutoff,
                "polya_cutoff": polya_cutoff,
                "junction_cutoff": junction_cutoff,
            },
            consensus={"threads": threads, "tmp_dir": str(tmp_dir) if tmp_dir else None},
            tags={
                "cell": cell_tag,
                "umi": umi_tag,
                "gene": gene_tag,
                "isoform": isoform_tag,
                "read_count": rn_tag,
            },
        )

        if not quiet:
            c = config.collapse
            console.print(f"[blue]Input BAM:[/blue] {input_bam}")
            console.print(f"[blue]Reference:[/blue] {refflat}")
            console.print(f"[blue]Cells:[/blue] {cells}")
            console.print(
                f"[blue]Parameters:[/blue] delta={c.delta} min_evidence={c.min_evidence} rn_min={c.rn_min}"
            )

        capabilities = detect_capabilities(
            cage=cage,
            polya=polya,
            short=short,
            consensus=None if no_consensus else config.consensus,
        )

        cell_list = load_cell_list(cells)
        reference = ReferenceGeneModel.load(refflat)
        evidence = load_evidence(cage, polya, short) if capabilities.validation else None

        if not quiet:
            console.print(f"[dim]Loaded {len(cell_list):,} cells and {reference.n_transcripts:,} reference transcripts[/dim]")
            if not capabilities.validation:
                console.print("[yellow]Validation skipped:[/yellow] provide --cage, --polya and --short")
            if not capabilities.consensus:
                console.print("[yellow]Consensus skipped:[/yellow] poa, racon and minimap2 not all available")

        pipeline = CollapsePipeline(
            reference,
            cell_list,
            config=config,
            capabilities=capabilities,
            evidence=evidence,
        )
        reads = iter_tagged_reads(
            input_bam,
            tags=config.tags.to_tag_names(),
            with_sequence=pipeline.needs_sequences,
        )
        result = pipeline.run(reads)

        paths = OutputPaths.from_config(outdir, prefix, config)
        written = CollapseReportWriter.write_all(result, paths)

        if not quiet:
            console.print("")
            console.print(CollapseReportWriter.format_summary(result.statistics))
            console.print("")
            for kind, path in written.items():
                console.print(f"[green]Wrote {kind}:[/green] {path}")

    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        if verbose:
            import traceback
            traceback.print_exc()
        raise SystemExit(1)


if __name__ == "__main__":
    main()
