"""Isoform collapsing stages.

The stages run in order, each consuming the output of the previous one:

- molecules: Merge reads sharing (cell, UMI, gene) into molecules
- cluster: Group molecules into isoform clusters within a tolerance
- filter: Drop weakly supported novel clusters
- classify: Label clusters KNOWN or NOVEL against the reference
- validate: Check TSS, TES and junctions against external evidence
- consensus: Call a consensus sequence per cluster
"""
