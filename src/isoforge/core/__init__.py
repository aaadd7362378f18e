"""Pipeline orchestration for isoforge.

- collapse: Run all isoform stages and write the reports
"""
