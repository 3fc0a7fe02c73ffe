"""
sratools - dispatch layer for the SRA command line tools.

One launcher is installed under many names (fastq-dump, sam-dump, ...).
The name it is invoked as picks the tool; the accessions decide where the
data comes from and how each run is retried across data sources.
"""

__version__ = "0.1.0"
__author__ = "sratools Team"
