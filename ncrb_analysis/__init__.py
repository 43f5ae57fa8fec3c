"""ncrb_analysis package initializer.

This package contains the batch pipeline for the NCRB state/UT victims
table.  Modules include the source readers, the cleaning and aggregation
core, the text report and the chart writers.  See individual module
docstrings for details.
"""
