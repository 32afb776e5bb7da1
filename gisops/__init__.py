"""gisops: job orchestration and atomic feature editing for GIS REST services."""

__version__ = "0.3.0"
