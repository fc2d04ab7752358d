"""SDR daily call-transcript pipeline: segment, classify and grade sales calls."""

__version__ = "1.0.0"
