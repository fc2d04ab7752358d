"""HTTP API for the SDR call pipeline."""
