"""Core run machinery: hashing, normalization, packaging and the pipeline."""
