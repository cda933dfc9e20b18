"""Item pipeline, job engine and their persisted models."""
