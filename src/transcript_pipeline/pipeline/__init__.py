"""Upload intake, job status reporting and runtime wiring."""
