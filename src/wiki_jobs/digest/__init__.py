"""News digest pipeline feeding the auto-update fan-out job."""
