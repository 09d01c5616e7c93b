"""Run orchestration: batching, resource lifetime, process lifecycle, aggregation."""
