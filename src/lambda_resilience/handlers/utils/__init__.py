"""Handler utilities: observability, errors, retries, timeouts and fault injection."""
