"""Cross-cutting infrastructure: settings, logging, telemetry, rate limits."""
