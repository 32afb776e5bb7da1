"""Infrastructure adapters: HTTP transport, service backends, resilience,
configuration, monitoring and console display."""
