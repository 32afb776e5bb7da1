"""Domain Events emitted by the resilience layer, the poller and the batch
edit coordinator."""
