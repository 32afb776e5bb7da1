"""Domain layer: models, interfaces (ports), events and the error taxonomy."""
