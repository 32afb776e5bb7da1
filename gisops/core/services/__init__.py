"""Application services: job client, poller, job runner and batch edits."""
