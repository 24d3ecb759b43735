"""API package - HTTP trigger for financing runs."""
