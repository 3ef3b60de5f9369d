"""Console and Matrix connectors plus the background engine loop."""
