"""Models, configuration, errors and workspace storage."""
