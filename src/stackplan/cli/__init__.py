"""stackplan command-line interface."""
