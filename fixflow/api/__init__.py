"""HTTP surface of the workflow service."""
