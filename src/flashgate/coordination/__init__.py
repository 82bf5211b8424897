"""Leader election and node maintenance windows."""
