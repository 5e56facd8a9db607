"""Transport layer: TCP session with a terminal."""
