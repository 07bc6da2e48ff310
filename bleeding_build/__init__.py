"""bleeding-build: build a bleeding-edge bundle from interdependent repositories."""
