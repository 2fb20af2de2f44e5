"""Command line tooling for benchmarking dualtree."""
