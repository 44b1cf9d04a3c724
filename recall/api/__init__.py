"""Command layer and HTTP surface."""
