"""Core types shared by all layers: errors, constants, status vocabulary."""
