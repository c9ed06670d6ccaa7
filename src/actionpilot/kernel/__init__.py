"""Kernel layer - tool contracts and model access."""
