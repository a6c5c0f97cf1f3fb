"""Ambient helpers: logging, error tracking, defaults, JSON I/O."""
