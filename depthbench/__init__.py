"""Synthetic planar scenes and accuracy checks for depth-camera geometry."""
