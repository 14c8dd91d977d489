"""Normalization, ranking and correlation of fetched activity."""
