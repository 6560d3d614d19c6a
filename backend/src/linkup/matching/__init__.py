"""Matching queue, feature extraction, scoring and pair selection."""
