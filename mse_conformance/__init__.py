"""Conformance suite for segmented media-source playback and rendering hosts."""
