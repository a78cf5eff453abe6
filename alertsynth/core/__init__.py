"""Core generation pipeline for AlertSynth."""
