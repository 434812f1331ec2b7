"""
Core package for the VoiceScribe transcription service.

This package stages audio in Cloud Storage, starts long-running Google
Speech‑to‑Text jobs, polls them, and merges their results into a single
transcript with word timings and confidence.
"""
