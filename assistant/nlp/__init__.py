"""NLP utilities for question routing.

Module scope:
- Topic classification for the workflow's first stage (`topic_classifier`).
"""
