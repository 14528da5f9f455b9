"""Prompt construction package.

Contains deterministic message-list builders for classification, per-topic
answers and synthesis. No model calls or retrieval happen here.
"""
