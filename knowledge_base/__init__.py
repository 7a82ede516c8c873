"""
Knowledge graph storage: chunks, key concepts and atomic facts.
"""
