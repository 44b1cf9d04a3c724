"""
Core engine - canonical record store, semantic graph, recall, sessions and privacy rules.
"""
