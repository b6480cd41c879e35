"""
Evaluation engine: filter pipeline, state manager and pipeline metrics.
"""
