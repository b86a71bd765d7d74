"""
Sources for the segment pull engine.

Each module wraps one external provider and returns plain records; mapping to
ExternalRecord happens at the ingestion boundary.
"""
