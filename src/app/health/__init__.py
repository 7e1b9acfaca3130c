"""Client health scoring and operational alerting.

Provides the deterministic scoring pipeline (factor extraction, composite
scoring with grade banding, trend comparison), the alert rule engine, the
score cache adapters, and the services that orchestrate them with the
text-generation service for narratives and suggestions.
"""
