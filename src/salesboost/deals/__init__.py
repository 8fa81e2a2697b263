"""Deal pipeline module -- schemas, local collection, aggregation, and stage transitions.

Provides Pydantic schemas (Deal, DealStage, PipelineStats), the session's
in-memory DealCollection, PipelineAggregator for derived statistics,
DealStageMachine for server-confirmed stage changes, and the DealStore
collaborator (abstract + HTTP).
"""
