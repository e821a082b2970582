# =============================================================================
# Models Package — Data Shapes
# =============================================================================
#   - records.py: vector records and the tagged metadata union
#     (StructuredMetadata | ChunkMetadata), document chunks, search hits
#   - responses.py: tier labels, candidate answers, the final RAGResponse
#   - conversation.py: conversation turns, feedback records, query context
#
# DESIGN DECISION: Internal, hot-path structures are frozen dataclasses.
# Only the outward-facing RAGResponse is a Pydantic model, since it is what
# the request-handling layer serialises.
# =============================================================================
