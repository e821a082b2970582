# =============================================================================
# CardWise — Tiered Retrieval and Scoring for Credit Card Q&A
# =============================================================================
# Answers natural-language questions about Indian credit cards by cascading
# through three evidence sources (structured catalog records, MITC policy
# documents, an LLM) and accepting the first answer whose calibrated
# confidence clears the threshold.
#
# Package structure:
#   cardwise/
#   ├── agents/       → Query analysis, tier strategies, LangGraph cascade,
#   │                    session orchestration
#   ├── models/       → Records, metadata variants, responses, conversation
#   ├── services/     → Vector index, scoring, embedding, chunking, and the
#   │                    catalog / document / LLM collaborator adapters
#   ├── config.py     → Pydantic Settings (immutable)
#   └── exceptions.py → Error taxonomy
# =============================================================================

__version__ = "0.1.0"
