# =============================================================================
# Agents Package — Tier Cascade and Session Orchestration
# =============================================================================
#   - query_analysis.py: domain gate, bank/category cues, preferences
#   - tiers.py: structured, document and generative tier strategies
#   - cascade.py: LangGraph state machine over the tiers, fallback response
#   - orchestrator.py: per-user history, initialisation, entry point
# =============================================================================
