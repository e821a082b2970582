# =============================================================================
# Services Package — Index, Scoring and Collaborator Adapters
# =============================================================================
#   - vectorstore.py: in-memory brute-force cosine index (two collections)
#   - scoring.py: relevance / completeness / confidence, adaptive weights
#   - embedder.py: OpenAI embeddings with deterministic hash fallback
#   - chunker.py: sentence-boundary character-budget chunking
#   - parser.py: PDF text extraction with Docling
#   - documents.py: MITC document library (<root>/<Card>/*.pdf) + samples
#   - catalog.py: product catalog API client + sample products
#   - llm.py: multi-provider chat completion (Anthropic, OpenAI-compatible)
# =============================================================================
