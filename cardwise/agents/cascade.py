# =============================================================================
# Cascade Controller — LangGraph State Machine over the Tiers
# =============================================================================
#
# Tries each tier in priority order and accepts the first candidate whose
# confidence clears the threshold. The last tier only needs a non-empty
# answer:
#
#   START ──▶ structured ──≥ threshold──▶ accept ──▶ END
#                 │ no
#                 ▼
#              document ──≥ threshold──▶ accept
#                 │ no
#                 ▼
#             generative ──non-empty──▶ accept
#                 │ no
#                 ▼
#              fallback ──▶ END
#
# DESIGN DECISION: The last tier is not threshold-gated.
# Its confidence is still computed and reported, but nothing comes after it
# except the fixed apology, so any answer it produces is preferred. With a
# very high threshold the cascade therefore falls back only when the last
# tier also has nothing to say.
#
# DESIGN DECISION: Explicit state machine (LangGraph StateGraph).
# Each tier is a node; a conditional edge after it applies the acceptance
# policy. The policy itself is a plain function (`accepts`) so it can be
# tested without any tiers, and the graph can be inspected or extended
# without touching tier code.
#
# DESIGN DECISION: Graph compiled per controller, not at module level.
# The node set depends on the tiers injected into this controller, and
# tests build controllers with stub tiers.
#
# DESIGN DECISION: Threshold read once per run.
# The run snapshots `scorer.threshold` into state, so an admin update in
# the middle of a query cannot make one tier see a different bar than the
# next. Raising the threshold can therefore only move acceptance later in
# the cascade or to fallback.
#
# DESIGN DECISION: No exception escapes `run()`.
# A tier's exception is logged and treated as "no candidate". Anything
# unexpected in the graph itself yields the fallback response. Task
# cancellation (BaseException) is not caught and propagates normally.
# =============================================================================

from __future__ import annotations

import logging
import operator
import random
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Annotated

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from cardwise.agents.tiers import TierStrategy
from cardwise.models.conversation import QueryContext
from cardwise.models.responses import CandidateAnswer, RAGResponse, TierName
from cardwise.services.scoring import RelevanceScorer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Fixed Responses
# ---------------------------------------------------------------------------

FOLLOWUP_QUESTIONS: tuple[str, ...] = (
    "Would you like to compare these cards in detail?",
    "Do you need information about the application process?",
    "Would you like to know about the eligibility criteria?",
    "Are you interested in specific benefits like lounge access or travel insurance?",
)
FOLLOWUPS_PER_ANSWER = 2

FALLBACK_CONFIDENCE = 0.3
FALLBACK_FOLLOWUPS: tuple[str, ...] = (
    "Would you like to know about general credit card features?",
    "Do you need help understanding credit card terminology?",
)


def fallback_answer(query: str) -> str:
    return (
        "I apologize, but I'm having trouble finding specific information for "
        f'your query: "{query}".\n\n'
        "Here are some general suggestions:\n"
        "- Check the bank's official website for the most current information\n"
        "- Contact the bank's customer service for detailed terms and conditions\n"
        "- Consider visiting a bank branch for personalized advice\n\n"
        "You can also try rephrasing your question or ask about a specific "
        "credit card feature."
    )


# ---------------------------------------------------------------------------
# Acceptance Policy
# ---------------------------------------------------------------------------


def accepts(candidate: CandidateAnswer | None, threshold: float) -> bool:
    """A candidate is accepted iff it has text and confidence >= threshold."""
    return (
        candidate is not None
        and bool(candidate.text.strip())
        and candidate.confidence >= threshold
    )


def accepts_last(candidate: CandidateAnswer | None) -> bool:
    """The final tier's policy: any candidate with text is accepted."""
    return candidate is not None and bool(candidate.text.strip())


# ---------------------------------------------------------------------------
# Cascade State Schema
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TierAttempt:
    """Trace entry for one tier in one run."""

    tier: TierName
    outcome: str  # "accepted", "rejected", "no_candidate" or "error"
    confidence: float | None = None


class CascadeState(TypedDict, total=False):
    """
    State flowing through the cascade graph.

    NOTE: Holds non-serialisable objects (QueryContext, CandidateAnswer).
    Safe because no checkpointer is configured.
    """

    # --- Input ---
    query: str
    context: QueryContext
    threshold: float

    # --- Set by tier nodes ---
    accepted: CandidateAnswer | None
    attempts: Annotated[list[TierAttempt], operator.add]

    # --- Output ---
    response: RAGResponse


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class CascadeController:
    """
    Runs tiers in order and formats the winning answer.

    Args:
        tiers: Tier strategies in priority order (most authoritative first).
        scorer: Source of the acceptance threshold.
        rng: Random source for follow-up selection; seed it for
            reproducible responses.
    """

    def __init__(
        self,
        tiers: Sequence[TierStrategy],
        scorer: RelevanceScorer,
        rng: random.Random | None = None,
    ) -> None:
        if not tiers:
            raise ValueError("CascadeController needs at least one tier")
        names = [tier.name.value for tier in tiers]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate tier names: {names}")

        self._tiers = list(tiers)
        self._scorer = scorer
        self._rng = rng or random.Random()
        self._graph = self._build_graph()

        self._runs = 0
        self._fallbacks = 0
        self._accepted: dict[str, int] = {name: 0 for name in names}

    @property
    def tier_names(self) -> list[TierName]:
        return [tier.name for tier in self._tiers]

    async def run(
        self,
        query: str,
        context: QueryContext | None = None,
    ) -> RAGResponse:
        """Run the cascade. Always returns a response; never raises Exception."""
        self._runs += 1
        initial_state: CascadeState = {
            "query": query,
            "context": context or QueryContext(),
            "threshold": self._scorer.threshold,
            "accepted": None,
            "attempts": [],
        }

        try:
            final_state = await self._graph.ainvoke(initial_state)
            response = final_state["response"]
        except Exception:
            logger.exception("Cascade failed unexpectedly; returning fallback")
            self._fallbacks += 1
            return self.fallback_response(query)

        trace = ", ".join(
            f"{a.tier.value}={a.outcome}" for a in final_state.get("attempts", [])
        )
        logger.info(
            "Cascade finished: tier=%s confidence=%.2f [%s]",
            response.tier.value, response.confidence, trace,
        )
        return response

    def fallback_response(self, query: str) -> RAGResponse:
        return RAGResponse(
            answer=fallback_answer(query),
            tier=TierName.FALLBACK,
            confidence=FALLBACK_CONFIDENCE,
            followup_questions=list(FALLBACK_FOLLOWUPS),
        )

    def stats(self) -> dict:
        return {
            "tiers": [name.value for name in self.tier_names],
            "threshold": self._scorer.threshold,
            "runs": self._runs,
            "accepted_by_tier": dict(self._accepted),
            "fallbacks": self._fallbacks,
        }

    # -----------------------------------------------------------------------
    # Graph Assembly
    # -----------------------------------------------------------------------

    def _build_graph(self):
        builder = StateGraph(CascadeState)
        builder.add_node("accept", self._accept_node)
        builder.add_node("fallback", self._fallback_node)

        node_names = [tier.name.value for tier in self._tiers]
        last = len(self._tiers) - 1
        for i, (tier, node_name) in enumerate(zip(self._tiers, node_names)):
            builder.add_node(node_name, self._make_tier_node(tier, is_last=i == last))

        builder.add_edge(START, node_names[0])
        for i, node_name in enumerate(node_names):
            next_node = node_names[i + 1] if i + 1 < len(node_names) else "fallback"
            builder.add_conditional_edges(
                node_name,
                _route_after_tier,
                {"accept": "accept", "next": next_node},
            )
        builder.add_edge("accept", END)
        builder.add_edge("fallback", END)

        return builder.compile()

    def _make_tier_node(self, tier: TierStrategy, is_last: bool = False):
        def policy(candidate: CandidateAnswer, threshold: float) -> bool:
            if is_last:
                return accepts_last(candidate)
            return accepts(candidate, threshold)

        async def tier_node(state: CascadeState) -> dict:
            try:
                candidate = await tier.attempt(state["query"], state["context"])
            except Exception as e:
                logger.warning(
                    "Tier '%s' failed, treating as no candidate: %s",
                    tier.name.value, e,
                )
                return {"attempts": [TierAttempt(tier.name, "error")]}

            if candidate is None:
                return {"attempts": [TierAttempt(tier.name, "no_candidate")]}

            if policy(candidate, state["threshold"]):
                return {
                    "accepted": candidate,
                    "attempts": [TierAttempt(tier.name, "accepted", candidate.confidence)],
                }

            if is_last:
                logger.info("Tier '%s' rejected: empty answer", tier.name.value)
            else:
                logger.info(
                    "Tier '%s' rejected: confidence %.2f < threshold %.2f",
                    tier.name.value, candidate.confidence, state["threshold"],
                )
            return {"attempts": [TierAttempt(tier.name, "rejected", candidate.confidence)]}

        tier_node.__name__ = f"{tier.name.value}_node"
        return tier_node

    async def _accept_node(self, state: CascadeState) -> dict:
        candidate = state["accepted"]
        tier = candidate.tier.value
        self._accepted[tier] = self._accepted.get(tier, 0) + 1
        followups = self._rng.sample(FOLLOWUP_QUESTIONS, FOLLOWUPS_PER_ANSWER)
        return {
            "response": RAGResponse(
                answer=candidate.text,
                tier=candidate.tier,
                confidence=candidate.confidence,
                evidence=list(candidate.evidence),
                products_recommended=list(candidate.products),
                followup_questions=followups,
            )
        }

    async def _fallback_node(self, state: CascadeState) -> dict:
        self._fallbacks += 1
        logger.info("All tiers exhausted; returning fallback response")
        return {"response": self.fallback_response(state["query"])}


def _route_after_tier(state: CascadeState) -> str:
    return "accept" if state.get("accepted") is not None else "next"
