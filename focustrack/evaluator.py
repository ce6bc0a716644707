"""Goal relevance, consistency and summary prompts.

Builds deterministic prompts from sessions and their aggregated breakdowns,
sends them through an injected ``TextGenerator`` and interprets the reply.

Verdicts are strict: after trimming and lowercasing the reply must be exactly
``true`` or ``false``; anything else (including a failed call) is ``None``,
meaning "unknown", never an error. Summaries fall back to
``SUMMARY_FALLBACK`` when the call fails.

Example prompt for a summary:
    Focus session duration: 25m.
    Apps used with total time:
    - Code: 15m (60%)
    - Firefox: 10m (40%)
    Primary topics/pages encountered:
    - daemon.py - focustrack: 15m (60%)
    ...
"""

import logging
from datetime import datetime
from typing import Optional, Sequence

from .aggregator import (
    app_totals,
    context_segments,
    format_duration,
    interval_seconds,
    topic_aggregates,
)
from .llm import TextGenerator, user_prompt
from .models import ActivitySession, FocusSessionRecord, now_local
from .reasoning import ReasoningLevel

logger = logging.getLogger(__name__)

SUMMARY_FALLBACK = "Summary unavailable."

# Apps listed in the summary prompt
SUMMARY_APP_LIMIT = 5
# Contexts listed per session description
SESSION_CONTEXT_LIMIT = 5


def parse_verdict(text: Optional[str]) -> Optional[bool]:
    """Map an exact ``true``/``false`` reply to a bool, anything else to None."""
    if text is None:
        return None
    token = text.strip().lower()
    if token == "true":
        return True
    if token == "false":
        return False
    return None


class FocusEvaluator:
    """Asks the text generator about sessions and focus blocks.

    Attributes:
        generator: Text-generation collaborator
        reasoning: Prompt depth preset
    """

    def __init__(
        self,
        generator: TextGenerator,
        reasoning: ReasoningLevel = ReasoningLevel.CONCISE,
    ):
        self.generator = generator
        self.reasoning = reasoning

    def describe_session(self, session: ActivitySession, as_of: Optional[datetime] = None) -> str:
        """Multi-line description of one session for prompts."""
        as_of = as_of or now_local()
        parts = [
            f"App: {session.app_name}",
            f"Duration: {format_duration(session.duration(as_of))}",
        ]
        if session.contexts:
            parts.append("Contexts:")
            for segment in context_segments(session, as_of)[:SESSION_CONTEXT_LIMIT]:
                parts.append(f"- {segment.description} for {format_duration(segment.seconds)}")
        return "\n".join(parts)

    def goal_prompt(self, goal: str, session: ActivitySession, as_of: Optional[datetime] = None) -> str:
        return self.reasoning.goal_prompt(goal, self.describe_session(session, as_of))

    def consistency_prompt(
        self,
        current: ActivitySession,
        history: Sequence[ActivitySession],
        as_of: Optional[datetime] = None,
    ) -> str:
        history_text = "\n\n".join(self.describe_session(s, as_of) for s in history)
        return self.reasoning.consistency_prompt(history_text, self.describe_session(current, as_of))

    def summary_prompt(self, record: FocusSessionRecord, as_of: Optional[datetime] = None) -> str:
        as_of = as_of or now_local()
        end = record.end_date or as_of
        total = interval_seconds(record.start_date, end)

        lines = [f"Focus session duration: {format_duration(total)}."]
        if record.goal:
            lines.append(f"Stated goal: {record.goal}")

        totals = app_totals(record.captured_sessions, record.start_date, end, as_of)
        if totals:
            lines.append("Apps used with total time:")
            for total_ in totals[:SUMMARY_APP_LIMIT]:
                lines.append(
                    f"- {total_.app_name}: {format_duration(total_.total_seconds)} "
                    f"({int(total_.share * 100)}%)"
                )

        topics = topic_aggregates(record.captured_sessions, record.start_date, end, as_of=as_of)
        if topics:
            lines.append("Primary topics/pages encountered:")
            for topic in topics:
                lines.append(
                    f"- {topic.description}: {format_duration(topic.total_seconds)} "
                    f"({int(topic.share * 100)}%)"
                )
        else:
            lines.append("No detailed context captured; infer from app usage only.")

        lines.append(self.reasoning.summary_instruction)
        return "\n".join(lines)

    def evaluate_goal(self, goal: str, session: ActivitySession) -> Optional[bool]:
        """Does the session's context support ``goal``? None when unknown."""
        reply = self.generator.complete(user_prompt(self.goal_prompt(goal, session)))
        verdict = parse_verdict(reply)
        if verdict is None:
            logger.debug(f"Indeterminate goal verdict for session {session.id[:8]}: {reply!r}")
        return verdict

    def evaluate_consistency(
        self, current: ActivitySession, history: Sequence[ActivitySession]
    ) -> Optional[bool]:
        """Is ``current`` on the same topics as most of ``history``? None when unknown."""
        if not history:
            return None
        reply = self.generator.complete(user_prompt(self.consistency_prompt(current, history)))
        verdict = parse_verdict(reply)
        if verdict is None:
            logger.debug(f"Indeterminate consistency verdict for session {current.id[:8]}: {reply!r}")
        return verdict

    def summarize(self, record: FocusSessionRecord) -> str:
        """Free-text summary of a focus block, or SUMMARY_FALLBACK."""
        reply = self.generator.complete(user_prompt(self.summary_prompt(record)))
        if not reply:
            logger.warning("Focus block summary unavailable")
            return SUMMARY_FALLBACK
        return reply
