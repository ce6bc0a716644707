"""Reasoning depth presets for text-generation prompts.

Each level changes how much the summary asks for. Goal and consistency
checks always require a bare ``true``/``false`` reply; only ``concise`` uses
its own shorter wording for them.
"""

from enum import Enum
from typing import Optional


class ReasoningLevel(str, Enum):
    CONCISE = "concise"
    BALANCED = "balanced"
    DEEP = "deep"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ReasoningLevel":
        """Level from a config string; unknown values fall back to concise."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.CONCISE

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def description(self) -> str:
        return {
            ReasoningLevel.CONCISE: "Fast, minimal reasoning",
            ReasoningLevel.BALANCED: "Default reasoning depth",
            ReasoningLevel.DEEP: "Detailed, step-by-step reasoning",
        }[self]

    @property
    def estimated_energy_kwh(self) -> float:
        """Rough energy cost of one request at this depth."""
        return {
            ReasoningLevel.CONCISE: 0.005,
            ReasoningLevel.BALANCED: 0.01,
            ReasoningLevel.DEEP: 0.02,
        }[self]

    @property
    def estimated_co2_kg(self) -> float:
        return {
            ReasoningLevel.CONCISE: 0.002,
            ReasoningLevel.BALANCED: 0.004,
            ReasoningLevel.DEEP: 0.008,
        }[self]

    @property
    def summary_instruction(self) -> str:
        if self is ReasoningLevel.BALANCED:
            return (
                "Analyze the app-usage data and describe the main patterns of this session. "
                "Briefly explain what the user was doing, including major app transitions and "
                "likely intent. Then identify the three core topics that best summarize the "
                "session. Limit your response to 3 sentences and end with: "
                "Core Topics: topic1, topic2, topic3"
            )
        if self is ReasoningLevel.DEEP:
            return (
                "Analyze the session's app-usage timeline and infer the deeper goals behind the "
                "user's actions. Describe how different apps relate to each other and what "
                "overall workflow or thought process they suggest. Highlight any high-level "
                "behaviors or motivations you detect. Limit your response to 5 sentences and "
                "end with: Core Topics: topic1, topic2, topic3, topic4"
            )
        return (
            "Analyze the app usage and topics, and return the 2 core topics most relevant to "
            "this session, separated by a comma, with no extra words."
        )

    def goal_prompt(self, goal: str, session_description: str) -> str:
        if self is ReasoningLevel.CONCISE:
            return (
                f"Goal: {goal}\n"
                f"Session: {session_description}\n"
                "Does this session directly help with the goal? Respond true or false."
            )
        return (
            f"Goal: {goal}\n"
            f"Session: {session_description}\n"
            "Does the context of this session directly support the goal above? Do not consider "
            "the app itself, reason mainly on the context. Respond only with true or false."
        )

    def consistency_prompt(self, history: str, current: str) -> str:
        if self is ReasoningLevel.CONCISE:
            return (
                "Past session context:\n"
                f"{history}\n\n"
                "Current session:\n"
                f"{current}\n\n"
                "Reply true if consistent, false otherwise."
            )
        return (
            "Past session context (use the 80% majority for comparison):\n"
            f"{history}\n\n"
            "Current session:\n"
            f"{current}\n\n"
            "Reply with true if the current session matches the main topics above, "
            "otherwise false."
        )
