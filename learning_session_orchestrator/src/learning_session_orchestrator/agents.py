"""
Agent Registry

The fixed set of agents the orchestrator knows about, with the edge function
each one is deployed as and the weekly_notes columns its results land in.
"""

from dataclasses import dataclass
from typing import Dict

from learning_session_orchestrator.errors import ConfigurationError


@dataclass(frozen=True)
class AgentSpec:
    """Static description of one agent backend."""
    name: str
    title: str
    endpoint: str  # Edge function name under /functions/v1/
    default_action: str
    output_column: str  # weekly_notes column holding the agent's last output
    completion_field: str  # Flag inside weekly_notes.completion_status


AGENTS: Dict[str, AgentSpec] = {
    "clo": AgentSpec(
        name="clo",
        title="CLO - Curriculum Architect",
        endpoint="clo-agent",
        default_action="generate_module",
        output_column="clo_briefing_note",
        completion_field="clo_completed",
    ),
    "instructor": AgentSpec(
        name="instructor",
        title="Instructor",
        endpoint="instructor-agent",
        default_action="deliver_lesson",
        output_column="instructor_lesson",
        completion_field="instructor_completed",
    ),
    "socratic": AgentSpec(
        name="socratic",
        title="Socratic Inquisitor",
        endpoint="socratic-agent",
        default_action="ask_question",
        output_column="socratic_conversation",
        completion_field="socratic_completed",
    ),
    "ta": AgentSpec(
        name="ta",
        title="Teaching Assistant",
        endpoint="ta-agent",
        default_action="assist_task",
        output_column="ta_session",
        completion_field="ta_completed",
    ),
    "alex": AgentSpec(
        name="alex",
        title="Alex - Lead Engineer",
        endpoint="alex-agent",
        default_action="analyze_code",
        output_column="lead_engineer_briefing_note",
        completion_field="alex_completed",
    ),
    "brand": AgentSpec(
        name="brand",
        title="Brand Strategist",
        endpoint="brand-agent",
        default_action="generate_strategy",
        output_column="brand_strategy_package",
        completion_field="brand_completed",
    ),
}

# Agents that back a practice track in the INSTRUCTION phase
PRACTICE_TRACKS = ("socratic", "ta")


def get_agent(name: str) -> AgentSpec:
    """Look up an agent, rejecting unknown identities as a configuration error."""
    try:
        return AGENTS[name]
    except KeyError:
        raise ConfigurationError(f"Unknown agent '{name}'") from None
