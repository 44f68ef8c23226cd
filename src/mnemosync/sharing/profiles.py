"""Agent capability profiles and the sharing policy table.

Profiles are data: a ``SharingPolicyTable`` is loaded from JSON, and the
packaged ``default_profiles.json`` describes the seven standard agent roles.
"""

from __future__ import annotations

import json
from importlib import resources
from pathlib import Path
from typing import Literal

from pydantic import BaseModel
from pydantic import Field
from pydantic import model_validator

from mnemosync.errors import InvalidInputError
from mnemosync.models.enums import AccessLevel
from mnemosync.models.enums import MemoryType


class AgentProfile(BaseModel):
    """What an agent type consumes, contributes and may see."""

    agent_type: str = Field(min_length=1)
    needs: list[MemoryType] = Field(default_factory=list)
    provides: list[MemoryType] = Field(default_factory=list)
    default_access_level: AccessLevel = AccessLevel.metadata
    # Content keywords routing domain knowledge here under selective policy
    routing_keywords: list[str] = Field(default_factory=list)
    # Entity kinds referenced in memory context this agent wants to hear about
    watched_entities: list[Literal["contract", "vendor"]] = Field(
        default_factory=list
    )
    watched_types: list[MemoryType] = Field(default_factory=list)

    def needs_type(self, memory_type: MemoryType) -> bool:
        return memory_type in self.needs


class SharingPolicyTable(BaseModel):
    supervisor_agent: str
    profiles: list[AgentProfile]

    @model_validator(mode="after")
    def _check_agents(self) -> SharingPolicyTable:
        names = [p.agent_type for p in self.profiles]
        if len(names) != len(set(names)):
            raise ValueError("agent types must be unique")
        if self.supervisor_agent not in names:
            raise ValueError(f"supervisor {self.supervisor_agent!r} has no profile")
        return self

    @property
    def agent_types(self) -> list[str]:
        return [p.agent_type for p in self.profiles]

    def get(self, agent_type: str) -> AgentProfile | None:
        for profile in self.profiles:
            if profile.agent_type == agent_type:
                return profile
        return None

    def require(self, agent_type: str) -> AgentProfile:
        profile = self.get(agent_type)
        if profile is None:
            raise InvalidInputError(f"unknown agent type {agent_type!r}")
        return profile


def load_policy_table(path: str | Path) -> SharingPolicyTable:
    """Load a policy table from a JSON file."""
    raw = Path(path).read_text(encoding="utf-8")
    return SharingPolicyTable.model_validate(json.loads(raw))


def default_policy_table() -> SharingPolicyTable:
    raw = (
        resources.files("mnemosync.sharing")
        .joinpath("default_profiles.json")
        .read_text(encoding="utf-8")
    )
    return SharingPolicyTable.model_validate(json.loads(raw))
