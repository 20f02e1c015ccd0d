"""Exceptions shared across the simulator."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from echosim.workflow.state import ChatMessage, EncounterState


class CollaboratorError(RuntimeError):
    """The AI collaborator was unreachable or replied with something unusable."""


class EncounterError(RuntimeError):
    """
    An action could not be completed. The encounter state and history are
    exactly what the caller sent, so the session can carry on from there.
    """

    def __init__(self, message: str, encounter: EncounterState, history: list[ChatMessage]):
        super().__init__(message)
        self.encounter = encounter
        self.history = history
