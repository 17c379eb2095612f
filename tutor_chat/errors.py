"""Caller-contract errors raised by the chat session engine.

These signal misuse of the engine by the calling layer and always propagate.
Transient responder failures are not in this module: they are converted to
in-band error messages (see tutor_chat.llm.ResponderError).
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for all structural engine errors."""


class InvalidArgument(ChatError, ValueError):
    """Malformed scenario construction inputs."""


class NoActiveScenario(ChatError):
    """The operation needs a current (or initialized) scenario and there is none."""


class UnknownScenario(ChatError, LookupError):
    """The target scenario was never initialized, or has been terminated."""


class WrongChannel(ChatError, TypeError):
    """A message was routed through the accessor of the other channel."""
