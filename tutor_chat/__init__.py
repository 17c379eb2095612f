"""Scenario-isolated chat sessions for AI tutor characters.

A scenario is one conversation context (character + screen/task position)
with its own isolated message history. The ChatSessionEngine switches
between scenarios, greets new ones, streams AI replies into the active one
and drops any async result that arrives after the user has moved on.

Modules:
  models       Scenario identity, the two message channels, pacing math
  narration    semantic splitting of long narration into bubbles
  store        in-memory per-scenario message log
  generation   staleness counter for in-flight async work
  events       history-changed notifications
  llm          AI responder protocol + httpx implementation
  greetings    greeting provider protocol + implementations
  persistence  optional JSON snapshot/restore
  engine       the coordinator
  config       settings from .env / environment
  app, routes  FastAPI host surface
"""

# Re-export the public surface so `from tutor_chat import ...` works.

from .config import ChatConfig, load_config  # noqa: F401
from .engine import ChatSessionEngine  # noqa: F401
from .errors import (  # noqa: F401
    ChatError,
    InvalidArgument,
    NoActiveScenario,
    UnknownScenario,
    WrongChannel,
)
from .events import HistoryChanged, Subscription  # noqa: F401
from .generation import GenerationGuard  # noqa: F401
from .greetings import (  # noqa: F401
    GreetingProvider,
    HttpGreetingProvider,
    StaticGreetingProvider,
)
from .llm import EchoResponder, HttpResponder, Responder, ResponderError  # noqa: F401
from .models import (  # noqa: F401
    BaseMessage,
    InteractionMessage,
    Message,
    NarrationMessage,
    Scenario,
    make_scenario,
    scenarios_equal,
)
from .narration import Segment, semantic_split, split_narration  # noqa: F401
from .persistence import JsonFilePersistence, Persistence  # noqa: F401
from .store import MessageStore  # noqa: F401
