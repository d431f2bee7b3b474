"""Message relay pipeline.

Carries one game event from arrival to in-world output:
  1. EventNormalizer  — raw event → Message; spots new "[AI] Name" identities.
  2. EligibilityGate  — per character: enabled, self-origin, AI/player
     filters, mention, proximity, probability roll. First denial wins.
  3. ConversationQueue — per-character priority mailbox, one run at a time,
     self-draining while entries remain.
  4. Prompt assembly and model call (craftbot.prompts, craftbot.llm).
  5. parse()          — tag grammar first, legacy forms as fallback.
  6. CommandAuthorizer — permission flag, registry, allow/deny lists, level.
  7. Executor         — runs authorized commands, emits speech as chunks
     and bubbles.
  8. FeedbackEmitter  — emitted speech re-enters step 2 as an AI message,
     never offered back to its origin, bounded by a hop ceiling.

The Orchestrator (craftbot.pipeline.orchestrator) wires these together and
owns all per-character state.
"""

from .authorizer import (  # noqa: F401
    AuthReason,
    Authorization,
    CommandAuthorizer,
    CommandRegistry,
    CommandSpec,
)
from .executor import (  # noqa: F401
    CommandOutcome,
    Executor,
    FeedbackEmitter,
    SpeechChunk,
    chunk_speech,
)
from .gate import Decision, DenialReason, EligibilityGate  # noqa: F401
from .history import ConversationHistory  # noqa: F401
from .normalizer import EventNormalizer  # noqa: F401
from .parser import parse, render  # noqa: F401
from .queue import ConversationQueue, QueueEntry, message_priority  # noqa: F401
