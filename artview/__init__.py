"""Internal modules that back the ArtView Gradio application."""

from . import config as _config
from .ledger import DialogLedger, visible_messages
from .model_engine import ChatTransport, TransportError
from .models import Candidate, ImageFile, Message, ObjectCard, Phase, SavedView
from .orchestrator import CandidateOutcome, PhaseBusyError, PhaseOrchestrator, PreconditionError, SessionState
from .refusal import is_refusal, send_with_refusal_retry
from .response_utils import normalize_assistant_text, parse_candidates
from .ui_utils import safe_component

reload_from_environment = _config.reload_from_environment

__all__ = [
    "Candidate",
    "CandidateOutcome",
    "ChatTransport",
    "DialogLedger",
    "ImageFile",
    "Message",
    "ObjectCard",
    "Phase",
    "PhaseBusyError",
    "PhaseOrchestrator",
    "PreconditionError",
    "SavedView",
    "SessionState",
    "TransportError",
    "is_refusal",
    "normalize_assistant_text",
    "parse_candidates",
    "safe_component",
    "send_with_refusal_retry",
    "visible_messages",
    "reload_from_environment",
]


def __getattr__(name: str):
    if hasattr(_config, name):
        return getattr(_config, name)
    raise AttributeError(name)
