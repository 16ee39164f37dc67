"""Message handlers, one per feature area."""

from .base import BaseHandler, Sender
from .cloud import CloudHandler
from .coaching import CoachingHandler
from .config import ConfigHandler
from .goals import GoalsHandler
from .hooks import HooksHandler
from .prompt_analysis import PromptAnalysisHandler
from .prompt_lab import PromptLabHandler
from .provider import ProviderHandler
from .session import SessionHandler
from .stats import StatsHandler

HANDLER_CLASSES: tuple[type[BaseHandler], ...] = (
    ProviderHandler,
    PromptAnalysisHandler,
    PromptLabHandler,
    SessionHandler,
    GoalsHandler,
    CloudHandler,
    HooksHandler,
    ConfigHandler,
    CoachingHandler,
    StatsHandler,
)


def build_handlers(services, send: Sender) -> list[BaseHandler]:
    return [cls(services, send) for cls in HANDLER_CLASSES]


__all__ = ["BaseHandler", "HANDLER_CLASSES", "build_handlers"]
