"""Session goal messages."""

from ...core import parse_iso
from ...prompt_utils import is_actual_user_prompt, is_slash_command_only, truncate
from ..protocol import MessageType as T
from .base import BaseHandler, require

INFERRED_GOAL_LENGTH = 120


class GoalsHandler(BaseHandler):
    def routes(self):
        return {
            T.V2_GET_GOAL_STATUS: self.get_status,
            T.V2_SET_GOAL: self.set_goal,
            T.EDIT_GOAL: self.edit_goal,
            T.V2_COMPLETE_GOAL: self.complete_goal,
            T.COMPLETE_GOAL: self.complete_goal,
            T.V2_CLEAR_GOAL: self.clear_goal,
            T.V2_INFER_GOAL: self.infer_goal,
            T.V2_MAYBE_LATER_GOAL: self.maybe_later,
            T.V2_DONT_ASK_GOAL: self.dont_ask,
            T.V2_ANALYZE_GOAL_PROGRESS: self.analyze_progress,
        }

    def get_status(self, data: dict) -> None:
        self.send(T.V2_GOAL_STATUS, self.services.goals.get_status())

    def set_goal(self, data: dict) -> None:
        self.send(T.V2_GOAL_SET, self.services.goals.set_goal(require(data, "goal")))

    def edit_goal(self, data: dict) -> None:
        if data.get("goal"):
            self.set_goal(data)
        else:
            self.send(T.OPEN_GOAL_EDITOR, {"current": self.services.goals.get_status()["goal"]})

    def complete_goal(self, data: dict) -> None:
        self.send(T.V2_GOAL_COMPLETED, self.services.goals.complete_goal())

    def clear_goal(self, data: dict) -> None:
        self.send(T.V2_GOAL_CLEARED, self.services.goals.clear_goal())

    def infer_goal(self, data: dict) -> None:
        """Suggest a goal from the active session's opening prompt."""
        suggestion = None
        session = self.services.aggregator.get_active_session()
        if session is not None and self.services.goals.should_suggest():
            for message in self.services.aggregator.get_messages(session.source, session.session_id):
                if (
                    message.role == "user"
                    and is_actual_user_prompt(message.content)
                    and not is_slash_command_only(message.content)
                ):
                    suggestion = truncate(" ".join(message.content.split()), INFERRED_GOAL_LENGTH)
                    break
        self.send(T.V2_GOAL_INFERENCE, {
            "suggestion": suggestion,
            "sessionId": session.session_id if session else None,
        })

    def maybe_later(self, data: dict) -> None:
        self.services.goals.snooze()
        self.send(T.V2_GOAL_INFERENCE_DISMISSED, {"reason": "later"})

    def dont_ask(self, data: dict) -> None:
        self.services.goals.dont_ask()
        self.send(T.V2_GOAL_INFERENCE_DISMISSED, {"reason": "never"})

    def analyze_progress(self, data: dict) -> None:
        status = self.services.goals.get_status()
        set_at = parse_iso(status.get("setAt"))
        scored = []
        if set_at is not None:
            scored = [p for p in self.services.history.get_all() if p.timestamp >= set_at]
        self.send(T.V2_GOAL_PROGRESS_ANALYSIS, {
            **status,
            "averageScore": round(sum(p.score for p in scored) / len(scored), 1) if scored else None,
        })
