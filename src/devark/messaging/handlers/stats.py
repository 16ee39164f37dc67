"""Trends and comparisons over prompt history."""

from datetime import date, timedelta

from ...core import utcnow
from ..protocol import MessageType as T
from .base import BaseHandler, require

TREND_DAYS = 7


class StatsHandler(BaseHandler):
    def routes(self):
        return {
            T.V2_ANALYZE_PROMPT_V2: self.analyze,
            T.V2_GET_WEEKLY_TREND: self.weekly_trend,
            T.V2_GET_STREAK: self.streak,
            T.V2_GET_PERSONAL_COMPARISON: self.personal_comparison,
        }

    async def analyze(self, data: dict) -> None:
        scoring = self.services.scoring
        analyzed = await scoring.run_tracked(scoring.analyze(require(data, "prompt"), source="manual"))
        if analyzed is not None:
            self.send(T.V2_ANALYSIS_RESULT, analyzed.to_dict())

    def weekly_trend(self, data: dict) -> None:
        by_day = self._scores_by_day()
        today = _local_today()
        days = []
        for offset in range(TREND_DAYS - 1, -1, -1):
            day = today - timedelta(days=offset)
            scores = by_day.get(day, [])
            days.append({
                "date": day.isoformat(),
                "count": len(scores),
                "avgScore": _average(scores),
            })
        self.send(T.V2_WEEKLY_TREND, {"days": days})

    def streak(self, data: dict) -> None:
        active = set(self._scores_by_day())
        today = _local_today()
        current = 0
        day = today if today in active else today - timedelta(days=1)
        while day in active:
            current += 1
            day -= timedelta(days=1)

        longest = run = 0
        previous = None
        for day in sorted(active):
            run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
            longest = max(longest, run)
            previous = day
        self.send(T.V2_STREAK, {"current": current, "longest": longest})

    def personal_comparison(self, data: dict) -> None:
        by_day = self._scores_by_day()
        today_scores = by_day.get(_local_today(), [])
        all_scores = [s for scores in by_day.values() for s in scores]
        today_avg = _average(today_scores)
        overall = _average(all_scores)
        self.send(T.V2_PERSONAL_COMPARISON, {
            "todayAverage": today_avg,
            "overallAverage": overall,
            "delta": round(today_avg - overall, 1) if today_avg is not None and overall is not None else None,
        })

    def _scores_by_day(self) -> dict[date, list[float]]:
        by_day: dict[date, list[float]] = {}
        for prompt in self.services.history.get_all():
            by_day.setdefault(prompt.timestamp.astimezone().date(), []).append(prompt.score)
        return by_day


def _local_today() -> date:
    return utcnow().astimezone().date()


def _average(scores: list[float]) -> float | None:
    return round(sum(scores) / len(scores), 1) if scores else None
