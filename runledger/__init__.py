"""This is the init module for runledger"""

from .achievements import AchievementEngine
from .anticheat import AntiCheatValidator
from .daily_goal import DailyGoalTracker
from .finish import FinishRequest, FinishResult, finish_session
from .geo import GeoSample, GeoSampleFilter
from .metrics import DistanceAccumulator
from .session import RunSession, RunSessionMachine, SessionRegistry, SessionState
from .streak import StreakEngine

__version__ = "0.1.0"
__all__ = [
    "AchievementEngine",
    "AntiCheatValidator",
    "DailyGoalTracker",
    "DistanceAccumulator",
    "FinishRequest",
    "FinishResult",
    "GeoSample",
    "GeoSampleFilter",
    "RunSession",
    "RunSessionMachine",
    "SessionRegistry",
    "SessionState",
    "StreakEngine",
    "finish_session",
]
