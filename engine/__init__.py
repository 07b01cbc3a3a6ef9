"""Story engine - context, state machine, story graph and session host."""

from .config import StorySettings, load_config, story_settings
from .context import Challenge, LogEntry, Notification, StoryContext
from .events import Event, EventType
from .machine import Machine, MachineDefinitionError, MachineError, ReentrantDispatchError, Snapshot, Step
from .projection import ACTIONS, ActionSpec, View, project, to_event
from .session import Session, UnknownTaskError, build_session
from .story import Branch, State, build_story
from .tasks import NotifyTask, TaskRunner, TimeSyncTask, relay_adapters
from .timers import LoopScheduler, ManualScheduler

__all__ = [
    "ACTIONS",
    "ActionSpec",
    "Branch",
    "Challenge",
    "Event",
    "EventType",
    "LogEntry",
    "LoopScheduler",
    "Machine",
    "MachineDefinitionError",
    "MachineError",
    "ManualScheduler",
    "Notification",
    "NotifyTask",
    "ReentrantDispatchError",
    "Session",
    "Snapshot",
    "State",
    "Step",
    "StoryContext",
    "StorySettings",
    "TaskRunner",
    "TimeSyncTask",
    "UnknownTaskError",
    "View",
    "build_session",
    "build_story",
    "load_config",
    "project",
    "relay_adapters",
    "story_settings",
    "to_event",
]
