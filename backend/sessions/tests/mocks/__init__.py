from sessions.tests.mocks.notify import RecordingBroadcaster, RecordingNotifier
from sessions.tests.mocks.rules import FakeRulesEngine
from sessions.tests.mocks.store import RacingStore

__all__ = ["FakeRulesEngine", "RacingStore", "RecordingBroadcaster", "RecordingNotifier"]
