import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add root to sys.path
root = Path(__file__).parent.parent
sys.path.insert(0, str(root))

from cogs.stream_notifications.change_detector import ChangeDetector
from cogs.stream_notifications.models import STATE_OFFLINE, STATE_ONLINE, STATE_UPDATED, TwitchPayload


class _Clock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def _payload(**changes):
    base = TwitchPayload(
        session_id="s1",
        title="Ranked grind",
        category_id="509658",
        broadcaster_name="Streamer",
        avatar_url="https://img/avatar.png",
        login="streamer",
    )
    return base.with_changes(**changes)


def test_sequence_a_a_b_none():
    detector = ChangeDetector()
    a = _payload()
    b = _payload(title="Ranked grind, part 2")

    seen = [detector.observe("42", p) for p in (a, a, b, None)]
    states = [tr.state for tr in seen if tr is not None]

    assert states == [STATE_ONLINE, STATE_UPDATED, STATE_OFFLINE]
    assert seen[1] is None
    assert seen[2].payload.title == "Ranked grind, part 2"
    assert seen[2].previous_session_id == "s1"
    # offline trägt den zuletzt gecachten Payload
    assert seen[3].payload.title == "Ranked grind, part 2"
    assert "42" not in detector


def test_offline_without_cache_is_silent():
    detector = ChangeDetector()
    assert detector.observe("42", None) is None
    assert len(detector) == 0


def test_new_session_id_alone_is_update():
    detector = ChangeDetector()
    detector.observe("42", _payload())
    tr = detector.observe("42", _payload(session_id="s2"))
    assert tr is not None
    assert tr.state == STATE_UPDATED
    assert tr.previous_session_id == "s1"


def test_none_category_differs_from_named_category():
    detector = ChangeDetector()
    detector.observe("42", _payload(category_id=None))
    tr = detector.observe("42", _payload(category_id="509658"))
    assert tr is not None and tr.state == STATE_UPDATED


def test_comparison_is_case_sensitive():
    detector = ChangeDetector()
    detector.observe("42", _payload(title="hello"))
    tr = detector.observe("42", _payload(title="Hello"))
    assert tr is not None and tr.state == STATE_UPDATED


def test_viewer_count_is_not_compared():
    detector = ChangeDetector()
    detector.observe("42", _payload(viewer_count=10))
    assert detector.observe("42", _payload(viewer_count=999)) is None


def test_rerun_switch_is_update():
    detector = ChangeDetector()
    detector.observe("42", _payload())
    tr = detector.observe("42", _payload(stream_type="vodcast"))
    assert tr is not None and tr.state == STATE_UPDATED


def test_unchanged_payload_refreshes_fetched_at():
    clock = _Clock()
    detector = ChangeDetector(clock)
    detector.observe("42", _payload())
    first = detector.fetched_at("42")
    clock.advance(60)
    assert detector.observe("42", _payload()) is None
    assert detector.fetched_at("42") == first + timedelta(seconds=60)


def test_forget_drops_cache():
    detector = ChangeDetector()
    detector.observe("42", _payload())
    detector.forget("42")
    assert detector.cached("42") is None
    # nach forget ist ein erneuter Payload wieder "online"
    tr = detector.observe("42", _payload())
    assert tr is not None and tr.state == STATE_ONLINE
