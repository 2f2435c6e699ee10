"""Тесты таймера обратного отсчёта и навигатора по разделам."""
import asyncio

import pytest

from idest_bot.idest_api.models import Assignment, QuestionGroup, Section, Skill
from idest_bot.workflow.answers import AnswerStore
from idest_bot.workflow.navigator import SectionNavigator
from idest_bot.workflow.timer import CountdownTimer


async def _drain():
    """Дать запланированным задачам выполниться."""
    for _ in range(5):
        await asyncio.sleep(0)


# ============================================================================
# ТАЙМЕР
# ============================================================================


class TestCountdownTimer:
    """Монотонный отсчёт и однократное событие expired."""

    def test_tick_never_goes_below_zero(self):
        timer = CountdownTimer(2)
        assert [timer.tick() for _ in range(4)] == [1, 0, 0, 0]
        assert timer.expired

    def test_expired_fires_once(self):
        calls = []
        timer = CountdownTimer(3)
        timer.subscribe(lambda: calls.append("expired"))

        for _ in range(10):
            timer.tick()

        assert calls == ["expired"]

    async def test_async_subscriber_runs_as_task(self):
        """Асинхронный подписчик запускается отдельной задачей."""
        calls = []

        async def on_expired():
            calls.append(timer.remaining)

        timer = CountdownTimer(1)
        timer.subscribe(on_expired)
        timer.tick()
        assert calls == []

        await _drain()
        assert calls == [0]

    async def test_start_runs_until_expired(self):
        fired = asyncio.Event()
        timer = CountdownTimer(3, interval=0.001)
        timer.subscribe(fired.set)

        timer.start()
        await asyncio.wait_for(fired.wait(), timeout=2)

        assert timer.remaining == 0
        assert not timer.running

    async def test_cancel_stops_ticking(self):
        calls = []
        timer = CountdownTimer(1000, interval=0.001)
        timer.subscribe(lambda: calls.append(1))
        timer.start()
        await asyncio.sleep(0.01)

        timer.cancel()
        remaining = timer.remaining
        await asyncio.sleep(0.01)

        assert timer.remaining == remaining
        assert calls == []

    async def test_zero_duration_expires_on_start(self):
        calls = []
        timer = CountdownTimer(0)
        timer.subscribe(lambda: calls.append(1))
        timer.start()
        assert calls == [1]

    def test_negative_duration_rejected(self):
        with pytest.raises(ValueError):
            CountdownTimer(-1)

    def test_format_remaining(self):
        timer = CountdownTimer(15 * 60)
        assert timer.format_remaining() == "15:00"
        for _ in range(61):
            timer.tick()
        assert timer.format_remaining() == "13:59"


# ============================================================================
# НАВИГАТОР
# ============================================================================


class TestSectionNavigator:
    def test_initial_focus_is_first_question(self, reading_assignment):
        navigator = SectionNavigator(reading_assignment)
        assert navigator.active_index == 0
        assert navigator.current.question_id == "q1"
        assert [e.question_id for e in navigator.flat] == ["q1", "q2", "q3", "q4"]

    def test_jump_to_focuses_first_question_of_section(self, reading_assignment):
        navigator = SectionNavigator(reading_assignment)
        entry = navigator.jump_to(1)
        assert entry.question_id == "q3"
        assert entry.global_index == 2

    def test_jump_out_of_range(self, reading_assignment):
        with pytest.raises(IndexError):
            SectionNavigator(reading_assignment).jump_to(5)

    def test_advance_is_noop_on_last_section(self, reading_assignment):
        navigator = SectionNavigator(reading_assignment)
        assert navigator.has_next
        assert navigator.advance() is True
        assert not navigator.has_next
        assert navigator.advance() is False
        assert navigator.active_index == 1

    def test_focus_switches_section(self, reading_assignment):
        """Выбор вопроса из оглавления меняет активный раздел."""
        navigator = SectionNavigator(reading_assignment)
        entry = navigator.focus(3)
        assert entry.question_id == "q4"
        assert navigator.active_index == 1

    def test_focus_does_not_touch_answers(self, reading_assignment):
        navigator = SectionNavigator(reading_assignment)
        store = AnswerStore()
        navigator.focus(2)
        navigator.jump_to(0)
        assert len(store) == 0

    def test_focus_next_stays_in_section(self, reading_assignment):
        navigator = SectionNavigator(reading_assignment)
        assert navigator.focus_next().question_id == "q2"
        assert navigator.focus_next() is None
        assert navigator.current.question_id == "q2"

    def test_section_without_questions_has_no_focus(self):
        assignment = Assignment(
            id="a1",
            skill=Skill.READING,
            title="Only instructions",
            sections=[Section(id="s1", groups=[QuestionGroup(id="g1", questions=[])])],
        )
        navigator = SectionNavigator(assignment)
        assert navigator.current is None
        assert navigator.current_question is None

    def test_answered_count(self, reading_assignment):
        navigator = SectionNavigator(reading_assignment)
        store = AnswerStore({"q1": {"choice": "A"}, "q2": {"choice": ""}, "q4": {"text": "Thames"}})
        assert navigator.answered_count(store) == 2
