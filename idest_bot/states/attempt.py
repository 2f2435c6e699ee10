"""FSM states for taking an assignment."""
from aiogram.fsm.state import State, StatesGroup


class AttemptStates(StatesGroup):
    """An attempt is open: text and voice messages are answers."""

    answering = State()
