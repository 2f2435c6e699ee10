"""FSM states for account linking."""
from aiogram.fsm.state import State, StatesGroup


class LinkStates(StatesGroup):
    """States of the /link dialog."""

    waiting_for_user_id = State()     # Idest user id
    waiting_for_token = State()       # Bearer access token
