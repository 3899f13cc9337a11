"""Terminal session automation engine."""

from .agent import TUIAgent
from .decoder import decode, parse_color_spans, strip_ansi
from .dispatcher import StepDispatcher, parse_step
from .input import InputRequest, InputSimulator
from .keys import KeyMapping
from .menu import MenuNavigator, parse_menu_items
from .quiescence import wait_for_pattern, wait_for_stabilization
from .supervisor import SessionSupervisor, generate_session_id

__all__ = [
    "decode",
    "generate_session_id",
    "InputRequest",
    "InputSimulator",
    "KeyMapping",
    "MenuNavigator",
    "parse_color_spans",
    "parse_menu_items",
    "parse_step",
    "SessionSupervisor",
    "StepDispatcher",
    "strip_ansi",
    "TUIAgent",
    "wait_for_pattern",
    "wait_for_stabilization",
]
