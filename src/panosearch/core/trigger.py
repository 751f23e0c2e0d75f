"""
Element activation with bounded retries.

Selecting an overlay result has to click the live scene element, which the
player may not have created yet.  :class:`ActionTrigger` looks the element
up by id and activates it, retrying with capped exponential backoff.  Each
activation is a :class:`TriggerRun`, an explicit state machine driven by an
injected scheduler::

    IDLE -> SEARCHING(n) -> TRIGGERED
                         -> NOT_FOUND(n) | TRIGGER_FAILED(n) -> SEARCHING(n+1)
                         -> GAVE_UP

A run cannot be cancelled from outside; callers that lose interest ignore
the callback.  The callback fires exactly once.
"""

import dataclasses
import enum
import logging
from typing import Any, Callable, List, Mapping, Optional

from panosearch.core.config import TriggerSettings, to_snake
from panosearch.core.scene import read_attr
from panosearch.core.scheduler import Scheduler
from panosearch.exceptions import ElementLookupError, ElementTriggerError

logger = logging.getLogger(__name__)

BACKOFF_FACTOR = 1.5


class TriggerState(str, enum.Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    TRIGGERED = "triggered"
    TRIGGER_FAILED = "trigger_failed"
    NOT_FOUND = "not_found"
    GAVE_UP = "gave_up"


TERMINAL_STATES = frozenset({TriggerState.TRIGGERED, TriggerState.GAVE_UP})


def backoff(settings: TriggerSettings, attempt: int) -> float:
    """Delay before retry *attempt*: ``min(base * 1.5 ** attempt, max)``."""
    return min(settings.base_retry_interval * BACKOFF_FACTOR ** attempt,
               settings.max_retry_interval)


def backoff_schedule(settings: TriggerSettings) -> List[float]:
    """
    The initial delay followed by the backoff for attempts 1..max_retries.

    The last entry is the interval that would follow the final failed
    attempt, so a run that never succeeds schedules all but the last.
    """
    return [settings.initial_delay] + [
        backoff(settings, k) for k in range(1, settings.max_retries + 1)
    ]


def merge_settings(settings: TriggerSettings,
                   options: Optional[Mapping[str, Any]] = None) -> TriggerSettings:
    """Per-call overrides (snake or camelCase) applied onto *settings*."""
    if not options:
        return settings
    known = {f.name for f in dataclasses.fields(TriggerSettings)}
    overrides = {}
    for key, value in options.items():
        name = to_snake(str(key))
        if name in known and value is not None:
            overrides[name] = value
    return dataclasses.replace(settings, **overrides)


# =============================================================================
# Lookup & activation strategies
# =============================================================================

def _call(obj: Any, method: str, *args: Any) -> Any:
    fn = getattr(obj, method, None)
    if not callable(fn):
        return None
    return fn(*args)


def _lookup_by_id(tour: Any, player: Any, element_id: str) -> Any:
    return _call(player, "getById", element_id)


def _lookup_by_get(tour: Any, player: Any, element_id: str) -> Any:
    return _call(tour, "get", element_id) or _call(player, "get", element_id)


def _lookup_by_id_scan(tour: Any, player: Any, element_id: str) -> Any:
    ids = _call(player, "getAllIDs")
    if ids and element_id in ids:
        return _call(player, "getById", element_id)
    return None


LOOKUP_STRATEGIES = (_lookup_by_id, _lookup_by_get, _lookup_by_id_scan)

ACTIVATION_METHODS = (
    ("trigger", ("click",)),
    ("click", ()),
    ("onClick", ()),
)


def find_element(tour: Any, element_id: str) -> Any:
    """Locate a live element; raises :class:`ElementLookupError` when no strategy finds it."""
    player = read_attr(tour, "player")
    for strategy in LOOKUP_STRATEGIES:
        try:
            element = strategy(tour, player, element_id)
        except Exception as e:
            logger.debug(f"{strategy.__name__} failed for {element_id!r}: {e}")
            continue
        if element:
            return element
    raise ElementLookupError(f"Element {element_id!r} not found")


def activate(element: Any) -> str:
    """Invoke the first activation method that exists and does not raise."""
    for name, args in ACTIVATION_METHODS:
        fn = getattr(element, name, None)
        if not callable(fn):
            continue
        try:
            fn(*args)
        except Exception as e:
            logger.debug(f"Error with {name} method: {e}")
            continue
        return name
    raise ElementTriggerError("All trigger methods failed")


# =============================================================================
# State machine
# =============================================================================

class TriggerRun:
    """One activation attempt sequence for a single element id."""

    def __init__(self, tour: Any, element_id: str, settings: TriggerSettings,
                 scheduler: Scheduler, callback: Optional[Callable[[bool], Any]] = None):
        self.tour = tour
        self.element_id = element_id
        self.settings = settings
        self.scheduler = scheduler
        self.callback = callback
        self.state = TriggerState.IDLE
        self.attempt = 0
        self.delays: List[float] = []
        self.transitions: List[TriggerState] = [TriggerState.IDLE]
        self.method: Optional[str] = None
        self.result: Optional[bool] = None

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def start(self) -> "TriggerRun":
        self._schedule(self.settings.initial_delay)
        return self

    def _schedule(self, delay: float) -> None:
        self.delays.append(delay)
        self.scheduler.call_later(delay, self._attempt)

    def _move(self, state: TriggerState) -> None:
        self.state = state
        self.transitions.append(state)

    def _attempt(self) -> None:
        if self.done:
            return
        self._move(TriggerState.SEARCHING)
        try:
            if read_attr(self.tour, "player") is None:
                logger.warning("Tour or player not available")
                self._finish(False)
                return
            element = find_element(self.tour, self.element_id)
            logger.info(f"Element found: {self.element_id}")
            self.method = activate(element)
        except ElementLookupError as e:
            logger.debug(str(e))
            self._move(TriggerState.NOT_FOUND)
            self._retry_or_give_up()
            return
        except ElementTriggerError:
            logger.warning(f"All trigger methods failed for element: {self.element_id}")
            self._move(TriggerState.TRIGGER_FAILED)
            self._retry_or_give_up()
            return
        except Exception as e:
            logger.error(f"Unexpected error triggering {self.element_id!r}: {e}", exc_info=True)
            self._finish(False)
            return
        logger.info(f"Element triggered successfully using {self.method}")
        self._finish(True)

    def _retry_or_give_up(self) -> None:
        self.attempt += 1
        try:
            if self.attempt < self.settings.max_retries:
                delay = backoff(self.settings, self.attempt)
                logger.debug(f"Element trigger attempt {self.attempt} failed, retrying in {delay}ms...")
                self._schedule(delay)
                return
        except Exception as e:
            logger.error(f"Cannot schedule retry for {self.element_id!r}: {e}")
            self._finish(False)
            return
        logger.warning(f"Failed to trigger element {self.element_id} after {self.settings.max_retries} attempts")
        self._finish(False)

    def _finish(self, success: bool) -> None:
        if self.result is not None:
            return
        self._move(TriggerState.TRIGGERED if success else TriggerState.GAVE_UP)
        self.result = success
        if self.callback is None:
            return
        try:
            self.callback(success)
        except Exception as e:
            logger.error(f"Trigger callback raised: {e}")


class ActionTrigger:
    """Starts :class:`TriggerRun` instances with shared timing settings."""

    def __init__(self, scheduler: Scheduler, settings: Optional[TriggerSettings] = None):
        self.scheduler = scheduler
        self.settings = settings or TriggerSettings()

    def trigger(self, tour: Any, element_id: Optional[str],
                callback: Optional[Callable[[bool], Any]] = None,
                options: Optional[Mapping[str, Any]] = None) -> Optional[TriggerRun]:
        """
        Activate *element_id* after the initial delay, retrying on failure.

        Returns the run, or None when the request was rejected outright
        (in which case *callback* has already been called with False).
        """
        if not tour or not element_id:
            logger.warning("Invalid tour or elementId for trigger")
            if callback is not None:
                try:
                    callback(False)
                except Exception as e:
                    logger.error(f"Trigger callback raised: {e}")
            return None
        settings = merge_settings(self.settings, options)
        return TriggerRun(tour, str(element_id), settings, self.scheduler, callback).start()
