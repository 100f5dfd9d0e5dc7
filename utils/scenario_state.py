"""
Per-scenario variable store and ${name} substitution for step arguments.

Steps run one at a time within a scenario, so the store is not locked. If
scenarios are ever executed in parallel each one still gets its own store,
but a single store must not be shared between threads.
"""
import json
import re
from typing import Any, Dict, Iterator, Optional

from utils.logger import logger

LAST_RUN = 'lastRun'

PLACEHOLDER_PATTERN = re.compile(r'\$\{([^}]+)\}')


class ScenarioState:
    """Variables captured while a scenario runs, keyed by name."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = dict(initial or {})

    def get(self, name: str) -> Optional[Any]:
        """Value stored under name, or None when it was never set."""
        return self._values.get(name)

    def set(self, name: str, value: Any) -> None:
        self._values[name] = value

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    @property
    def last_run(self) -> Optional[Any]:
        return self._values.get(LAST_RUN)

    @last_run.setter
    def last_run(self, value: Any) -> None:
        self._values[LAST_RUN] = value

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def __repr__(self):
        return f"ScenarioState({sorted(self._values)})"


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def fill_template(text: str, state: ScenarioState) -> str:
    """
    Replace every ${name} in text with the value stored under name.

    Strings are inserted as-is, other values as JSON. A placeholder naming a
    variable that was never set is left in the text unchanged.
    """
    if text is None or '${' not in text:
        return text

    def replace(match):
        name = match.group(1).strip()
        if name not in state:
            logger.warning(f"Scenario variable '{name}' is not set; leaving '{match.group(0)}' unchanged")
            return match.group(0)
        return _to_text(state.get(name))

    return PLACEHOLDER_PATTERN.sub(replace, text)


def get_scenario_state(context) -> ScenarioState:
    """The state of the running scenario, created on first use."""
    state = getattr(context, 'results', None)
    if state is None:
        state = ScenarioState()
        context.results = state
    return state
