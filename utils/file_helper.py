"""Resolves file names used in scenarios to local paths."""
from pathlib import Path

from utils.scenario_state import ScenarioState

DIRECTORY_VARIABLE = 'directory'

TEST_FILE_CONTENT = 'this is a test file'


def get_file_path(file_name: str, state: ScenarioState) -> Path:
    """
    Local path for a scenario file name.

    Absolute paths are returned unchanged. Relative names are resolved against
    the scenario's 'directory' variable when it is set, else the working
    directory.
    """
    path = Path(file_name)
    if path.is_absolute():
        return path
    directory = state.get(DIRECTORY_VARIABLE)
    if directory:
        return Path(directory) / path
    return path


def write_text_file(file_path: Path, content: str) -> Path:
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(content, encoding='utf-8')
    return file_path
