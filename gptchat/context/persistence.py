"""
Persona file persistence.

This module loads persona definitions from disk, either as plain persona text
or as a previously saved conversation snapshot, and saves conversation
snapshots as JSON.
"""

import json
import logging
from pathlib import Path
from typing import Any

from gptchat.constants import DEFAULT_ENCODING
from gptchat.context.persona import Persona
from gptchat.exceptions import GptChatError, PersistenceError
from gptchat.types import PathLike

logger = logging.getLogger(__name__)


def parse_persona_definition(text: str) -> str | dict[str, Any]:
    """
    Interpret the contents of a persona file.

    Content starting with ``{`` that parses as a JSON object is a snapshot;
    anything else is persona text, with carriage returns removed.

    Parameters
    ----------
    text : str
        File contents.

    Returns
    -------
    str | dict[str, Any]
        Persona text or snapshot mapping.

    Examples
    --------
    >>> parse_persona_definition("Be brief.\\r\\n")
    'Be brief.\\n'
    >>> parse_persona_definition('{"persona": "Be brief."}')
    {'persona': 'Be brief.'}
    """
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.debug("Persona file looks like JSON but does not parse, using it as text")
        else:
            if isinstance(data, dict):
                return data

    return text.replace("\r", "")


def load_persona(path: PathLike, **persona_kwargs: Any) -> Persona:
    """
    Load a persona from a text or snapshot file.

    Parameters
    ----------
    path : PathLike
        Persona file path.
    **persona_kwargs : Any
        Passed on to the :class:`Persona` constructor.

    Returns
    -------
    Persona
        The loaded persona.

    Raises
    ------
    PersistenceError
        If the file cannot be read or holds an invalid snapshot.

    Examples
    --------
    >>> persona = load_persona("personas/pirate.txt", max_context_token_count=8000)
    """
    file_path: Path = Path(path)
    try:
        text: str = file_path.read_text(encoding=DEFAULT_ENCODING)
    except (OSError, UnicodeDecodeError) as e:
        raise PersistenceError(
            f"Failed to read persona file {file_path}: {e}",
            path=str(file_path),
            cause=e,
        ) from e

    definition = parse_persona_definition(text)
    if isinstance(definition, str):
        logger.debug(f"Loaded persona text from {file_path}")
        return Persona(definition, **persona_kwargs)

    try:
        persona = Persona.from_snapshot(definition, **persona_kwargs)
    except GptChatError as e:
        raise PersistenceError(
            f"Invalid persona snapshot in {file_path}: {e.message}",
            path=str(file_path),
            cause=e,
        ) from e

    logger.debug(f"Loaded persona snapshot from {file_path} ({len(persona.history)} messages)")
    return persona


def save_persona(persona: Persona, path: PathLike) -> Path:
    """
    Save a persona snapshot as JSON.

    Parameters
    ----------
    persona : Persona
        Persona to save.
    path : PathLike
        Destination file.

    Returns
    -------
    Path
        The written file.

    Raises
    ------
    PersistenceError
        If the file cannot be written.
    """
    file_path: Path = Path(path).expanduser()
    try:
        with open(file_path, "w", encoding=DEFAULT_ENCODING) as fp:
            json.dump(persona.to_dict(), fp, ensure_ascii=False)
    except OSError as e:
        raise PersistenceError(
            f"Failed to write persona file {file_path}: {e}",
            path=str(file_path),
            cause=e,
        ) from e

    logger.debug(f"Saved persona to {file_path}")
    return file_path
