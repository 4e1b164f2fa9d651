"""
Incremental decoder for server-sent event streams.

The chat-completion endpoint streams its response as ``text/event-stream``:
blocks of ``field: value`` lines terminated by a blank line. The decoder
accepts text in arbitrary chunks, as it arrives from the network, and returns
every event completed by that chunk.
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

BOM: str = "\ufeff"


@dataclass(frozen=True)
class ServerSentEvent:
    """
    A dispatched server-sent event.

    Attributes
    ----------
    event : str
        Event type, ``"message"`` unless the stream named it.
    data : str
        Event payload; multiple ``data`` lines joined with newlines.
    id : str | None
        Last event ID seen on the stream.
    retry : int | None
        Reconnection time in milliseconds, when the event carried one.
    """

    event: str = "message"
    data: str = ""
    id: str | None = None
    retry: int | None = None


class SSEDecoder:
    """
    Stateful decoder turning text chunks into :class:`ServerSentEvent` objects.

    Examples
    --------
    >>> decoder = SSEDecoder()
    >>> decoder.feed('data: {"a"')
    []
    >>> decoder.feed(': 1}\\n\\n')
    [ServerSentEvent(event='message', data='{"a": 1}', id=None, retry=None)]
    """

    def __init__(self) -> None:
        self._buffer: str = ""
        self._started: bool = False
        self._pending_cr: bool = False
        self._event_type: str = ""
        self._data_lines: list[str] = []
        self._last_event_id: str | None = None
        self._retry: int | None = None

    def feed(self, chunk: str) -> list[ServerSentEvent]:
        """
        Decode a chunk of the stream.

        Parameters
        ----------
        chunk : str
            Next piece of stream text; may split lines anywhere.

        Returns
        -------
        list[ServerSentEvent]
            Events completed by this chunk, in stream order.
        """
        if not chunk:
            return []

        if not self._started:
            self._started = True
            if chunk.startswith(BOM):
                chunk = chunk[len(BOM):]

        # A CR at the end of the previous chunk already ended a line.
        if self._pending_cr:
            self._pending_cr = False
            if chunk.startswith("\n"):
                chunk = chunk[1:]

        self._buffer += chunk
        events: list[ServerSentEvent] = []

        position: int = 0
        length: int = len(self._buffer)
        while position < length:
            cr: int = self._buffer.find("\r", position)
            lf: int = self._buffer.find("\n", position)
            if cr == -1 and lf == -1:
                break

            if cr != -1 and (lf == -1 or cr < lf):
                end = cr
                if cr + 1 < length:
                    next_position = cr + 2 if self._buffer[cr + 1] == "\n" else cr + 1
                else:
                    self._pending_cr = True
                    next_position = cr + 1
            else:
                end = lf
                next_position = lf + 1

            event = self._process_line(self._buffer[position:end])
            if event is not None:
                events.append(event)
            position = next_position

        self._buffer = self._buffer[position:]
        return events

    def flush(self) -> None:
        """
        Finish decoding at end of stream.

        An event that was never terminated by a blank line is incomplete
        and is discarded.
        """
        if self._buffer or self._data_lines:
            logger.debug("Discarding unterminated event at end of stream")
        self._buffer = ""
        self._pending_cr = False
        self._reset_event()

    def _process_line(self, line: str) -> ServerSentEvent | None:
        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event_type = value
        elif field == "data":
            self._data_lines.append(value)
        elif field == "id":
            if "\0" not in value:
                self._last_event_id = value
        elif field == "retry":
            if value.isdigit():
                self._retry = int(value)
        return None

    def _dispatch(self) -> ServerSentEvent | None:
        if not self._data_lines:
            self._reset_event()
            return None

        event = ServerSentEvent(
            event=self._event_type or "message",
            data="\n".join(self._data_lines),
            id=self._last_event_id,
            retry=self._retry,
        )
        self._reset_event()
        return event

    def _reset_event(self) -> None:
        self._event_type = ""
        self._data_lines = []
        self._retry = None
