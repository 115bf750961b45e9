"""Speech capture session.

Wraps a platform speech-to-text device (anything implementing ``SpeechDevice``)
in a small state machine::

    inactive -> listening -> processing -> inactive
                    \\            \\
                     `-> error <--'   (back to inactive on the device's end event)

Only final recognition results reach the transcript buffer; interim results
are kept apart so partial words never get parsed. Each stop yields at most one
``Transcript``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from ..errors import CaptureError, CaptureErrorKind
from ..forms import Transcript
from ..locales import DEFAULT_LOCALE, normalize_locale

logger = logging.getLogger(__name__)


class CaptureState(str, Enum):
    INACTIVE = "inactive"
    LISTENING = "listening"
    PROCESSING = "processing"
    ERROR = "error"


@dataclass(frozen=True)
class SpeechResult:
    """One recognition result as reported by the device."""

    transcript: str
    is_final: bool
    confidence: float | None = None


class SpeechDevice(Protocol):
    """What the session needs from a platform speech-to-text API."""

    continuous: bool
    interim_results: bool
    lang: str
    on_result: Callable[[Sequence[SpeechResult]], None] | None
    on_error: Callable[[str], None] | None
    on_end: Callable[[], None] | None

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def abort(self) -> None: ...


DeviceFactory = Callable[[], SpeechDevice]

_DEVICE_ERRORS = {
    "no-speech": CaptureErrorKind.NO_SPEECH,
    "not-allowed": CaptureErrorKind.PERMISSION_DENIED,
    "service-not-allowed": CaptureErrorKind.PERMISSION_DENIED,
    "audio-capture": CaptureErrorKind.PERMISSION_DENIED,
    "network": CaptureErrorKind.TRANSPORT,
    "aborted": CaptureErrorKind.ABORTED,
}


def classify_device_error(code: str) -> CaptureErrorKind:
    return _DEVICE_ERRORS.get((code or "").strip().lower(), CaptureErrorKind.TRANSPORT)


class CaptureSession:
    """One logical capture context owning at most one open device handle.

    Use it as a context manager (or call ``close()``) so the device handle is
    released whatever state the session is in::

        with CaptureSession(factory, "uk-UA", on_transcript=agent.handle_transcript) as s:
            s.start()
            ...
            s.stop()
    """

    def __init__(
        self,
        device_factory: DeviceFactory | None,
        locale: str = DEFAULT_LOCALE,
        *,
        on_transcript: Callable[[Transcript], object] | None = None,
        on_state_change: Callable[[CaptureState], None] | None = None,
    ) -> None:
        self._factory = device_factory
        self._locale = normalize_locale(locale)
        self.on_transcript = on_transcript
        self._on_state_change = on_state_change
        self._lock = threading.RLock()
        self._device: SpeechDevice | None = None
        self._state = CaptureState.INACTIVE
        self._transcript = ""
        self._interim = ""
        self._error: CaptureError | None = None
        self._pending: Transcript | None = None
        # Set while device.stop() runs; transcripts flushed by its callbacks wait in _deferred.
        self._holding = False
        self._deferred: Transcript | None = None

    # --- Observable state ---

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def locale(self) -> str:
        return self._locale

    @property
    def transcript(self) -> str:
        """Latest final text for the current utterance."""
        return self._transcript

    @property
    def interim(self) -> str:
        return self._interim

    @property
    def error(self) -> CaptureError | None:
        return self._error

    @property
    def is_listening(self) -> bool:
        return self._state is CaptureState.LISTENING

    @property
    def has_device(self) -> bool:
        return self._device is not None

    # --- Lifecycle ---

    def start(self, locale: str | None = None) -> None:
        """Open a device session; a no-op while already listening on the same locale."""
        emitted: Transcript | None = None
        with self._lock:
            target = normalize_locale(locale or self._locale)
            if self._state is CaptureState.LISTENING:
                if target == self._locale:
                    return
                # The locale of an open session cannot change: finish it and rebuild.
                emitted = self._finish_for_rebuild()
            self._open(target)
        self._emit(emitted)

    def set_locale(self, locale: str) -> None:
        target = normalize_locale(locale)
        if self._state is CaptureState.LISTENING:
            self.start(target)
        else:
            with self._lock:
                self._locale = target

    def stop(self) -> None:
        """Ask the device to finalize.

        With a device open the session stays in ``processing`` until the device
        delivers its next final result or ends, so a late final result replaces
        an earlier one. Safe to call in any state; when nothing is open it
        flushes whatever transcript has been buffered.
        """
        emitted: Transcript | None = None
        with self._lock:
            device = self._device
            if self._state is CaptureState.LISTENING and device is not None:
                self._set_state(CaptureState.PROCESSING)
                self._stop_device(device)
                emitted = self._take_deferred()
            elif self._state is not CaptureState.PROCESSING:
                emitted = self._flush()
        self._emit(emitted)

    def close(self) -> None:
        """Abort any open device session and return to ``inactive``."""
        with self._lock:
            self._teardown()
            self._transcript = ""
            self._interim = ""
            self._set_state(CaptureState.INACTIVE)

    def take_transcript(self) -> Transcript | None:
        """Return the last flushed transcript once; later calls return None."""
        with self._lock:
            pending, self._pending = self._pending, None
            return pending

    def __enter__(self) -> CaptureSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # --- Device callbacks ---

    def _handle_result(self, device: SpeechDevice, results: Sequence[SpeechResult]) -> None:
        emitted: Transcript | None = None
        with self._lock:
            if device is not self._device or not results:
                return
            last = results[-1]
            if last.is_final:
                self._transcript = last.transcript
                self._interim = ""
                logger.debug("final transcript: %r", last.transcript)
                if self._state is CaptureState.PROCESSING:
                    emitted = self._handoff(self._flush())
            else:
                self._interim = last.transcript
        self._emit(emitted)

    def _handle_error(self, device: SpeechDevice, code: str) -> None:
        with self._lock:
            if device is not self._device:
                return
            self._fail(CaptureError(classify_device_error(code), None if code in _DEVICE_ERRORS else code))

    def _handle_end(self, device: SpeechDevice) -> None:
        emitted: Transcript | None = None
        with self._lock:
            if device is not self._device:
                return
            if self._state is CaptureState.PROCESSING:
                emitted = self._handoff(self._flush())
            self._detach(device)
            self._device = None
            self._set_state(CaptureState.INACTIVE)
        self._emit(emitted)

    # --- Internal helpers ---

    def _open(self, locale: str) -> None:
        self._teardown()
        self._locale = locale
        self._transcript = ""
        self._interim = ""
        self._error = None
        if self._factory is None:
            self._fail(CaptureError(CaptureErrorKind.UNSUPPORTED))
            return

        device = self._factory()
        device.continuous = True
        device.interim_results = True
        device.lang = locale
        device.on_result = lambda results: self._handle_result(device, results)
        device.on_error = lambda code: self._handle_error(device, code)
        device.on_end = lambda: self._handle_end(device)
        self._device = device
        try:
            device.start()
        except Exception as exc:  # noqa: BLE001
            logger.warning("speech device failed to start: %s", exc)
            self._teardown()
            self._fail(CaptureError(CaptureErrorKind.PERMISSION_DENIED, str(exc)))
            return
        logger.info("listening (locale=%s)", locale)
        self._set_state(CaptureState.LISTENING)

    def _finish_for_rebuild(self) -> Transcript | None:
        device = self._device
        self._set_state(CaptureState.PROCESSING)
        if device is not None:
            self._stop_device(device)
        emitted = self._take_deferred()
        if self._state is CaptureState.PROCESSING:
            emitted = self._flush() or emitted
        self._teardown()
        return emitted

    def _stop_device(self, device: SpeechDevice) -> None:
        self._holding = True
        try:
            device.stop()
        finally:
            self._holding = False

    def _handoff(self, transcript: Transcript | None) -> Transcript | None:
        """Emit now, or park the transcript when called back from inside ``device.stop()``."""
        if self._holding and transcript is not None:
            self._deferred = transcript
            return None
        return transcript

    def _take_deferred(self) -> Transcript | None:
        deferred, self._deferred = self._deferred, None
        return deferred

    def _flush(self) -> Transcript | None:
        text = self._transcript.strip()
        self._transcript = ""
        self._interim = ""
        if self._state is CaptureState.PROCESSING:
            self._set_state(CaptureState.INACTIVE)
        if not text:
            return None
        self._pending = Transcript(text=text, locale=self._locale)
        return self._pending

    def _fail(self, error: CaptureError) -> None:
        logger.warning("capture error: %s (%s)", error.kind.value, error)
        self._error = error
        self._transcript = ""
        self._interim = ""
        self._set_state(CaptureState.ERROR)

    def _teardown(self) -> None:
        device, self._device = self._device, None
        if device is None:
            return
        self._detach(device)
        try:
            device.abort()
        except Exception:  # noqa: BLE001
            logger.warning("error aborting speech device", exc_info=True)

    @staticmethod
    def _detach(device: SpeechDevice) -> None:
        device.on_result = None
        device.on_error = None
        device.on_end = None

    def _set_state(self, state: CaptureState) -> None:
        if state is self._state:
            return
        logger.debug("capture state %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    def _emit(self, transcript: Transcript | None) -> None:
        if transcript is not None and self.on_transcript is not None:
            self.on_transcript(transcript)
