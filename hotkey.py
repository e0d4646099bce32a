"""Global hotkey that toggles voice capture, based on pynput."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore

logger = logging.getLogger(__name__)


class GlobalHotkeyAdapter:
    """Calls ``on_toggle`` on key press, and again on release when holding to talk."""

    def __init__(self, hotkey_name: str = "Key.f8", hold_to_talk: bool = False) -> None:
        self._hotkey_name = hotkey_name
        self._hold_to_talk = hold_to_talk
        self._listener: Optional[object] = None
        self._pressed = False
        self._lock = threading.Lock()

    def start(self, on_toggle: Callable[[], None]) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")

        def _on_press(key: object) -> None:
            if str(key) != self._hotkey_name:
                return
            with self._lock:
                # key repeat while held
                if self._pressed:
                    return
                self._pressed = True
            on_toggle()

        def _on_release(key: object) -> None:
            if str(key) != self._hotkey_name:
                return
            with self._lock:
                if not self._pressed:
                    return
                self._pressed = False
            if self._hold_to_talk:
                on_toggle()

        self._listener = keyboard.Listener(on_press=_on_press, on_release=_on_release)
        self._listener.start()
        logger.info("hotkey %s active (%s)", self._hotkey_name, "hold" if self._hold_to_talk else "toggle")

    def stop(self) -> None:
        listener = self._listener
        if listener is not None:
            listener.stop()
            self._listener = None
