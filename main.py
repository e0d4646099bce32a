"""Application entrypoint: a small form whose fields can be filled by voice."""

from __future__ import annotations

import logging
import sys
from typing import Optional

import field_specs
from config import JsonConfigStore, ServiceSettings
from extractor import DashscopeFieldExtractor
from hotkey import GlobalHotkeyAdapter
from models import FieldSpec, RecordingState
from recorder import SoundDeviceRecorder
from transcriber import PipelineTranscriptionClient
from voice_session import VoiceFieldSession

try:
    from PySide6.QtCore import QObject, QTimer, Signal
    from PySide6.QtWidgets import (
        QApplication,
        QFormLayout,
        QHBoxLayout,
        QLabel,
        QLineEdit,
        QProgressBar,
        QPushButton,
        QVBoxLayout,
        QWidget,
    )
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger(__name__)

STATUS_TEXT = {
    RecordingState.IDLE: "",
    RecordingState.RECORDING: "Listening... tap again to stop",
    RecordingState.PROCESSING: "Processing...",
    RecordingState.COMPLETED: "Heard: {value}",
    RecordingState.ERROR: "{error} Tap the mic to retry.",
}

CASE_QUESTION = "Please describe your legal concern."


class UIBridge(QObject):
    state_signal = Signal(str, str)  # field, to_state
    feedback_signal = Signal(str, bool)  # field, success
    hotkey_signal = Signal()


class _BridgeFeedback:
    """Feedback sink that hops to the UI thread through the bridge."""

    def __init__(self, bridge: UIBridge, name: str) -> None:
        self._bridge = bridge
        self._name = name

    def notify_success(self) -> None:
        self._bridge.feedback_signal.emit(self._name, True)

    def notify_error(self) -> None:
        self._bridge.feedback_signal.emit(self._name, False)


class VoiceFieldRow(QWidget):
    def __init__(self, name: str, session: VoiceFieldSession, recorder: SoundDeviceRecorder) -> None:
        super().__init__()
        self.name = name
        self.session = session
        self.recorder = recorder
        self.inputs = {key: QLineEdit() for key in session.spec.keys}
        if name == "password":
            self.inputs["password"].setEchoMode(QLineEdit.Password)

        self.mic_button = QPushButton("🎙")
        self.mic_button.clicked.connect(lambda: self.session.toggle())
        self.apply_button = QPushButton("Apply")
        self.apply_button.setEnabled(False)
        self.apply_button.clicked.connect(lambda: self.apply())
        self.status = QLabel("")
        self.level = QProgressBar()
        self.level.setRange(0, 100)
        self.level.setTextVisible(False)
        self.level.hide()

        fields = QHBoxLayout()
        for key, edit in self.inputs.items():
            edit.setPlaceholderText(key)
            fields.addWidget(edit)
        fields.addWidget(self.mic_button)
        fields.addWidget(self.apply_button)

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addLayout(fields)
        layout.addWidget(self.level)
        layout.addWidget(self.status)
        self.setLayout(layout)

    def has_focus(self) -> bool:
        return any(edit.hasFocus() for edit in self.inputs.values()) or self.mic_button.hasFocus()

    def refresh(self) -> None:
        state = self.session.state
        value = ", ".join(v for v in self.session.values.values() if v)
        if self.name == "password" and value:
            value = "•" * len(value)
        self.status.setText(
            STATUS_TEXT[state].format(value=value, error=self.session.error_message)
        )
        self.apply_button.setEnabled(state == RecordingState.COMPLETED)
        self.mic_button.setEnabled(state != RecordingState.PROCESSING)
        self.level.setVisible(state == RecordingState.RECORDING)

    def update_level(self) -> None:
        if self.session.state == RecordingState.RECORDING:
            self.level.setValue(int(self.recorder.level * 100))

    def apply(self) -> None:
        for key, value in self.session.values.items():
            if value:
                self.inputs[key].setText(value)
        self.session.reset()


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.config_store = JsonConfigStore()
        self.settings = self.config_store.service_settings()
        self.ui = UIBridge()
        self.ui.state_signal.connect(self._on_state_change_ui)
        self.ui.feedback_signal.connect(self._on_feedback_ui)
        self.ui.hotkey_signal.connect(self._on_hotkey_ui)

        self.transcriber = PipelineTranscriptionClient(
            api_key=self.settings.asr_api_key,
            pipeline_id=self.settings.asr_pipeline_id,
            config_endpoint=self.settings.asr_config_endpoint,
            inference_endpoint=self.settings.asr_inference_endpoint,
            request_timeout_s=self.settings.request_timeout_s,
        )
        self.extractor = DashscopeFieldExtractor(
            api_key=self.settings.llm_api_key,
            model=self.settings.llm_model,
            request_timeout_s=self.settings.request_timeout_s,
        )

        specs = [
            ("name", field_specs.NAME),
            ("phone", field_specs.PHONE),
            ("email", field_specs.EMAIL),
            ("password", field_specs.PASSWORD),
            ("location", field_specs.LOCATION),
            ("concern", field_specs.freeform_answer_spec(CASE_QUESTION)),
        ]
        self.rows = {name: self._build_row(name, spec, self.settings) for name, spec in specs}

        self.window = QWidget()
        self.window.setWindowTitle("Voice form")
        form = QFormLayout()
        for name, row in self.rows.items():
            form.addRow(name.capitalize(), row)
        self.window.setLayout(form)

        self.level_timer = QTimer()
        self.level_timer.setInterval(100)
        self.level_timer.timeout.connect(self._update_levels)

        self.hotkey = GlobalHotkeyAdapter(
            hotkey_name=self.config_store.get_hotkey(),
            hold_to_talk=self.config_store.get_hotkey_hold_to_talk(),
        )

    def _build_row(self, name: str, spec: FieldSpec, settings: ServiceSettings) -> VoiceFieldRow:
        recorder = SoundDeviceRecorder(max_seconds=settings.max_recording_s)
        session = VoiceFieldSession(
            spec=spec,
            capture=recorder,
            transcriber=self.transcriber,
            extractor=self.extractor,
            source_language=settings.source_language,
            feedback=_BridgeFeedback(self.ui, name),
            max_recording_s=settings.max_recording_s,
            on_state_change=lambda _f, t, n=name: self.ui.state_signal.emit(n, t.value),
        )
        return VoiceFieldRow(name, session, recorder)

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _on_state_change_ui(self, name: str, to_state: str) -> None:
        self.rows[name].refresh()
        if to_state == RecordingState.RECORDING.value:
            self.level_timer.start()
        elif not any(r.session.state == RecordingState.RECORDING for r in self.rows.values()):
            self.level_timer.stop()

    def _on_feedback_ui(self, name: str, success: bool) -> None:
        if success:
            QApplication.beep()

    def _update_levels(self) -> None:
        for row in self.rows.values():
            row.update_level()

    def _focused_row(self) -> Optional[VoiceFieldRow]:
        for row in self.rows.values():
            if row.has_focus():
                return row
        return None

    def _on_hotkey_ui(self) -> None:
        row = self._focused_row()
        if row is not None:
            row.session.toggle()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        try:
            self.hotkey.start(on_toggle=self.ui.hotkey_signal.emit)
        except Exception as exc:
            logger.warning("hotkey disabled: %s", exc)
        self.window.show()
        self.app.aboutToQuit.connect(self.quit)
        return self.app.exec()

    def quit(self) -> None:
        self.hotkey.stop()
        for row in self.rows.values():
            row.session.reset()
        self.transcriber.close()


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
