"""Example live-caption host: tray icon plus caption overlay."""

from __future__ import annotations

import logging
import sys

from config import JsonConfigStore
from errors import SessionInitError
from interfaces import ConfigStore, Recognizer
from local_recognizer import LocalRecognizer
from models import AuthorizationStatus, RecognitionEvent, SessionState
from overlay import OverlayWindow
from recognizer import CloudRecognizer
from recorder import SoundDeviceRecorder
from session_controller import SessionController
from spectrum import SpectralAnalyzer

try:
    from PySide6.QtCore import QObject, QSize, QTimer, Signal
    from PySide6.QtGui import QAction, QBrush, QColor, QIcon, QPainter, QPixmap
    from PySide6.QtWidgets import QApplication, QInputDialog, QMenu, QMessageBox, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger(__name__)


def _create_icon(color: str = "#888888", size: int = 22) -> QIcon:
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


ICON_IDLE = "#888888"
ICON_RECORDING = "#FF4444"
ICON_ERROR = "#FF8800"


def build_recognizer(config: ConfigStore) -> Recognizer:
    if config.get_provider() == "local":
        return LocalRecognizer(model_path=config.get_local_model_path())
    return CloudRecognizer(
        api_key=config.get_api_key(),
        model=config.get_cloud_model(),
        chunk_size=config.get_chunk_size(),
    )


class UIBridge(QObject):
    caption_signal = Signal(str, bool)
    spectrum_signal = Signal(list)
    error_signal = Signal(str)
    state_signal = Signal(str, str)
    authorization_signal = Signal(str)


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.config_store = JsonConfigStore()
        self.overlay = OverlayWindow()
        self.ui = UIBridge()
        self.ui.caption_signal.connect(self._on_caption_ui)
        self.ui.spectrum_signal.connect(self.overlay.set_spectrum)
        self.ui.error_signal.connect(self._on_error_ui)
        self.ui.state_signal.connect(self._on_state_change_ui)
        self.ui.authorization_signal.connect(self._on_authorization_ui)

        self.controller = SessionController(
            recorder=SoundDeviceRecorder(device=self.config_store.get_input_device()),
            recognizer=build_recognizer(self.config_store),
            analyzer=SpectralAnalyzer(),
            on_state_change=self._on_state_change,
            on_result=self._on_result,
            on_error=self._on_error,
            on_spectrum=self._on_spectrum,
            on_authorization=self._on_authorization,
        )

        self.elapsed_timer = QTimer()
        self.elapsed_timer.setInterval(250)
        self.elapsed_timer.timeout.connect(
            lambda: self.overlay.set_elapsed(self.controller.formatted_recording_length())
        )

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(ICON_IDLE))
        self.tray.setToolTip("Live captions: Ready")
        self._setup_menu()
        self.tray.show()

    def _setup_menu(self) -> None:
        menu = QMenu()

        self.record_action = QAction("Start Recording", menu)
        self.record_action.triggered.connect(self._toggle_recording)
        menu.addAction(self.record_action)

        menu.addSeparator()
        api_action = QAction("Set API Key", menu)
        api_action.triggered.connect(self._set_api_key)
        menu.addAction(api_action)

        provider_action = QAction("Use On-Device Recognition", menu)
        provider_action.setCheckable(True)
        provider_action.setChecked(self.config_store.get_provider() == "local")
        provider_action.toggled.connect(self._set_local_provider)
        menu.addAction(provider_action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        self.tray.setContextMenu(menu)

    def _toggle_recording(self) -> None:
        if self.controller.state in (SessionState.STARTING, SessionState.RECORDING):
            self.controller.stop_session()
            return
        try:
            self.controller.start_session()
        except SessionInitError as exc:
            logger.warning("could not start session: %s", exc)
            self.overlay.show_error(str(exc))

    def _set_api_key(self) -> None:
        value, ok = QInputDialog.getText(None, "API Key", "DashScope API Key")
        if not ok:
            return
        self.config_store.set_api_key(value)
        self._apply_recognizer()

    def _set_local_provider(self, enabled: bool) -> None:
        self.config_store.set_provider("local" if enabled else "cloud")
        self._apply_recognizer()

    def _apply_recognizer(self) -> None:
        try:
            self.controller.replace_recognizer(build_recognizer(self.config_store))
        except SessionInitError as exc:
            QMessageBox.warning(None, "Busy", str(exc))
            return
        logger.info("recognizer switched to %s", self.config_store.get_provider())
        QMessageBox.information(None, "Saved", "Recognizer settings applied.")

    # ------------------------------------------------------------------
    # Callbacks (called from worker threads → emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: SessionState, to_state: SessionState) -> None:
        self.ui.state_signal.emit(from_state.value, to_state.value)

    def _on_result(self, event: RecognitionEvent) -> None:
        self.ui.caption_signal.emit(event.text, event.is_final)

    def _on_spectrum(self, magnitudes: object) -> None:
        # The analyzer reuses its buffer; copy before crossing threads.
        self.ui.spectrum_signal.emit(magnitudes.tolist())  # type: ignore[attr-defined]

    def _on_error(self, code: str, message: str) -> None:
        self.ui.error_signal.emit(f"{code}: {message}")

    def _on_authorization(self, status: AuthorizationStatus) -> None:
        self.ui.authorization_signal.emit(status.value)

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _on_caption_ui(self, text: str, is_final: bool) -> None:
        self.overlay.set_caption(text, is_final)
        if is_final:
            self.overlay.hide_with_delay()

    def _on_error_ui(self, msg: str) -> None:
        self.overlay.show_error(msg)

    def _on_authorization_ui(self, status: str) -> None:
        if status == AuthorizationStatus.GRANTED.value:
            self._toggle_recording()

    def _on_state_change_ui(self, from_state: str, to_state: str) -> None:
        if to_state == SessionState.RECORDING.value:
            self.tray.setIcon(_create_icon(ICON_RECORDING))
            self.tray.setToolTip("Live captions: Recording...")
            self.record_action.setText("Stop Recording")
            self.overlay.set_caption("🎙️ Listening...")
            self.elapsed_timer.start()
        elif to_state == SessionState.FINALIZING.value:
            self.tray.setToolTip("Live captions: Finishing...")
            self.record_action.setEnabled(False)
            self.elapsed_timer.stop()
        elif to_state == SessionState.IDLE.value:
            self.tray.setIcon(_create_icon(ICON_IDLE))
            self.tray.setToolTip("Live captions: Ready")
            self.record_action.setText("Start Recording")
            self.record_action.setEnabled(True)
            self.elapsed_timer.stop()
            self.overlay.set_spectrum([])
        elif to_state == SessionState.ERROR.value:
            self.tray.setIcon(_create_icon(ICON_ERROR))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        return self.app.exec()

    def quit(self) -> None:
        self.controller.cancel_session("app quit")
        self.app.quit()


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
