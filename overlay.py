"""Caption overlay with a live spectrum strip."""

from __future__ import annotations

from typing import Sequence

try:
    from PySide6.QtCore import Qt, QTimer
    from PySide6.QtGui import QColor, QPainter
    from PySide6.QtWidgets import QApplication, QLabel, QVBoxLayout, QWidget
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    QColor = None  # type: ignore
    QPainter = None  # type: ignore
    QApplication = None  # type: ignore
    QLabel = object  # type: ignore
    QVBoxLayout = object  # type: ignore
    QWidget = object  # type: ignore

CAPTION_STYLE = (
    "color: white; font-size: 18px; padding: 16px;"
    "background: rgba(0,0,0,190); border-radius: 12px;"
)
ERROR_STYLE = (
    "color: #FF6B6B; font-size: 18px; padding: 16px;"
    "background: rgba(0,0,0,210); border-radius: 12px;"
)
FINAL_STYLE = (
    "color: #B8F5B0; font-size: 18px; padding: 16px;"
    "background: rgba(0,0,0,190); border-radius: 12px;"
)


class SpectrumBars(QWidget):
    """Draws magnitudes as vertical bars, grouped down to ``bar_count``."""

    def __init__(self, bar_count: int = 48) -> None:
        super().__init__()
        self._bar_count = bar_count
        self._levels: list[float] = [0.0] * bar_count
        self.setFixedHeight(36)

    def set_magnitudes(self, magnitudes: Sequence[float]) -> None:
        if not magnitudes:
            self._levels = [0.0] * self._bar_count
            self.update()
            return
        group = max(1, len(magnitudes) // self._bar_count)
        levels = []
        for i in range(self._bar_count):
            chunk = magnitudes[i * group : (i + 1) * group]
            levels.append(max(chunk) if len(chunk) else 0.0)
        peak = max(levels) or 1.0
        self._levels = [level / peak for level in levels]
        self.update()

    def paintEvent(self, event: object) -> None:  # noqa: N802
        painter = QPainter(self)
        width = self.width() / self._bar_count
        for i, level in enumerate(self._levels):
            height = max(1.0, level * self.height())
            painter.fillRect(
                int(i * width),
                int(self.height() - height),
                max(1, int(width) - 2),
                int(height),
                QColor("#FF4444"),
            )
        painter.end()


class OverlayWindow(QWidget):
    def __init__(self) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowFlags(
            Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool
        )
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setFixedWidth(640)

        self._label = QLabel("")
        self._label.setWordWrap(True)
        self._label.setStyleSheet(CAPTION_STYLE)
        self._spectrum = SpectrumBars()
        self._time = QLabel("")
        self._time.setStyleSheet("color: #CCCCCC; font-size: 12px;")

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(self._label)
        layout.addWidget(self._spectrum)
        layout.addWidget(self._time)
        self.setLayout(layout)

        self._hide_timer: QTimer | None = None

    def _center_bottom(self) -> None:
        if QApplication is None:
            return
        screen = QApplication.primaryScreen()
        if screen is None:
            return
        geom = screen.availableGeometry()
        self.adjustSize()
        x = geom.x() + (geom.width() - self.width()) // 2
        y = geom.y() + geom.height() - self.height() - 60
        self.move(x, y)

    def set_caption(self, text: str, is_final: bool = False) -> None:
        self._cancel_hide_timer()
        self._label.setStyleSheet(FINAL_STYLE if is_final else CAPTION_STYLE)
        self._label.setText(text)
        self._center_bottom()
        self.show()

    def set_spectrum(self, magnitudes: Sequence[float]) -> None:
        self._spectrum.set_magnitudes(magnitudes)

    def set_elapsed(self, text: str) -> None:
        self._time.setText(text)

    def hide_with_delay(self, delay_ms: int = 1500) -> None:
        self._cancel_hide_timer()
        if QTimer is not None:
            self._hide_timer = QTimer()
            self._hide_timer.setSingleShot(True)
            self._hide_timer.timeout.connect(self.hide)
            self._hide_timer.start(delay_ms)

    def show_error(self, text: str, hide_after_ms: int = 2500) -> None:
        self._label.setStyleSheet(ERROR_STYLE)
        self._label.setText(f"⚠️ {text}")
        self._center_bottom()
        self.show()
        self.hide_with_delay(hide_after_ms)

    def _cancel_hide_timer(self) -> None:
        if self._hide_timer is not None:
            self._hide_timer.stop()
            self._hide_timer = None
