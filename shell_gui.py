"""PySide6 GUI for the shell game experiment."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional

from PySide6.QtCore import (
    QEasingCurve,
    QPoint,
    QPropertyAnimation,
    QSequentialAnimationGroup,
    QSettings,
    Qt,
)
from PySide6.QtGui import QFont
from PySide6.QtWidgets import (
    QApplication,
    QButtonGroup,
    QFileDialog,
    QFrame,
    QGraphicsOpacityEffect,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QRadioButton,
    QVBoxLayout,
    QWidget,
)

from shell_engine import (
    BOARD_HEIGHT,
    BOARD_WIDTH,
    DEFAULT_MOVE_LIMIT,
    DEFAULT_SPEED_MS,
    MOVE_LIMIT_CHOICES,
    SHELL_SIZE,
    SPEED_CHOICES_MS,
    Board,
    ConfigurationError,
    TrialConfig,
)
from shell_log import EmptyLogError, default_export_filename
from shell_session import RUNNING, GameSession
from shell_telemetry import configure_logging, sink_from_env

SETTINGS_ORG = "shellgame"
SETTINGS_APP = "shell_game_experiment"
BALL_SIZE = 36
REVEAL_LIFT_PX = 60
ENDED_OPACITY = 0.7
SPEED_LABELS = {200: "Very fast", 350: "Fast", 500: "Normal", 650: "Slow"}

logger = logging.getLogger(__name__)


class ShellButton(QPushButton):
    def __init__(self, slot: int, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.slot = slot
        self.setObjectName("Shell")
        self.setFixedSize(SHELL_SIZE, SHELL_SIZE)
        self.setCursor(Qt.ForbiddenCursor)
        self.opacity = QGraphicsOpacityEffect(self)
        self.opacity.setOpacity(1.0)
        self.setGraphicsEffect(self.opacity)

    def set_clickable(self, clickable: bool) -> None:
        self.setCursor(Qt.PointingHandCursor if clickable else Qt.ForbiddenCursor)

    def set_ended(self, ended: bool) -> None:
        self.opacity.setOpacity(ENDED_OPACITY if ended else 1.0)


class ShellGameWindow(QMainWindow):
    def __init__(self) -> None:
        super().__init__()
        self.setWindowTitle("Shell Game Experiment")
        self.setMinimumSize(BOARD_WIDTH + 60, BOARD_HEIGHT + 260)

        self.settings = QSettings(SETTINGS_ORG, SETTINGS_APP)
        self.closing = False
        self.shell_buttons: List[ShellButton] = []
        self.shell_anims: List[object] = []
        self.speed_radios: dict[int, QRadioButton] = {}
        self.moves_radios: dict[int, QRadioButton] = {}

        self._setup_session()
        self._build_ui()
        self._apply_style()
        self._load_persistent_settings()
        self.place_shells(self.session.board)
        self.refresh_ui()

    def _setup_session(self) -> None:
        self.telemetry_sink = sink_from_env()
        self.session = GameSession(
            config=TrialConfig(DEFAULT_MOVE_LIMIT, DEFAULT_SPEED_MS),
            telemetry_sink=self.telemetry_sink,
        )

    def _build_ui(self) -> None:
        root = QWidget(self)
        self.setCentralWidget(root)
        main_layout = QVBoxLayout(root)
        main_layout.setContentsMargins(18, 18, 18, 18)
        main_layout.setSpacing(12)

        title = QLabel("Shell Game Experiment")
        title.setObjectName("Title")
        title.setAlignment(Qt.AlignCenter)
        main_layout.addWidget(title)

        form = QHBoxLayout()
        form.setSpacing(16)

        speed_frame = QFrame()
        speed_frame.setObjectName("FormSection")
        speed_layout = QVBoxLayout(speed_frame)
        self.download_button = QPushButton("Download data (CSV)")
        self.download_button.setObjectName("Secondary")
        self.download_button.clicked.connect(self.download_csv)
        speed_layout.addWidget(self.download_button)
        speed_header = QLabel("Speed")
        speed_header.setObjectName("SideHeader")
        speed_layout.addWidget(speed_header)
        speed_group = QButtonGroup(self)
        for speed_ms in SPEED_CHOICES_MS:
            radio = QRadioButton(f"{SPEED_LABELS[speed_ms]} ({speed_ms}ms)")
            radio.toggled.connect(lambda checked, ms=speed_ms: checked and self.session.set_speed(ms))
            speed_group.addButton(radio)
            speed_layout.addWidget(radio)
            self.speed_radios[speed_ms] = radio
        form.addWidget(speed_frame, 1)

        moves_frame = QFrame()
        moves_frame.setObjectName("FormSection")
        moves_layout = QVBoxLayout(moves_frame)
        self.name_edit = QLineEdit()
        self.name_edit.setPlaceholderText("Participant name")
        self.name_edit.textChanged.connect(self.session.set_participant_name)
        moves_layout.addWidget(self.name_edit)
        moves_header = QLabel("Moves")
        moves_header.setObjectName("SideHeader")
        moves_layout.addWidget(moves_header)
        moves_group = QButtonGroup(self)
        for move_limit in MOVE_LIMIT_CHOICES:
            radio = QRadioButton(f"{move_limit} moves")
            radio.toggled.connect(lambda checked, n=move_limit: checked and self.session.set_difficulty(n))
            moves_group.addButton(radio)
            moves_layout.addWidget(radio)
            self.moves_radios[move_limit] = radio
        form.addWidget(moves_frame, 1)

        main_layout.addLayout(form)

        self.speed_radios[self.session.selected_config.transition_speed_ms].setChecked(True)
        self.moves_radios[self.session.selected_config.move_limit].setChecked(True)

        self.start_button = QPushButton("START")
        self.start_button.setObjectName("Start")
        self.start_button.clicked.connect(self.start_trial)
        main_layout.addWidget(self.start_button, 0, Qt.AlignHCenter)

        self.board_frame = QFrame()
        self.board_frame.setObjectName("Board")
        self.board_frame.setFixedSize(BOARD_WIDTH, BOARD_HEIGHT)
        main_layout.addWidget(self.board_frame, 0, Qt.AlignHCenter)

        self.result_label = QLabel("", self.board_frame)
        self.result_label.setObjectName("Result")
        self.result_label.setAlignment(Qt.AlignCenter)
        self.result_label.setGeometry(0, 8, BOARD_WIDTH, 40)

        self.ball_label = QLabel("", self.board_frame)
        self.ball_label.setObjectName("Ball")
        self.ball_label.setFixedSize(BALL_SIZE, BALL_SIZE)
        self.ball_label.hide()

        for slot in range(self.session.trial.geometry.shell_count):
            button = ShellButton(slot, self.board_frame)
            button.clicked.connect(lambda _, b=button: self.handle_shell_click(b))
            self.shell_buttons.append(button)

        main_layout.addStretch(1)

    def _apply_style(self) -> None:
        app = QApplication.instance()
        if app is not None:
            app.setStyle("Fusion")
            app.setFont(QFont("Avenir", 11))

        self.setStyleSheet(
            """
            QMainWindow { background: #f4efe6; }
            QLabel { color: #2d2013; }
            QLabel#Title { font-size: 22px; font-weight: 700; }
            QLabel#SideHeader { font-weight: 600; margin-top: 6px; }
            QLabel#Result { font-size: 20px; font-weight: 700; }
            QLabel#Ball {
                background: #d9412b;
                border: 2px solid #8e2415;
                border-radius: 18px;
            }
            QFrame#FormSection {
                background: #fffaf1;
                border: 1px solid #d8c7b0;
                border-radius: 10px;
            }
            QFrame#Board {
                background: #3f7356;
                border-radius: 14px;
            }
            QPushButton#Shell {
                background: qlineargradient(x1:0, y1:0, x2:0, y2:1,
                    stop:0 #c48a52, stop:1 #8f5a2c);
                border: 2px solid #5e3a1a;
                border-top-left-radius: 50px;
                border-top-right-radius: 50px;
            }
            QPushButton#Start {
                background: #2f7a45;
                color: #ffffff;
                font-weight: 700;
                border-radius: 8px;
                min-width: 140px;
                min-height: 40px;
            }
            QPushButton#Start:disabled { background: #9fb8a6; }
            QPushButton#Secondary {
                background: #f2e0c2;
                border: 1px solid #b08a5a;
                border-radius: 6px;
                padding: 4px 10px;
            }
            QLineEdit {
                background: #ffffff;
                border: 1px solid #b08a5a;
                border-radius: 6px;
                padding: 4px 6px;
            }
            """
        )

    def start_trial(self) -> None:
        if self.session.trial.phase == RUNNING:
            return
        try:
            board = self.session.start_trial()
        except ConfigurationError as exc:
            QMessageBox.warning(self, "Invalid settings", str(exc))
            return
        self.reveal_ball(board, self.session.trial.layout_generation)
        self.refresh_ui()

    def handle_shell_click(self, button: ShellButton) -> None:
        record = self.session.select_shell(button.slot)
        if record is not None:
            self.refresh_ui()

    def on_shell_settled(self, generation: int, slot: int) -> None:
        if self.closing:
            return
        new_board = self.session.on_animation_settled(generation, slot)
        if new_board is not None:
            self.animate_layout(new_board, self.session.trial.layout_generation)
        self.refresh_ui()

    def _stop_animations(self) -> None:
        for anim in self.shell_anims:
            try:
                anim.finished.disconnect()
            except (RuntimeError, TypeError):
                pass
            anim.stop()
            anim.deleteLater()
        self.shell_anims = []

    def _track(self, anim, generation: int, slot: int) -> None:
        anim.finished.connect(lambda gen=generation, s=slot: self.on_shell_settled(gen, s))
        self.shell_anims.append(anim)

    def reveal_ball(self, board: Board, generation: int) -> None:
        """Lift every shell and put it back; the ball shows under the winner meanwhile."""
        self._stop_animations()
        self.place_shells(board)
        duration = max(1, self.session.trial.config.transition_speed_ms)
        for slot, shell in enumerate(board):
            button = self.shell_buttons[slot]
            home = QPoint(shell.x, shell.y)
            group = QSequentialAnimationGroup(self)
            for start, end in ((home, home - QPoint(0, REVEAL_LIFT_PX)), (home - QPoint(0, REVEAL_LIFT_PX), home)):
                anim = QPropertyAnimation(button, b"pos")
                anim.setDuration(duration)
                anim.setStartValue(start)
                anim.setEndValue(end)
                anim.setEasingCurve(QEasingCurve.InOutQuad)
                group.addAnimation(anim)
            self._track(group, generation, slot)
        for anim in list(self.shell_anims):
            anim.start()

    def animate_layout(self, board: Board, generation: int) -> None:
        self._stop_animations()
        duration = max(1, self.session.trial.config.transition_speed_ms)
        for slot, shell in enumerate(board):
            button = self.shell_buttons[slot]
            anim = QPropertyAnimation(button, b"pos", self)
            anim.setDuration(duration)
            anim.setStartValue(button.pos())
            anim.setEndValue(QPoint(shell.x, shell.y))
            self._track(anim, generation, slot)
        for anim in list(self.shell_anims):
            anim.start()

    def place_shells(self, board: Board) -> None:
        for slot, shell in enumerate(board):
            self.shell_buttons[slot].move(shell.x, shell.y)

    def download_csv(self) -> None:
        try:
            self.session.export_csv()
        except EmptyLogError:
            QMessageBox.information(self, "No data", "No trials have been recorded yet.")
            return

        default_path = str(Path.home() / default_export_filename())
        path_raw, _ = QFileDialog.getSaveFileName(self, "Save trial data", default_path, "CSV files (*.csv)")
        if not path_raw:
            return
        try:
            self.session.save_csv(Path(path_raw))
        except OSError as exc:
            logger.error("could not write %s: %s", path_raw, exc)
            QMessageBox.warning(self, "Export failed", f"Could not write {path_raw}:\n{exc}")

    def refresh_ui(self) -> None:
        self.update_ball()
        self.update_result()
        self.update_controls()

    def update_ball(self) -> None:
        trial = self.session.trial
        winner = trial.winning_index
        selection = trial.selection
        show = trial.is_ball_visible or (selection is not None and selection.has_ball)
        if winner is None or not show:
            self.ball_label.hide()
            return
        shell = trial.board[winner]
        self.ball_label.move(
            shell.x + (SHELL_SIZE - BALL_SIZE) // 2,
            shell.y + SHELL_SIZE - BALL_SIZE,
        )
        self.ball_label.show()
        if trial.is_ball_visible:
            # Sits behind the shells so the lift reveals it.
            self.ball_label.lower()
        else:
            self.ball_label.raise_()

    def update_result(self) -> None:
        selection = self.session.trial.selection
        if selection is None:
            self.result_label.setText("")
        else:
            self.result_label.setText("Correct!" if selection.has_ball else "Wrong!")
        self.result_label.raise_()

    def update_controls(self) -> None:
        trial = self.session.trial
        can_configure = self.session.can_configure
        for radio in list(self.speed_radios.values()) + list(self.moves_radios.values()):
            radio.setEnabled(can_configure)
        self.name_edit.setEnabled(can_configure)
        self.start_button.setEnabled(trial.phase != RUNNING)
        clickable = trial.is_finished and not trial.game_ended
        for button in self.shell_buttons:
            button.set_clickable(clickable)
            button.set_ended(trial.game_ended)

    @staticmethod
    def _to_int(value: object, default: int) -> int:
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                return default
        return default

    def _load_persistent_settings(self) -> None:
        geometry = self.settings.value("window/geometry")
        if geometry is not None:
            self.restoreGeometry(geometry)

        name = self.settings.value("participant/name")
        if isinstance(name, str):
            self.name_edit.setText(name)

        speed = self._to_int(self.settings.value("trial/speed_ms"), DEFAULT_SPEED_MS)
        if speed in self.speed_radios:
            self.speed_radios[speed].setChecked(True)

        moves = self._to_int(self.settings.value("trial/move_limit"), DEFAULT_MOVE_LIMIT)
        if moves in self.moves_radios:
            self.moves_radios[moves].setChecked(True)

    def _save_persistent_settings(self) -> None:
        config = self.session.selected_config
        self.settings.setValue("window/geometry", self.saveGeometry())
        self.settings.setValue("participant/name", self.name_edit.text())
        self.settings.setValue("trial/speed_ms", config.transition_speed_ms)
        self.settings.setValue("trial/move_limit", config.move_limit)
        self.settings.sync()

    def closeEvent(self, event) -> None:
        if self.closing:
            event.accept()
            return
        self.closing = True
        self._stop_animations()
        self._save_persistent_settings()
        if self.telemetry_sink is not None:
            self.telemetry_sink.close()
            self.telemetry_sink = None
        super().closeEvent(event)


def main() -> int:
    configure_logging()
    app = QApplication(sys.argv)
    window = ShellGameWindow()
    window.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
