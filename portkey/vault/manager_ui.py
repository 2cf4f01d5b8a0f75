"""
PyQt6 server manager window.

Browse, filter, add, edit and delete vault servers, and launch ssh
sessions for them. Started by ``portkey ui``.
"""

from __future__ import annotations
import logging
import sys
from dataclasses import dataclass
from typing import Optional

from PyQt6.QtWidgets import (
    QWidget, QVBoxLayout, QHBoxLayout, QGridLayout,
    QLabel, QLineEdit, QTextEdit, QPushButton, QCheckBox, QSpinBox,
    QTableWidget, QTableWidgetItem, QHeaderView,
    QDialog, QMessageBox, QStackedWidget, QGroupBox,
    QAbstractItemView, QApplication,
)
from PyQt6.QtCore import Qt, pyqtSignal

from ..connection.launcher import SshLauncher
from .errors import AuthError, PasswordRequiredError, VaultError
from .keychain import KeychainIntegration
from .models import Server
from .resolver import ServerResolver
from .store import Vault

logger = logging.getLogger(__name__)

COLUMNS = ["Name", "Host", "Port", "Username", "Tags", "Description"]


@dataclass
class ManagerTheme:
    """Colors and font for the manager window."""
    background_color: str = "#1e1e2e"
    foreground_color: str = "#cdd6f4"
    border_color: str = "#313244"
    accent_color: str = "#89b4fa"
    input_background: str = "#313244"
    button_background: str = "#45475a"
    button_hover: str = "#585b70"
    error_color: str = "#f38ba8"
    muted_color: str = "#7f849c"
    font_family: str = "JetBrains Mono, Cascadia Code, Consolas, monospace"
    font_size: int = 12

    def to_stylesheet(self) -> str:
        """Generate Qt stylesheet from theme."""
        return f"""
            QWidget {{
                background-color: {self.background_color};
                color: {self.foreground_color};
                font-family: {self.font_family};
                font-size: {self.font_size}px;
            }}
            QLineEdit, QTextEdit, QSpinBox {{
                background-color: {self.input_background};
                border: 1px solid {self.border_color};
                border-radius: 4px;
                padding: 6px 10px;
            }}
            QLineEdit:focus, QTextEdit:focus, QSpinBox:focus {{
                border-color: {self.accent_color};
            }}
            QPushButton {{
                background-color: {self.button_background};
                border: 1px solid {self.border_color};
                border-radius: 4px;
                padding: 8px 16px;
                min-width: 80px;
            }}
            QPushButton:hover {{
                background-color: {self.button_hover};
                border-color: {self.accent_color};
            }}
            QPushButton:disabled {{
                color: {self.muted_color};
            }}
            QPushButton[primary="true"] {{
                background-color: {self.accent_color};
                color: {self.background_color};
                font-weight: bold;
            }}
            QPushButton[danger="true"] {{
                background-color: {self.error_color};
                color: {self.background_color};
            }}
            QTableWidget {{
                border: 1px solid {self.border_color};
                gridline-color: {self.border_color};
            }}
            QTableWidget::item:selected {{
                background-color: {self.accent_color};
                color: {self.background_color};
            }}
            QHeaderView::section {{
                background-color: {self.input_background};
                padding: 6px;
                border: none;
                border-bottom: 2px solid {self.accent_color};
                font-weight: bold;
            }}
            QGroupBox {{
                border: 1px solid {self.border_color};
                border-radius: 4px;
                margin-top: 12px;
                padding-top: 8px;
            }}
            QGroupBox::title {{
                subcontrol-origin: margin;
                left: 10px;
                color: {self.accent_color};
            }}
            QLabel[heading="true"] {{
                font-size: {self.font_size + 4}px;
                font-weight: bold;
                color: {self.accent_color};
            }}
            QLabel[subheading="true"] {{
                color: {self.muted_color};
            }}
        """


class UnlockDialog(QDialog):
    """Master password prompt, or password setup when creating a vault."""

    def __init__(
        self,
        parent: QWidget = None,
        theme: ManagerTheme = None,
        is_init: bool = False,
        offer_remember: bool = False,
    ):
        super().__init__(parent)
        self.theme = theme or ManagerTheme()
        self.is_init = is_init
        self.offer_remember = offer_remember
        self._setup_ui()

    def _setup_ui(self):
        self.setWindowTitle("Create Vault" if self.is_init else "Unlock Vault")
        self.setMinimumWidth(400)
        self.setStyleSheet(self.theme.to_stylesheet())

        layout = QVBoxLayout(self)
        layout.setSpacing(16)
        layout.setContentsMargins(24, 24, 24, 24)

        title = QLabel("Create Master Password" if self.is_init else "Enter Master Password")
        title.setProperty("heading", True)
        layout.addWidget(title)

        self.password_input = QLineEdit()
        self.password_input.setEchoMode(QLineEdit.EchoMode.Password)
        self.password_input.setPlaceholderText("Master password")
        layout.addWidget(self.password_input)

        self.confirm_input = None
        self.no_password_check = None
        if self.is_init:
            self.confirm_input = QLineEdit()
            self.confirm_input.setEchoMode(QLineEdit.EchoMode.Password)
            self.confirm_input.setPlaceholderText("Confirm password")
            layout.addWidget(self.confirm_input)

            self.no_password_check = QCheckBox("Store servers without a password (not encrypted)")
            self.no_password_check.toggled.connect(self._on_no_password_toggled)
            layout.addWidget(self.no_password_check)

        self.remember_check = None
        if self.offer_remember:
            self.remember_check = QCheckBox("Remember password in system keychain")
            layout.addWidget(self.remember_check)

        self.error_label = QLabel()
        self.error_label.setStyleSheet(f"color: {self.theme.error_color};")
        self.error_label.hide()
        layout.addWidget(self.error_label)

        btn_layout = QHBoxLayout()
        btn_layout.addStretch()

        cancel_btn = QPushButton("Cancel")
        cancel_btn.clicked.connect(self.reject)
        btn_layout.addWidget(cancel_btn)

        ok_btn = QPushButton("Create Vault" if self.is_init else "Unlock")
        ok_btn.setProperty("primary", True)
        ok_btn.clicked.connect(self._validate_and_accept)
        btn_layout.addWidget(ok_btn)

        layout.addLayout(btn_layout)

        self.password_input.returnPressed.connect(self._validate_and_accept)

    def _on_no_password_toggled(self, checked: bool):
        self.password_input.setEnabled(not checked)
        self.confirm_input.setEnabled(not checked)
        if self.remember_check:
            self.remember_check.setEnabled(not checked)

    def _validate_and_accept(self):
        if self.use_no_password():
            self.accept()
            return

        password = self.password_input.text()
        if not password:
            self._show_error("Password is required")
            return
        if self.is_init and password != self.confirm_input.text():
            self._show_error("Passwords don't match")
            return

        self.accept()

    def _show_error(self, message: str):
        self.error_label.setText(message)
        self.error_label.show()

    def use_no_password(self) -> bool:
        return bool(self.no_password_check and self.no_password_check.isChecked())

    def get_password(self) -> Optional[str]:
        return None if self.use_no_password() else self.password_input.text()

    def should_remember(self) -> bool:
        return bool(self.remember_check and self.remember_check.isChecked())


class ServerDialog(QDialog):
    """Add or edit one server."""

    def __init__(
        self,
        parent: QWidget = None,
        theme: ManagerTheme = None,
        server: Server = None,
    ):
        super().__init__(parent)
        self.theme = theme or ManagerTheme()
        self.server = server
        self.is_edit = server is not None
        self._setup_ui()

        if server:
            self._populate(server)

    def _setup_ui(self):
        self.setWindowTitle("Edit Server" if self.is_edit else "Add Server")
        self.setMinimumWidth(480)
        self.setStyleSheet(self.theme.to_stylesheet())

        layout = QVBoxLayout(self)
        layout.setSpacing(16)
        layout.setContentsMargins(24, 24, 24, 24)

        conn_group = QGroupBox("Connection")
        grid = QGridLayout(conn_group)
        grid.setSpacing(12)

        grid.addWidget(QLabel("Name:"), 0, 0)
        self.name_input = QLineEdit()
        self.name_input.setPlaceholderText("e.g., db1")
        grid.addWidget(self.name_input, 0, 1)

        grid.addWidget(QLabel("Host:"), 1, 0)
        self.host_input = QLineEdit()
        self.host_input.setPlaceholderText("Hostname or IP")
        grid.addWidget(self.host_input, 1, 1)

        grid.addWidget(QLabel("Port:"), 2, 0)
        self.port_input = QSpinBox()
        self.port_input.setRange(1, 65535)
        self.port_input.setValue(22)
        grid.addWidget(self.port_input, 2, 1)

        grid.addWidget(QLabel("Username:"), 3, 0)
        self.username_input = QLineEdit()
        grid.addWidget(self.username_input, 3, 1)

        grid.addWidget(QLabel("Password:"), 4, 0)
        self.password_input = QLineEdit()
        self.password_input.setEchoMode(QLineEdit.EchoMode.Password)
        grid.addWidget(self.password_input, 4, 1)

        layout.addWidget(conn_group)

        notes_group = QGroupBox("Notes")
        notes = QGridLayout(notes_group)
        notes.setSpacing(12)

        notes.addWidget(QLabel("Tags:"), 0, 0)
        self.tags_input = QLineEdit()
        self.tags_input.setPlaceholderText("Comma-separated: production, linux")
        notes.addWidget(self.tags_input, 0, 1)

        notes.addWidget(QLabel("Description:"), 1, 0)
        self.description_input = QTextEdit()
        self.description_input.setMaximumHeight(80)
        notes.addWidget(self.description_input, 1, 1)

        layout.addWidget(notes_group)

        self.error_label = QLabel()
        self.error_label.setStyleSheet(f"color: {self.theme.error_color};")
        self.error_label.hide()
        layout.addWidget(self.error_label)

        btn_layout = QHBoxLayout()
        btn_layout.addStretch()

        cancel_btn = QPushButton("Cancel")
        cancel_btn.clicked.connect(self.reject)
        btn_layout.addWidget(cancel_btn)

        save_btn = QPushButton("Save" if self.is_edit else "Add")
        save_btn.setProperty("primary", True)
        save_btn.clicked.connect(self._validate_and_accept)
        btn_layout.addWidget(save_btn)

        layout.addLayout(btn_layout)

    def _populate(self, server: Server):
        self.name_input.setText(server.name)
        self.host_input.setText(server.host)
        self.port_input.setValue(server.port)
        self.username_input.setText(server.username)
        if server.has_password:
            self.password_input.setPlaceholderText("(unchanged - enter new to replace)")
        self.tags_input.setText(", ".join(server.tags))
        self.description_input.setPlainText(server.description or "")

    def _validate_and_accept(self):
        for label, widget in (
            ("Name", self.name_input),
            ("Host", self.host_input),
            ("Username", self.username_input),
        ):
            if not widget.text().strip():
                self._show_error(f"{label} is required")
                return
        self.accept()

    def _show_error(self, message: str):
        self.error_label.setText(message)
        self.error_label.show()

    def get_server(self) -> Server:
        """
        Build the server from the form.

        On edit the result keeps the original id, and the old password
        unless a new one was entered.
        """
        password = self.password_input.text()
        if self.is_edit and not password:
            password = self.server.password

        description = self.description_input.toPlainText().strip()
        return Server(
            name=self.name_input.text().strip(),
            host=self.host_input.text().strip(),
            port=self.port_input.value(),
            username=self.username_input.text().strip(),
            password=password,
            description=description or None,
            tags=[t.strip() for t in self.tags_input.text().split(",") if t.strip()],
            id=self.server.id if self.is_edit else None,
        )


class ServerManagerWidget(QWidget):
    """
    Main server manager widget.

    Signals:
        server_selected: Emitted with the server id when a row is selected
        vault_unlocked: Emitted when the vault is unlocked or created
    """

    server_selected = pyqtSignal(str)
    vault_unlocked = pyqtSignal()

    def __init__(
        self,
        vault: Vault,
        launcher: SshLauncher = None,
        theme: ManagerTheme = None,
        use_keychain: bool = True,
        parent: QWidget = None,
    ):
        super().__init__(parent)
        self.vault = vault
        self.resolver = ServerResolver(vault)
        self.launcher = launcher or SshLauncher()
        self.theme = theme or ManagerTheme()
        self.keychain = KeychainIntegration(vault.path)
        self.use_keychain = use_keychain and KeychainIntegration.is_available()
        self._setup_ui()
        self._refresh_state()

    def _setup_ui(self):
        self.setStyleSheet(self.theme.to_stylesheet())

        layout = QVBoxLayout(self)
        layout.setSpacing(16)
        layout.setContentsMargins(16, 16, 16, 16)

        title = QLabel("Server Vault")
        title.setProperty("heading", True)
        layout.addWidget(title)

        self.status_label = QLabel()
        self.status_label.setProperty("subheading", True)
        layout.addWidget(self.status_label)

        self.stack = QStackedWidget()

        # Locked view
        locked_widget = QWidget()
        locked_layout = QVBoxLayout(locked_widget)
        locked_layout.addStretch()

        locked_msg = QLabel("Vault is locked")
        locked_msg.setAlignment(Qt.AlignmentFlag.AlignCenter)
        locked_msg.setProperty("heading", True)
        locked_layout.addWidget(locked_msg)

        self.unlock_btn = QPushButton("Unlock Vault")
        self.unlock_btn.setProperty("primary", True)
        self.unlock_btn.setMaximumWidth(200)
        self.unlock_btn.clicked.connect(self._show_unlock_dialog)
        locked_layout.addWidget(self.unlock_btn, alignment=Qt.AlignmentFlag.AlignCenter)

        locked_layout.addStretch()
        self.stack.addWidget(locked_widget)

        # Unlocked view
        unlocked_widget = QWidget()
        unlocked_layout = QVBoxLayout(unlocked_widget)
        unlocked_layout.setSpacing(12)

        toolbar = QHBoxLayout()

        self.filter_input = QLineEdit()
        self.filter_input.setPlaceholderText("Filter (fuzzy, or glob like web-*)")
        self.filter_input.textChanged.connect(self._refresh_servers)
        toolbar.addWidget(self.filter_input, stretch=1)

        self.add_btn = QPushButton("Add")
        self.add_btn.clicked.connect(self._add_server)
        toolbar.addWidget(self.add_btn)

        self.edit_btn = QPushButton("Edit")
        self.edit_btn.clicked.connect(self._edit_server)
        toolbar.addWidget(self.edit_btn)

        self.delete_btn = QPushButton("Delete")
        self.delete_btn.setProperty("danger", True)
        self.delete_btn.clicked.connect(self._delete_server)
        toolbar.addWidget(self.delete_btn)

        self.connect_btn = QPushButton("Connect")
        self.connect_btn.setProperty("primary", True)
        self.connect_btn.clicked.connect(self._connect_server)
        toolbar.addWidget(self.connect_btn)

        unlocked_layout.addLayout(toolbar)

        self.table = QTableWidget()
        self.table.setColumnCount(len(COLUMNS))
        self.table.setHorizontalHeaderLabels(COLUMNS)
        header = self.table.horizontalHeader()
        for col in range(len(COLUMNS)):
            header.setSectionResizeMode(col, QHeaderView.ResizeMode.ResizeToContents)
        header.setSectionResizeMode(len(COLUMNS) - 1, QHeaderView.ResizeMode.Stretch)
        self.table.setSelectionBehavior(QAbstractItemView.SelectionBehavior.SelectRows)
        self.table.setSelectionMode(QAbstractItemView.SelectionMode.SingleSelection)
        self.table.setEditTriggers(QAbstractItemView.EditTrigger.NoEditTriggers)
        self.table.itemSelectionChanged.connect(self._on_selection_changed)
        self.table.doubleClicked.connect(self._connect_server)
        unlocked_layout.addWidget(self.table)

        self.stack.addWidget(unlocked_widget)
        layout.addWidget(self.stack)

        if self.use_keychain:
            keychain_label = QLabel(f"System keychain: {KeychainIntegration.get_backend_name()}")
            keychain_label.setProperty("subheading", True)
            layout.addWidget(keychain_label)

        self._on_selection_changed()

    # -------------------------------------------------------------------------
    # Lock state
    # -------------------------------------------------------------------------

    def _refresh_state(self):
        if self.vault.is_unlocked:
            mode = "encrypted" if self.vault.is_encrypted else "NOT encrypted"
            self.status_label.setText(f"{self.vault.path} ({mode})")
            self.stack.setCurrentIndex(1)
            self._refresh_servers()
        elif self.vault.exists():
            self.status_label.setText(f"Vault locked - {self.vault.path}")
            self.unlock_btn.setText("Unlock Vault")
            self.stack.setCurrentIndex(0)
        else:
            self.status_label.setText("No vault yet - create one to start")
            self.unlock_btn.setText("Create Vault")
            self.stack.setCurrentIndex(0)

    def try_auto_unlock(self) -> bool:
        """
        Unlock without prompting: plaintext vaults first, then the keychain.

        Returns:
            True if unlocked
        """
        if not self.vault.exists():
            return False

        try:
            self.vault.unlock(None)
        except PasswordRequiredError:
            password = self.keychain.get_master_password() if self.use_keychain else None
            if not password:
                return False
            try:
                self.vault.unlock(password)
            except AuthError:
                logger.warning("Keychain password no longer unlocks the vault")
                return False

        self.vault_unlocked.emit()
        self._refresh_state()
        return True

    def _show_unlock_dialog(self):
        is_init = not self.vault.exists()
        dialog = UnlockDialog(self, self.theme, is_init=is_init, offer_remember=self.use_keychain)
        if dialog.exec() != QDialog.DialogCode.Accepted:
            return

        password = dialog.get_password()
        try:
            if is_init:
                self.vault.create(password)
            else:
                self.vault.unlock(password)
        except VaultError as e:
            QMessageBox.warning(self, "Vault", str(e))
            return

        if password and dialog.should_remember():
            self.keychain.store_master_password(password)

        self.vault_unlocked.emit()
        self._refresh_state()

    # -------------------------------------------------------------------------
    # Table
    # -------------------------------------------------------------------------

    def _visible_servers(self) -> list[Server]:
        query = self.filter_input.text().strip()
        if query:
            return self.resolver.search(query)
        return self.vault.list_servers()

    def _refresh_servers(self):
        self.table.setRowCount(0)
        if not self.vault.is_unlocked:
            return

        for server in self._visible_servers():
            row = self.table.rowCount()
            self.table.insertRow(row)

            name_item = QTableWidgetItem(server.name)
            name_item.setData(Qt.ItemDataRole.UserRole, server.id)
            self.table.setItem(row, 0, name_item)
            self.table.setItem(row, 1, QTableWidgetItem(server.host))
            self.table.setItem(row, 2, QTableWidgetItem(str(server.port)))
            self.table.setItem(row, 3, QTableWidgetItem(server.username))
            self.table.setItem(row, 4, QTableWidgetItem(", ".join(server.tags)))
            self.table.setItem(row, 5, QTableWidgetItem(server.description or ""))

        self._on_selection_changed()

    def _on_selection_changed(self):
        server_id = self.get_selected_server_id()
        for btn in (self.edit_btn, self.delete_btn, self.connect_btn):
            btn.setEnabled(server_id is not None)
        if server_id:
            self.server_selected.emit(server_id)

    def get_selected_server_id(self) -> Optional[str]:
        row = self.table.currentRow()
        if row < 0 or not self.table.selectedItems():
            return None
        return self.table.item(row, 0).data(Qt.ItemDataRole.UserRole)

    def _selected_server(self) -> Optional[Server]:
        server_id = self.get_selected_server_id()
        if server_id is None:
            return None
        server = self.vault.find_server(server_id)
        if server is None:
            QMessageBox.warning(self, "Error", "Server not found")
            self._refresh_servers()
        return server

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def _add_server(self):
        dialog = ServerDialog(self, self.theme)
        if dialog.exec() != QDialog.DialogCode.Accepted:
            return
        try:
            self.vault.add_server(dialog.get_server())
        except (VaultError, ValueError) as e:
            QMessageBox.critical(self, "Error", f"Failed to add server: {e}")
        self._refresh_servers()

    def _edit_server(self):
        server = self._selected_server()
        if server is None:
            return

        dialog = ServerDialog(self, self.theme, server=server)
        if dialog.exec() != QDialog.DialogCode.Accepted:
            return
        try:
            if not self.vault.replace_server(dialog.get_server()):
                QMessageBox.warning(self, "Error", "Server no longer exists")
        except (VaultError, ValueError) as e:
            QMessageBox.critical(self, "Error", f"Failed to update server: {e}")
        self._refresh_servers()

    def _delete_server(self):
        server = self._selected_server()
        if server is None:
            return

        reply = QMessageBox.question(
            self,
            "Confirm Delete",
            f"Delete server '{server.name}' ({server.host})?\n\nThis cannot be undone.",
            QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No,
            QMessageBox.StandardButton.No,
        )
        if reply != QMessageBox.StandardButton.Yes:
            return
        try:
            self.vault.remove_server(server.id)
        except VaultError as e:
            QMessageBox.critical(self, "Error", f"Failed to delete: {e}")
        self._refresh_servers()

    def _connect_server(self):
        server = self._selected_server()
        if server is None:
            return

        # ssh runs in the terminal that started the window
        self.status_label.setText(f"Connecting to {server.username}@{server.host} - see terminal")
        QApplication.processEvents()
        ok = self.launcher.connect(server)
        self._refresh_state()
        if not ok:
            QMessageBox.warning(
                self, "Connection", f"SSH session to {server.name} failed. See the log for details."
            )


def run_standalone(vault: Vault, launcher: SshLauncher = None, use_keychain: bool = True) -> int:
    """Run the manager as a standalone app and return its exit code."""
    app = QApplication.instance() or QApplication(sys.argv)
    app.setStyle("Fusion")

    window = QWidget()
    window.setWindowTitle("portkey")
    window.setMinimumSize(800, 500)

    layout = QVBoxLayout(window)
    layout.setContentsMargins(0, 0, 0, 0)

    manager = ServerManagerWidget(vault, launcher=launcher, use_keychain=use_keychain)
    manager.try_auto_unlock()
    layout.addWidget(manager)

    window.show()
    return app.exec()
