# ui/sync_status.py
from __future__ import annotations

import json
from datetime import timezone

import flet as ft

from models.sync_operation import OperationStatus, OperationType


STATUS_COLORS = {
    OperationStatus.PENDING: ft.Colors.AMBER_700,
    OperationStatus.IN_PROGRESS: ft.Colors.BLUE_700,
    OperationStatus.FAILED: ft.Colors.RED_700,
}


class SyncStatusPage:
    def __init__(self, app):
        self.app = app

        self.connection = ft.Text(weight=ft.FontWeight.W_600)
        self.counters = ft.Text()
        self.last_sync = ft.Text()
        self.operations = ft.ListView(expand=True, spacing=4)
        self.log_view = ft.Text("", selectable=True)

        self.sync_btn = ft.ElevatedButton("Sync now", icon=ft.Icons.SYNC, on_click=self.sync_now)
        self.clear_btn = ft.OutlinedButton(
            "Clear dead operations",
            icon=ft.Icons.DELETE_SWEEP_OUTLINED,
            on_click=self.clear_dead,
        )

        self.type_field = ft.Dropdown(
            label="Type",
            width=140,
            value=OperationType.CREATE.value,
            options=[ft.dropdown.Option(t.value) for t in OperationType],
        )
        self.collection_field = ft.TextField(label="Collection", width=220)
        self.payload_field = ft.TextField(label="Payload (JSON)", expand=True, value="{}")
        self.queue_btn = ft.TextButton("Queue", icon=ft.Icons.ADD, on_click=self.queue_operation)

        content = ft.Column(
            controls=[
                ft.Text("Offline sync", size=24, weight=ft.FontWeight.BOLD),
                self.connection,
                self.counters,
                self.last_sync,
                ft.Row([self.sync_btn, self.clear_btn], spacing=12),
                ft.Text("Queued operations", size=18, weight=ft.FontWeight.W_600),
                ft.Container(self.operations, height=220, padding=10, bgcolor=ft.Colors.SURFACE_CONTAINER_HIGHEST),
                ft.Row([self.type_field, self.collection_field, self.payload_field, self.queue_btn]),
                ft.Text("Sync log", size=18, weight=ft.FontWeight.W_600),
                ft.Container(self.log_view, height=160, padding=10, bgcolor=ft.Colors.SURFACE_CONTAINER_HIGHEST),
            ],
            expand=True,
            spacing=12,
            scroll=ft.ScrollMode.AUTO,
        )
        self.view = ft.Container(content=content, expand=True, padding=20)
        self.refresh()

    def _format_dt(self, value) -> str:
        if not value:
            return "—"
        if getattr(value, "tzinfo", None) is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")

    def _operation_row(self, op) -> ft.Control:
        label = f"{op.type.value} {op.collection} · attempts {op.retry_count}/{self.app.queue.max_retries}"
        if op.last_error:
            label += f" · {op.last_error}"
        return ft.Row(
            [
                ft.Container(
                    ft.Text(op.status.value, size=12, color=ft.Colors.WHITE),
                    bgcolor=STATUS_COLORS.get(op.status, ft.Colors.GREY_700),
                    padding=ft.padding.symmetric(horizontal=6, vertical=2),
                    border_radius=4,
                ),
                ft.Text(label, size=13, expand=True),
            ],
            spacing=8,
        )

    def refresh(self):
        status = self.app.queue.status()
        online = "Online" if status.get("isOnline") else "Offline"
        syncing = " · syncing…" if status.get("isSyncing") else ""
        self.connection.value = f"{online}{syncing}"
        self.counters.value = (
            f"Pending: {status['pending']}   Failed: {status['failed']}   "
            f"Gave up: {status['dead']}   Total: {status['total']}"
        )
        self.last_sync.value = "Last successful sync: " + self._format_dt(status.get("lastSync"))
        self.operations.controls = [self._operation_row(op) for op in self.app.queue.snapshot()]
        self.clear_btn.disabled = status["dead"] == 0
        self.log_view.value = self.app.read_sync_log()

    def _toast(self, message: str):
        self.app.page.snack_bar = ft.SnackBar(ft.Text(message))
        self.app.page.snack_bar.open = True
        self.app.page.update()

    def sync_now(self, _):
        if not self.app.queue.monitor.is_online:
            self._toast("Offline: operations will sync when the connection returns")
            return
        self.app.page.run_task(self.app.queue.sync_now)

    def clear_dead(self, _):
        removed = self.app.queue.clear_failed()
        self._toast(f"Removed {removed} operations")

    def queue_operation(self, _):
        collection = (self.collection_field.value or "").strip()
        if not collection:
            self.collection_field.error_text = "Required"
            self.app.page.update()
            return
        try:
            payload = json.loads(self.payload_field.value or "{}")
            if not isinstance(payload, dict):
                raise ValueError("payload must be a JSON object")
        except ValueError as exc:
            self.payload_field.error_text = str(exc)
            self.app.page.update()
            return
        self.collection_field.error_text = None
        self.payload_field.error_text = None
        op_id = self.app.queue.enqueue(self.type_field.value, collection, payload)
        self._toast(f"Queued {op_id[:8]}")
