# ui/app_shell.py
from __future__ import annotations

import asyncio
import logging

import flet as ft

from core.settings import SYNC_LOG_PATH, UI
from services.sync_context import SyncContext

from .sync_status import SyncStatusPage


logger = logging.getLogger("agritracker.ui")


class AppShell:
    def __init__(self, page: ft.Page, context: SyncContext):
        self.page = page
        self.context = context
        self.queue = context.coordinator

        self.page.title = UI.app_title
        self.page.horizontal_alignment = ft.CrossAxisAlignment.STRETCH
        self.page.vertical_alignment = ft.MainAxisAlignment.START

        self._status = SyncStatusPage(self)
        self._unsubscribe = self.queue.subscribe(self._on_queue_changed)
        self._monitor_task: asyncio.Task | None = None

        self.page.on_disconnect = self._on_disconnect

    # ---------- queue events ----------
    def _on_queue_changed(self):
        try:
            self._status.refresh()
            self.page.update()
        except Exception as exc:
            logger.warning("Status refresh failed: %s", exc)

    async def _run_sync(self):
        # binds the queue to flet's loop, then keeps probing connectivity
        self.queue.start()
        await self.context.monitor.watch()

    async def _refresh_loop(self):
        while True:
            await asyncio.sleep(UI.status_refresh_sec)
            self._on_queue_changed()

    # ---------- mount ----------
    def mount(self):
        self.page.controls.clear()
        self.page.add(self._status.view)
        self.page.update()
        self._monitor_task = self.page.run_task(self._run_sync)
        self.page.run_task(self._refresh_loop)

    def _on_disconnect(self, _):
        self._unsubscribe()
        self.context.close()

    # ---------- helpers for pages ----------
    def read_sync_log(self, lines: int = 100) -> str:
        try:
            with open(SYNC_LOG_PATH, "r", encoding="utf-8") as fh:
                content = fh.readlines()
        except FileNotFoundError:
            return "The sync log has not been created yet."
        return "\n".join(line.rstrip("\n") for line in content[-lines:])
