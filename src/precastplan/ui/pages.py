from __future__ import annotations

from contextlib import contextmanager

from nicegui import ui

from precastplan.data.repository import Repository
from precastplan.scheduler.service import ScheduleService


IMPORT_KINDS: list[tuple[str, str, str]] = [
    ("molds", "Molds", "mold_id, code, max_height, max_width, max_length, capacity, setup_minutes, is_available"),
    ("work_orders", "Work orders", "work_order_id, priority, urgency, deadline, is_active"),
    ("piece_requests", "Piece requests", "request_id, work_order_id, height, width, length, quantity, unit_minutes"),
    ("calendar", "Calendar", "day, is_holiday, name, shift_start, shift_end"),
]


def render_nav(*, active: str) -> None:
    with ui.header().classes("items-center gap-4 bg-white text-slate-900"):
        ui.label("Precast planner").classes("text-lg font-semibold")
        for key, label, target in (("home", "Schedule runs", "/"), ("data", "Data", "/data")):
            btn = ui.button(label, on_click=lambda t=target: ui.navigate.to(t)).props("flat")
            if key == active:
                btn.props("color=primary")


@contextmanager
def page_container():
    with ui.column().classes("w-full max-w-[1200px] mx-auto p-4 gap-4"):
        yield


def register_pages(repo: Repository, service: ScheduleService) -> None:
    @ui.page("/")
    def home() -> None:
        render_nav(active="home")
        with page_container():
            ui.label("Schedule runs").classes("text-2xl font-semibold")

            summary = ui.column().classes("gap-2")

            def render_summary() -> None:
                summary.clear()
                run = repo.get_last_run()
                with summary:
                    if run is None:
                        ui.label("No schedule run yet.").classes("text-slate-600")
                        return
                    ui.label(
                        f"Run {run['run_id']} as of {run['asof']}: {run['batch_count']} batches, "
                        f"{run['skipped_requests']} skipped requests ({run['status']})"
                    )
                    if run["failures"]:
                        columns = [
                            {"name": k, "label": k, "field": k, "align": "left"}
                            for k in ("error", "request_id", "batch_id", "mold_id", "message")
                        ]
                        ui.table(columns=columns, rows=run["failures"], row_key="message").classes("w-full")

            async def do_reschedule() -> None:
                try:
                    result = await service.reschedule_async()
                except ValueError as ex:
                    ui.notify(f"Reschedule failed: {ex}", color="negative")
                    return
                ui.notify(f"Run {result.run_id}: {result.batch_count} batches, {len(result.failures)} failures")
                render_summary()

            ui.button("Reschedule", on_click=do_reschedule).props("color=primary")
            render_summary()

    @ui.page("/data")
    def data() -> None:
        render_nav(active="data")
        with page_container():
            ui.label("Load data").classes("text-2xl font-semibold")

            def uploader(kind: str, label: str):
                async def handle_upload(e):
                    try:
                        content = await e.file.read()
                        n = repo.import_excel_bytes(kind=kind, content=content)
                        ui.notify(f"Imported {label}: {n} rows")
                    except ValueError as ex:
                        ui.notify(f"Error importing {label}: {ex}", color="negative")

                ui.upload(label=label, on_upload=handle_upload).props("accept=.xlsx max-files=1")

            with ui.row().classes("w-full gap-4 items-stretch"):
                for kind, label, columns in IMPORT_KINDS:
                    with ui.card().classes("p-4 w-[min(520px,100%)]"):
                        ui.label(label).classes("text-lg font-semibold")
                        ui.label(f"Columns: {columns}").classes("text-slate-600")
                        uploader(kind, label)
