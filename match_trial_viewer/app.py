from __future__ import annotations

import argparse
import logging
import queue
import re
import sys
import webbrowser
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import tkinter as tk
from tkinter import filedialog, messagebox, ttk
from tkinter import font as tkfont

from PIL import Image, ImageTk

try:
    from tkinterdnd2 import DND_TEXT, TkinterDnD
    DND_AVAILABLE = True
except ImportError:  # pragma: no cover - depends on optional dependency
    DND_AVAILABLE = False
    DND_TEXT = None
    TkinterDnD = None

from .client import MatchTrialClient
from .config import ViewerConfig, parse_geometry
from .core import MATCH_LINE_WIDTH, PilSurface
from .form import TILE_FIELDS, TrialParametersForm, form_values_for
from .formatting import deleted_trial_label, trial_summary_text
from .handoff import HandoffPort
from .models import TrialParameters, TrialResult
from .session import ImmediateScheduler, TrialSession

log = logging.getLogger(__name__)

URL_KEYS = [field.key for field in TILE_FIELDS if field.key.endswith("RenderParametersUrl")]


def normalize_drop_url(value: str) -> str:
    value = value.strip().strip("{}").strip().strip("<>")
    if value.startswith(("http://", "https://")):
        return value
    return ""


def parse_drop_urls(data: str) -> List[str]:
    if not data:
        return []
    tokens = re.findall(r"{[^}]+}|\S+", data)
    urls = [normalize_drop_url(token) for token in tokens]
    return [url for url in urls if url]


@dataclass
class UiTokens:
    pad_sm: int = 6
    pad_md: int = 12
    pad_lg: int = 18
    sidebar_width: int = 360
    canvas_min_w: int = 640
    canvas_min_h: int = 420
    poll_ms: int = 50
    max_workers: int = 4


@dataclass
class UiColors:
    bg: str = "#F4F1EC"
    panel: str = "#FBF9F5"
    text: str = "#1E1914"
    muted: str = "#6F665F"
    accent: str = "#C06A33"
    accent_dark: str = "#A15426"
    error: str = "#B3261E"
    link: str = "#1F5FA8"
    canvas_bg: str = "#14110D"
    canvas_border: str = "#D1C9BF"


class TkCanvasSurface:
    """Drawing surface backed by a Tk canvas."""

    def __init__(self, canvas: tk.Canvas) -> None:
        self.canvas = canvas
        self._photos: List[ImageTk.PhotoImage] = []

    def resize(self, width: int, height: int) -> None:
        self.canvas.configure(scrollregion=(0, 0, width, height))

    def clear(self) -> None:
        self.canvas.delete("all")
        self._photos.clear()

    def draw_image(self, image: Image.Image, x: float, y: float) -> None:
        photo = ImageTk.PhotoImage(image)
        self._photos.append(photo)
        self.canvas.create_image(x, y, image=photo, anchor="nw")

    def stroke_circle(self, x: float, y: float, radius: float, color: str) -> None:
        self.canvas.create_oval(x - radius, y - radius, x + radius, y + radius, outline=color, width=MATCH_LINE_WIDTH)

    def stroke_line(self, x0: float, y0: float, x1: float, y1: float, color: str) -> None:
        self.canvas.create_line(x0, y0, x1, y1, fill=color, width=MATCH_LINE_WIDTH)


class TkScheduler:
    """Runs blocking work on a thread pool and delivers results on the Tk thread."""

    def __init__(self, widget: tk.Misc, poll_ms: int = 50, max_workers: int = 4) -> None:
        self.widget = widget
        self.poll_ms = poll_ms
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="match-trial")
        self._done: queue.Queue = queue.Queue()
        self._job: Optional[str] = self.widget.after(self.poll_ms, self._drain)

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> None:
        self.widget.after(delay_ms, callback)

    def submit(
        self,
        work: Callable[[], Any],
        on_success: Callable[[Any], None],
        on_error: Callable[[BaseException], None],
    ) -> None:
        future = self._executor.submit(work)
        future.add_done_callback(lambda done: self._done.put((done, on_success, on_error)))

    def _drain(self) -> None:
        try:
            while True:
                try:
                    future, on_success, on_error = self._done.get_nowait()
                except queue.Empty:
                    break
                try:
                    self._deliver(future, on_success, on_error)
                except Exception:
                    log.exception("Background task callback failed")
        finally:
            self._job = self.widget.after(self.poll_ms, self._drain)

    def _deliver(self, future: Future, on_success: Callable[[Any], None], on_error: Callable[[BaseException], None]) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            on_error(exc)
        else:
            on_success(future.result())

    def shutdown(self) -> None:
        if self._job is not None:
            self.widget.after_cancel(self._job)
            self._job = None
        self._executor.shutdown(wait=False, cancel_futures=True)


class MatchTrialViewerApp(ttk.Frame):
    def __init__(
        self,
        master: tk.Misc,
        config: ViewerConfig,
        client: Optional[MatchTrialClient] = None,
    ) -> None:
        super().__init__(master)
        self.master = master
        self.tokens = UiTokens()
        self.colors = UiColors()
        self.viewer_config = config
        self.client = client or MatchTrialClient(config.base_url, config.owner, timeout=config.request_timeout)
        self.handoff_port = HandoffPort()
        self.dnd_enabled = False
        self.saved_url: Optional[str] = None

        self.trial_var = tk.StringVar(value="New Match Trial" if config.is_new_trial else f"Match Trial {config.trial_id}")
        self.status_var = tk.StringVar(value="Ready")
        self.saved_var = tk.StringVar(value="")

        self.sidebar_canvas: Optional[tk.Canvas] = None
        self.sidebar_inner: Optional[ttk.Frame] = None
        self._sidebar_window: Optional[int] = None

        self._build_ui()
        self.scheduler = TkScheduler(self, poll_ms=self.tokens.poll_ms, max_workers=self.tokens.max_workers)
        self.surface = TkCanvasSurface(self.canvas)
        self.session = TrialSession(config, self.client, self.scheduler, self.surface, self)
        self._bind_keys()
        self._configure_drag_drop()
        self.bind("<Destroy>", self._on_destroy, add=True)
        self.after_idle(self._start)

    def _start(self) -> None:
        self.handoff_port.listen(self.session.init_new_trial_form)
        if self.viewer_config.is_new_trial:
            self._set_status("Enter trial parameters and run a new trial.")
        else:
            self.session.load_trial(self.viewer_config.trial_id)

    def _build_ui(self) -> None:
        self.master.title("Match Trial Viewer")
        self.master.minsize(1024, 700)
        self.master.configure(background=self.colors.bg)

        style = ttk.Style(self.master)
        if "clam" in style.theme_names():
            style.theme_use("clam")
        self._setup_fonts()

        style.configure("Viewer.TFrame", background=self.colors.bg)
        style.configure("Panel.TFrame", background=self.colors.panel)
        style.configure("Viewer.TLabel", background=self.colors.bg, foreground=self.colors.text, font=self.fonts["body"])
        style.configure("Panel.TLabel", background=self.colors.panel, foreground=self.colors.text, font=self.fonts["body"])
        style.configure(
            "PanelMuted.TLabel",
            background=self.colors.panel,
            foreground=self.colors.muted,
            font=self.fonts["caption"],
        )
        style.configure(
            "Muted.TLabel",
            background=self.colors.bg,
            foreground=self.colors.muted,
            font=self.fonts["caption"],
        )
        style.configure(
            "Error.TLabel",
            background=self.colors.panel,
            foreground=self.colors.error,
            font=self.fonts["caption"],
        )
        style.configure(
            "Link.TLabel",
            background=self.colors.panel,
            foreground=self.colors.link,
            font=self.fonts["caption"],
        )
        style.configure(
            "Viewer.TLabelframe",
            background=self.colors.panel,
            foreground=self.colors.text,
            font=self.fonts["section"],
        )
        style.configure(
            "Viewer.TLabelframe.Label",
            background=self.colors.panel,
            foreground=self.colors.text,
            font=self.fonts["section"],
        )
        style.configure(
            "Viewer.TEntry",
            fieldbackground="#FFFFFF",
            background=self.colors.panel,
            foreground=self.colors.text,
            padding=6,
        )
        style.configure(
            "Primary.TButton",
            background=self.colors.accent,
            foreground="#FFFFFF",
            padding=(12, 6),
            font=self.fonts["button"],
        )
        style.map(
            "Primary.TButton",
            background=[("active", self.colors.accent_dark)],
            foreground=[("active", "#FFFFFF")],
        )
        style.configure(
            "Secondary.TButton",
            background=self.colors.panel,
            foreground=self.colors.text,
            padding=(10, 6),
            font=self.fonts["button"],
        )
        style.configure(
            "Panel.TCheckbutton",
            background=self.colors.panel,
            foreground=self.colors.text,
            font=self.fonts["body"],
        )

        self.pack(fill="both", expand=True)
        self.configure(style="Viewer.TFrame")

        header = ttk.Frame(self, style="Viewer.TFrame")
        header.pack(fill="x", padx=self.tokens.pad_lg, pady=(self.tokens.pad_lg, self.tokens.pad_md))

        title = ttk.Label(header, textvariable=self.trial_var, style="Viewer.TLabel")
        title.configure(font=self.fonts["title"])
        title.pack(side="left")

        button_bar = ttk.Frame(header, style="Viewer.TFrame")
        button_bar.pack(side="right")

        self._header_button(button_bar, "Previous", lambda: self.session.draw_selected_matches(-1))
        self._header_button(button_bar, "Next", lambda: self.session.draw_selected_matches(1))
        self._header_button(button_bar, "All matches", lambda: self.session.draw_all_matches())
        self.lines_button = self._header_button(button_bar, "Lines", lambda: self.session.toggle_lines_and_points())
        self._header_button(button_bar, "New trial", lambda: self.session.open_new_trial_window())
        self.delete_button = self._header_button(button_bar, "Delete trial", self._delete_trial)
        self.delete_button.configure(state="disabled")
        self._header_button(button_bar, "Save to collection", self._save_to_collection)
        ttk.Button(button_bar, text="Export PNG", command=self._export_png, style="Primary.TButton").pack(side="left")

        body = ttk.Frame(self, style="Viewer.TFrame")
        body.pack(fill="both", expand=True, padx=self.tokens.pad_lg, pady=(0, self.tokens.pad_lg))

        canvas_container = ttk.Frame(body, style="Viewer.TFrame")
        canvas_container.pack(side="left", fill="both", expand=True)

        self.canvas = tk.Canvas(
            canvas_container,
            width=self.tokens.canvas_min_w,
            height=self.tokens.canvas_min_h,
            background=self.colors.canvas_bg,
            highlightthickness=2,
            highlightbackground=self.colors.canvas_border,
            takefocus=1,
        )
        h_scrollbar = ttk.Scrollbar(canvas_container, orient="horizontal", command=self.canvas.xview)
        v_scrollbar = ttk.Scrollbar(canvas_container, orient="vertical", command=self.canvas.yview)
        self.canvas.configure(xscrollcommand=h_scrollbar.set, yscrollcommand=v_scrollbar.set)

        canvas_container.grid_rowconfigure(0, weight=1)
        canvas_container.grid_columnconfigure(0, weight=1)
        self.canvas.grid(row=0, column=0, sticky="nsew")
        v_scrollbar.grid(row=0, column=1, sticky="ns")
        h_scrollbar.grid(row=1, column=0, sticky="ew")
        self.canvas.bind("<Button-1>", lambda _: self.canvas.focus_set())

        sidebar = ttk.Frame(body, style="Panel.TFrame", width=self.tokens.sidebar_width)
        sidebar.pack(side="right", fill="y", padx=(self.tokens.pad_md, 0))
        sidebar.pack_propagate(False)
        sidebar.grid_rowconfigure(0, weight=1)
        sidebar.grid_columnconfigure(0, weight=1)
        sidebar.grid_columnconfigure(1, minsize=14)

        self.sidebar_canvas = tk.Canvas(sidebar, background=self.colors.panel, highlightthickness=0)
        sidebar_scrollbar = ttk.Scrollbar(sidebar, orient="vertical", command=self.sidebar_canvas.yview)
        self.sidebar_canvas.configure(yscrollcommand=sidebar_scrollbar.set)
        self.sidebar_canvas.grid(row=0, column=0, sticky="nsew")
        sidebar_scrollbar.grid(row=0, column=1, sticky="ns")

        self.sidebar_inner = ttk.Frame(self.sidebar_canvas, style="Panel.TFrame")
        self._sidebar_window = self.sidebar_canvas.create_window((0, 0), window=self.sidebar_inner, anchor="nw")
        self.sidebar_inner.bind("<Configure>", self._on_sidebar_configure)
        self.sidebar_canvas.bind("<Configure>", self._on_sidebar_canvas_configure)
        self.master.bind_all("<MouseWheel>", self._on_sidebar_mousewheel, add=True)
        self.master.bind_all("<Button-4>", self._on_sidebar_mousewheel_linux, add=True)
        self.master.bind_all("<Button-5>", self._on_sidebar_mousewheel_linux, add=True)

        self._build_sidebar(self.sidebar_inner)
        self._on_sidebar_configure(None)

        status_frame = ttk.Frame(self, style="Viewer.TFrame")
        status_frame.pack(fill="x", padx=self.tokens.pad_lg, pady=(0, self.tokens.pad_sm))
        ttk.Label(status_frame, textvariable=self.status_var, style="Muted.TLabel").pack(anchor="w")

    def _header_button(self, parent: ttk.Frame, text: str, command: Callable[[], None]) -> ttk.Button:
        button = ttk.Button(parent, text=text, command=command, style="Secondary.TButton")
        button.pack(side="left", padx=(0, self.tokens.pad_sm))
        return button

    def _build_sidebar(self, parent: ttk.Frame) -> None:
        summary_frame = ttk.LabelFrame(parent, text="Trial Summary", style="Viewer.TLabelframe")
        summary_frame.pack(fill="x", pady=(0, self.tokens.pad_md))
        self.summary_text = tk.Text(
            summary_frame,
            height=14,
            wrap="word",
            background=self.colors.panel,
            foreground=self.colors.text,
            relief="flat",
            font=self.fonts["caption"],
        )
        self.summary_text.pack(fill="x", padx=self.tokens.pad_sm, pady=self.tokens.pad_sm)
        self.summary_text.configure(state="disabled")
        ttk.Label(summary_frame, textvariable=self.saved_var, style="PanelMuted.TLabel").pack(
            anchor="w", padx=self.tokens.pad_sm
        )
        self.saved_link = ttk.Label(summary_frame, text="view tile pair", style="Link.TLabel", cursor="hand2")
        self.saved_link.bind("<Button-1>", lambda _: self._open_saved_url())

        self.form = TrialParametersForm(parent, on_run=self._run_trial, pad=self.tokens.pad_sm)
        self.form.pack(fill="x", pady=(0, self.tokens.pad_md))

        help_frame = ttk.LabelFrame(parent, text="Keybindings", style="Viewer.TLabelframe")
        help_frame.pack(fill="x")
        help_text = (
            "Left / Right: previous / next match\n"
            "A: show all matches\n"
            "L: toggle lines and points"
        )
        ttk.Label(help_frame, text=help_text, style="Panel.TLabel", justify="left").pack(
            anchor="w", padx=self.tokens.pad_sm, pady=self.tokens.pad_sm
        )

    def _setup_fonts(self) -> None:
        base_family = self._pick_font_family(
            [
                "Avenir Next",
                "Avenir",
                "Segoe UI",
                "Helvetica Neue",
                "Inter",
                "Noto Sans",
                "DejaVu Sans",
                "Arial",
            ]
        )
        self.fonts = {
            "title": tkfont.Font(family=base_family, size=18, weight="bold"),
            "section": tkfont.Font(family=base_family, size=12, weight="bold"),
            "body": tkfont.Font(family=base_family, size=11),
            "caption": tkfont.Font(family=base_family, size=10),
            "button": tkfont.Font(family=base_family, size=11, weight="bold"),
        }
        self.master.option_add("*Font", self.fonts["body"])

    def _pick_font_family(self, preferred: List[str]) -> str:
        available = set(tkfont.families(self.master))
        for name in preferred:
            if name in available:
                return name
        return tkfont.nametofont("TkDefaultFont").actual("family")

    def _on_sidebar_configure(self, _: Optional[tk.Event]) -> None:
        if not self.sidebar_canvas:
            return
        self.sidebar_canvas.configure(scrollregion=self.sidebar_canvas.bbox("all"))

    def _on_sidebar_canvas_configure(self, event: tk.Event) -> None:
        if not self.sidebar_canvas or self._sidebar_window is None:
            return
        self.sidebar_canvas.itemconfigure(self._sidebar_window, width=event.width)
        self.sidebar_canvas.configure(scrollregion=self.sidebar_canvas.bbox("all"))

    def _on_sidebar_mousewheel(self, event: tk.Event) -> str:
        if not self.sidebar_canvas or not self.sidebar_inner:
            return ""
        if not self._is_descendant(event.widget, self.sidebar_inner) and event.widget is not self.sidebar_canvas:
            return ""
        if event.delta == 0:
            return "break"
        self.sidebar_canvas.yview_scroll(int(-1 * (event.delta / 120)), "units")
        return "break"

    def _on_sidebar_mousewheel_linux(self, event: tk.Event) -> str:
        if not self.sidebar_canvas or not self.sidebar_inner:
            return ""
        if not self._is_descendant(event.widget, self.sidebar_inner) and event.widget is not self.sidebar_canvas:
            return ""
        if getattr(event, "num", 0) == 4:
            self.sidebar_canvas.yview_scroll(-1, "units")
        elif getattr(event, "num", 0) == 5:
            self.sidebar_canvas.yview_scroll(1, "units")
        return "break"

    def _is_descendant(self, widget: Any, ancestor: tk.Widget) -> bool:
        current = widget
        while current is not None:
            if current == ancestor:
                return True
            current = getattr(current, "master", None)
        return False

    def _bind_keys(self) -> None:
        # Bound on this window only; each viewer window navigates its own trial.
        self.master.bind("<Left>", lambda _: self._step(-1), add=True)
        self.master.bind("<Right>", lambda _: self._step(1), add=True)
        self.master.bind("<KeyPress-a>", lambda _: self._show_all(), add=True)
        self.master.bind("<KeyPress-A>", lambda _: self._show_all(), add=True)
        self.master.bind("<KeyPress-l>", lambda _: self._toggle_lines(), add=True)
        self.master.bind("<KeyPress-L>", lambda _: self._toggle_lines(), add=True)

    def _should_ignore_key(self) -> bool:
        widget = self.master.focus_get()
        if isinstance(widget, (tk.Entry, ttk.Entry, ttk.Combobox, tk.Text)):
            return True
        return False

    def _step(self, delta: int) -> None:
        if self._should_ignore_key():
            return
        self.session.draw_selected_matches(delta)

    def _show_all(self) -> None:
        if self._should_ignore_key():
            return
        self.session.draw_all_matches()

    def _toggle_lines(self) -> None:
        if self._should_ignore_key():
            return
        self.session.toggle_lines_and_points()

    def _configure_drag_drop(self) -> None:
        if not DND_AVAILABLE:
            self.dnd_enabled = False
            return
        self.dnd_enabled = True
        for key, entry in zip(URL_KEYS, self.form.url_entries):
            if not hasattr(entry, "drop_target_register"):
                self.dnd_enabled = False
                break
            try:
                entry.drop_target_register(DND_TEXT)
                entry.dnd_bind("<<Drop>>", lambda event, key=key: self._on_drop(key, event))
            except tk.TclError:
                self.dnd_enabled = False
                break
        if not self.dnd_enabled:
            log.info("Drag and drop of render URLs is unavailable")

    def _on_drop(self, key: str, event: tk.Event) -> str:
        urls = parse_drop_urls(str(getattr(event, "data", "")))
        if not urls:
            self.form.show_error("Drop render parameters URLs (http or https).")
            return "break"
        # A pair dropped together fills p then q.
        keys = URL_KEYS if len(urls) > 1 else [key]
        for target, url in zip(keys, urls):
            self.form.set_url(target, url)
        return "break"

    def _run_trial(self) -> None:
        self.session.run_trial(self.form.read())

    def _delete_trial(self) -> None:
        if not self.session.trial_id:
            return
        if not messagebox.askyesno("Delete trial", f"Delete match trial {self.session.trial_id}?", parent=self):
            return
        self.session.delete_trial()

    def _save_to_collection(self) -> None:
        self.saved_var.set("")
        self.saved_link.pack_forget()
        config = self.session.config
        self.session.save_trial_results_to_collection(config.save_to_owner, config.save_to_collection)

    def _export_png(self) -> None:
        path = filedialog.asksaveasfilename(
            parent=self,
            title="Export trial view",
            defaultextension=".png",
            initialfile=f"match_trial_{self.session.trial_id or 'new'}.png",
            filetypes=[("PNG image", "*.png")],
        )
        if not path:
            return
        try:
            self.session.export_snapshot(path)
        except (RuntimeError, OSError) as exc:
            messagebox.showerror("Export failed", str(exc), parent=self)
            return
        self._set_status(f"Saved {path}")

    def _open_saved_url(self) -> None:
        if self.saved_url:
            webbrowser.open(self.saved_url)

    def _set_status(self, message: str) -> None:
        self.status_var.set(message)

    def _on_destroy(self, event: tk.Event) -> None:
        if event.widget is not self:
            return
        self.handoff_port.close()
        self.scheduler.shutdown()

    # TrialView

    def show_trial(self, result: TrialResult, render_scale: float) -> None:
        if result.trial_id:
            self.trial_var.set(f"Match Trial {result.trial_id}")
        self.summary_text.configure(state="normal")
        self.summary_text.delete("1.0", "end")
        self.summary_text.insert("1.0", trial_summary_text(result, render_scale))
        self.summary_text.configure(state="disabled")
        self._set_status(f"{result.match_count} total matches")

    def show_match_info(self, text: str) -> None:
        self._set_status(text)

    def show_delete_control(self, visible: bool) -> None:
        self.delete_button.configure(state="normal" if visible else "disabled")

    def show_trial_deleted(self, trial_id: str) -> None:
        self.trial_var.set(deleted_trial_label(trial_id))

    def show_error(self, text: str) -> None:
        self.form.show_error(text)

    def show_saved(self, collection: str, tile_pair_url: str) -> None:
        self.saved_url = tile_pair_url
        self.saved_var.set(f"saved match pair to {collection}")
        self.saved_link.pack(anchor="w", padx=self.tokens.pad_sm, pady=(0, self.tokens.pad_sm))

    def set_trial_running(self, running: bool) -> None:
        self.form.set_running(running)

    def set_draw_lines_label(self, label: str) -> None:
        self.lines_button.configure(text=label)

    def populate_form(self, parameters: TrialParameters) -> None:
        self.form.populate(form_values_for(parameters))

    def navigate(self, query: str) -> None:
        self.viewer_config = self.viewer_config.with_query(query)
        self.session.config = self.viewer_config
        if self.viewer_config.is_new_trial:
            return
        self.trial_var.set(f"Match Trial {self.viewer_config.trial_id}")
        self.session.load_trial(self.viewer_config.trial_id)

    def open_viewer_window(self, query: str, on_loaded: Callable[[HandoffPort], None]) -> None:
        window = tk.Toplevel(self.master)
        viewer = MatchTrialViewerApp(window, self.viewer_config.with_query(query))
        on_loaded(viewer.handoff_port)


class HeadlessView:
    """Trial view for snapshot export; reports through the log."""

    def show_trial(self, result: TrialResult, render_scale: float) -> None:
        log.info(f"Trial {result.trial_id} has {result.match_count} matches")

    def show_match_info(self, text: str) -> None:
        log.info(text)

    def show_delete_control(self, visible: bool) -> None:
        pass

    def show_trial_deleted(self, trial_id: str) -> None:
        log.info(deleted_trial_label(trial_id))

    def show_error(self, text: str) -> None:
        if text:
            log.error(text)

    def show_saved(self, collection: str, tile_pair_url: str) -> None:
        log.info(f"saved match pair to {collection}: {tile_pair_url}")

    def set_trial_running(self, running: bool) -> None:
        pass

    def set_draw_lines_label(self, label: str) -> None:
        pass

    def populate_form(self, parameters: TrialParameters) -> None:
        pass

    def navigate(self, query: str) -> None:
        pass

    def open_viewer_window(self, query: str, on_loaded: Callable[[HandoffPort], None]) -> None:
        log.warning("New viewer windows are not available in headless mode")


def config_from_args(args: argparse.Namespace) -> ViewerConfig:
    config = ViewerConfig(
        base_url=args.base_url,
        owner=args.owner,
        trial_id=args.trial_id,
        view_scale=args.view_scale,
        cell_margin=args.cell_margin,
        save_to_owner=args.save_to_owner,
        save_to_collection=args.save_to_collection,
        request_timeout=args.timeout,
    )
    if args.query:
        config = config.with_query(args.query)
    return config


def export_headless(config: ViewerConfig, path: str, draw_lines: bool = False) -> None:
    """Loads a trial synchronously and writes its correspondence view to a PNG."""
    if config.is_new_trial:
        raise RuntimeError("A match trial id is required to export a snapshot.")
    client = MatchTrialClient(config.base_url, config.owner, timeout=config.request_timeout)
    session = TrialSession(config, client, ImmediateScheduler(), PilSurface(), HeadlessView())
    session.navigation.draw_match_lines = draw_lines
    session.load_trial(config.trial_id)
    session.export_snapshot(path)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    defaults = ViewerConfig()
    parser = argparse.ArgumentParser(description="Point match trial viewer.")
    parser.add_argument("--base-url", default=defaults.base_url, help="Render web service base URL")
    parser.add_argument("--owner", default=defaults.owner, help="Match trial owner")
    parser.add_argument("--trial-id", default=None, help="Match trial to open (omit or TBD for a new trial)")
    parser.add_argument("--view-scale", type=float, default=defaults.view_scale, help="Image scale on screen")
    parser.add_argument("--cell-margin", type=int, default=defaults.cell_margin, help="Pixels around each image")
    parser.add_argument("--save-to-owner", default=None, help="Owner of the match collection to save into")
    parser.add_argument("--save-to-collection", default=None, help="Match collection to save into")
    parser.add_argument("--query", default="", help="Viewer query string, e.g. matchTrialId=...&renderScale=0.3")
    parser.add_argument("--timeout", type=float, default=None, help="HTTP request timeout in seconds")
    parser.add_argument("--geometry", default=None, help="Window geometry, WIDTHxHEIGHT+X+Y")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    parser.add_argument("--snapshot", default=None, metavar="PATH", help="Export the trial view to PNG and exit")
    parser.add_argument("--lines", action="store_true", help="Draw match lines in the snapshot")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = config_from_args(args)

    if args.snapshot:
        try:
            export_headless(config, args.snapshot, draw_lines=args.lines)
        except (RuntimeError, OSError) as exc:
            log.error(f"Snapshot failed: {exc}")
            sys.exit(1)
        return

    root = TkinterDnD.Tk() if DND_AVAILABLE else tk.Tk()
    if args.geometry:
        width, height, x, y = parse_geometry(args.geometry)
        root.geometry(f"{width}x{height}+{x}+{y}")
    app = MatchTrialViewerApp(root, config)
    app.mainloop()


if __name__ == "__main__":
    main()
