"""
ZenHanzi - Tkinter handwriting practice app

Flow:
1. Login card: enter a name (remembered between runs).
2. Practice card: pick a source (HSK level or custom palette), write the
   character (or every character of a sentence) on the grid, check it.
3. Passed items unlock "Next"; failed ones land in the review queue and
   can be retried or appealed.

Setup (from repo root):

    python -m venv .venv
    source .venv/bin/activate   # or .venv\\Scripts\\activate on Windows
    pip install -e .

Ensure .env contains:
    OPENAI_API_KEY=sk-...

Then run:
    python main.py
"""

import threading
import tkinter as tk
from tkinter import ttk, messagebox
from typing import Any, Callable, List, Optional

from PIL import ImageTk

from zenhanzi.logger import logger
from zenhanzi.audio import MicrophoneRecorder, RecorderState
from zenhanzi.errors import PracticeError
from zenhanzi.hint import load_stroke_hint
from zenhanzi.models import (
    ContentScope, HSKLevel, HskSource, PaletteSource, Point, PracticeMode,
)
from zenhanzi.session import ItemSlot, PracticeSession, SessionState
from zenhanzi.storage import UserDataStore, create_store

BG = "#1e1e1e"
FG = "#e0e0e0"
PASS_FG = "#7ee787"
FAIL_FG = "#ff6b6b"
MUTED_FG = "#888888"


# ---------------------------------------------------------------------------
# Drawing canvas
# ---------------------------------------------------------------------------

class InkCanvas(tk.Canvas):
    """Tk view of a StrokeSurface, with a 田字格 guide grid."""

    def __init__(self, parent, slot: ItemSlot, on_ink: Callable[[], None]) -> None:
        self.slot = slot
        self.surface = slot.surface
        size = self.surface.width
        super().__init__(parent, width=size, height=size, highlightthickness=3,
                         highlightbackground="#57534e", bg="white", cursor="crosshair")
        self._on_ink = on_ink
        self._photo = ImageTk.PhotoImage(self.surface.image)
        self.create_image(0, 0, image=self._photo, anchor="nw")

        mid = size / 2
        for coords in ((0, mid, size, mid), (mid, 0, mid, size)):
            self.create_line(*coords, fill="#fecaca", dash=(4, 4))

        self.bind("<ButtonPress-1>", self._down)
        self.bind("<B1-Motion>", self._move)
        self.bind("<ButtonRelease-1>", self._up)
        self.bind("<Leave>", self._up)
        self.refresh()

    def _down(self, event) -> None:
        if self.slot.busy:
            return
        self.surface.begin(Point(event.x, event.y))
        self.refresh()

    def _move(self, event) -> None:
        self.surface.extend(Point(event.x, event.y))
        self.refresh()

    def _up(self, _event) -> None:
        was_drawing = self.surface.is_drawing
        self.surface.end()
        if was_drawing:
            self._on_ink()

    def refresh(self) -> None:
        self._photo.paste(self.surface.image)
        if self.surface.read_only:
            self.configure(highlightbackground="#16a34a", cursor="arrow")
        else:
            self.configure(highlightbackground="#57534e", cursor="crosshair")


# ---------------------------------------------------------------------------
# Dialogs
# ---------------------------------------------------------------------------

class HintWindow(tk.Toplevel):
    """Looping stroke-order animation for one character."""

    def __init__(self, parent, char: str) -> None:
        super().__init__(parent, bg=BG)
        self.title(f"Stroke order: {char}")
        self._frames: List[ImageTk.PhotoImage] = []
        self._index = 0
        self._delay = 40

        self.label = ttk.Label(self, text="Loading animation...", anchor="center")
        self.label.pack(padx=20, pady=20)
        ttk.Label(self, text="Watch the animation to learn the correct stroke order.",
                  foreground=MUTED_FG).pack(padx=20, pady=(0, 15))

        def work():
            hint = load_stroke_hint(char)
            self.after(0, lambda: self._show(hint))

        threading.Thread(target=work, daemon=True).start()

    def _show(self, hint) -> None:
        if not self.winfo_exists():
            return
        if not hint.available:
            self.label.configure(text=hint.message)
            return
        self._frames = [ImageTk.PhotoImage(f) for f in hint.frames]
        self._delay = hint.frame_delay_ms
        self._tick()

    def _tick(self) -> None:
        if not self.winfo_exists() or not self._frames:
            return
        self.label.configure(image=self._frames[self._index], text="")
        self._index = (self._index + 1) % len(self._frames)
        self.after(self._delay, self._tick)


class ProfileWindow(tk.Toplevel):
    """Per-level HSK progress for the signed-in user."""

    def __init__(self, parent, session: PracticeSession) -> None:
        super().__init__(parent, bg=BG)
        self.title(f"Profile: {session.username or ''}")
        self.transient(parent)

        ttk.Label(self, text=f"👤 {session.username or ''}", font=("Helvetica", 18, "bold")).pack(
            padx=20, pady=(15, 10), anchor="w")
        table = ttk.Frame(self)
        table.pack(padx=20, pady=(0, 10), fill="x")
        for row, level in enumerate(session.level_progress()):
            ttk.Label(table, text=f"HSK {int(level.level)}").grid(row=row, column=0, sticky="w", pady=2)
            bar = ttk.Progressbar(table, length=200, maximum=100, value=level.percent)
            bar.grid(row=row, column=1, padx=10, pady=2)
            ttk.Label(table, text=f"{level.mastered} / {level.goal}  ({level.percent}%)").grid(
                row=row, column=2, sticky="w", pady=2)
            ttk.Label(table, text="✓" if level.completed else "",
                      foreground=PASS_FG).grid(row=row, column=3, padx=(6, 0), pady=2)
        ttk.Button(self, text="Close", command=self.destroy).pack(pady=(0, 15))


class TextPromptDialog(tk.Toplevel):
    """Modal dialog with a title line, optional name entry and a text box."""

    def __init__(self, parent, title: str, prompt: str, with_name: bool,
                 on_submit: Callable[[str, str], None]) -> None:
        super().__init__(parent, bg=BG)
        self.title(title)
        self.transient(parent)
        self._on_submit = on_submit

        ttk.Label(self, text=prompt, wraplength=360).pack(padx=15, pady=(15, 5), anchor="w")
        self.name_entry: Optional[ttk.Entry] = None
        if with_name:
            self.name_entry = ttk.Entry(self, width=40)
            self.name_entry.pack(padx=15, pady=5, fill="x")
        self.text = tk.Text(self, width=44, height=6, bg="#2d2d2d", fg=FG, insertbackground=FG)
        self.text.pack(padx=15, pady=5)
        ttk.Button(self, text="Submit", command=self._submit).pack(pady=(5, 15))

    def _submit(self) -> None:
        name = self.name_entry.get() if self.name_entry else ""
        body = self.text.get("1.0", "end").strip()
        self.destroy()
        self._on_submit(name, body)


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------

class LoginCard(ttk.Frame):
    def __init__(self, parent, controller: "ZenHanziApp") -> None:
        super().__init__(parent)
        self.controller = controller
        ttk.Label(self, text="禅汉字  ZenHanzi", font=("Helvetica", 28, "bold")).pack(pady=(80, 10))
        ttk.Label(self, text="Practice writing Chinese characters by hand.",
                  foreground=MUTED_FG).pack(pady=(0, 30))
        self.entry = ttk.Entry(self, width=30, font=("Helvetica", 15))
        self.entry.pack(pady=5)
        self.entry.bind("<Return>", lambda _e: self._login())
        ttk.Button(self, text="Start Practicing", command=self._login).pack(pady=10)

    def _login(self) -> None:
        self.controller.login(self.entry.get())


class PracticeCard(ttk.Frame):
    def __init__(self, parent, controller: "ZenHanziApp") -> None:
        super().__init__(parent)
        self.controller = controller
        self.session = controller.session
        self.canvases: List[InkCanvas] = []
        self.feedback_labels: List[ttk.Label] = []
        self.hint_buttons: List[ttk.Button] = []
        self.appeal_buttons: List[ttk.Button] = []
        self._shown_slots: List[ItemSlot] = []

        # Header
        header = ttk.Frame(self)
        header.pack(fill="x", padx=15, pady=(10, 0))
        self.user_label = ttk.Label(header, text="")
        self.user_label.pack(side="left")
        ttk.Button(header, text="Sign Out", command=controller.logout).pack(side="right")
        ttk.Button(header, text="Profile", command=self._show_profile).pack(side="right", padx=(0, 6))
        self.retry_label = ttk.Label(header, text="", foreground="#fb923c")
        self.retry_label.pack(side="right", padx=10)
        self.progress_label = ttk.Label(self, text="", foreground=MUTED_FG)
        self.progress_label.pack(pady=(5, 0))
        self.progress_bar = ttk.Progressbar(self, length=400, maximum=100)
        self.progress_bar.pack(pady=(2, 8))

        # Source / scope / mode
        options = ttk.Frame(self)
        options.pack(pady=5)
        self.source_var = tk.StringVar()
        self.source_box = ttk.Combobox(options, textvariable=self.source_var, state="readonly", width=22)
        self.source_box.pack(side="left", padx=4)
        self.source_box.bind("<<ComboboxSelected>>", lambda _e: self._on_source_selected())
        ttk.Button(options, text="+ Palette", command=self._new_palette).pack(side="left", padx=4)
        ttk.Button(options, text="Delete Palette", command=self._delete_palette).pack(side="left", padx=4)

        toggles = ttk.Frame(self)
        toggles.pack(pady=5)
        self.scope_var = tk.StringVar(value=ContentScope.CHARACTER.value)
        for scope, text in ((ContentScope.CHARACTER, "Character"), (ContentScope.SENTENCE, "Sentence")):
            ttk.Radiobutton(toggles, text=text, value=scope.value, variable=self.scope_var,
                            command=self._on_scope_changed).pack(side="left", padx=4)
        self.mode_var = tk.StringVar(value=PracticeMode.COPY.value)
        for mode, text in ((PracticeMode.COPY, "Copy"), (PracticeMode.RECALL, "Recall")):
            ttk.Radiobutton(toggles, text=text, value=mode.value, variable=self.mode_var,
                            command=self._on_mode_changed).pack(side="left", padx=4)

        # Prompt
        self.review_label = ttk.Label(self, text="", foreground="#fb923c")
        self.review_label.pack()
        self.glyph_label = ttk.Label(self, text="", font=("Helvetica", 48))
        self.glyph_label.pack()
        self.pinyin_label = ttk.Label(self, text="", foreground=MUTED_FG)
        self.pinyin_label.pack()
        self.meaning_label = ttk.Label(self, text="", foreground=MUTED_FG)
        self.meaning_label.pack()

        # Canvases
        self.canvas_frame = ttk.Frame(self)
        self.canvas_frame.pack(pady=10)
        self.status_label = ttk.Label(self, text="", wraplength=600, justify="center")
        self.status_label.pack(pady=5)

        # Controls
        controls = ttk.Frame(self)
        controls.pack(pady=5)
        self.check_button = ttk.Button(controls, text="Check", command=self._check)
        self.retry_button = ttk.Button(controls, text="Try Again", command=self._try_again)
        self.next_button = ttk.Button(controls, text="Next", command=self._advance)
        self.skip_button = ttk.Button(controls, text="Skip", command=self._skip)
        self.record_button = ttk.Button(controls, text="🎤 Record", command=self._toggle_recording)
        for button in (self.check_button, self.retry_button, self.next_button, self.skip_button,
                       self.record_button):
            button.pack(side="left", padx=3)

        self.recorder = MicrophoneRecorder()
        self.audio_label = ttk.Label(self, text="", wraplength=600, justify="center")
        self.audio_label.pack(pady=5)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def refresh(self) -> None:
        session = self.session
        self.user_label.configure(text=f"👤 {session.username or ''}")

        progress = session.progress()
        self.progress_label.configure(
            text=f"{progress.label}  {progress.display_mastered} / {progress.goal}")
        self.progress_bar.configure(value=progress.percent)
        self.retry_label.configure(
            text=f"↺ {progress.retry_count} to Review" if progress.retry_count else "")

        labels = [f"HSK {int(level)}" for level in HSKLevel] + [p.name for p in session.palettes]
        self.source_box.configure(values=labels)
        self.source_var.set(session.source.label)

        prompt = session.prompt()
        if session.state == SessionState.LOADING:
            self.glyph_label.configure(text="…")
            self.pinyin_label.configure(text="")
            self.meaning_label.configure(text="")
            self.review_label.configure(text="")
        elif prompt is None:
            self.glyph_label.configure(text="")
            self.pinyin_label.configure(text=session.message or "Tap next to start")
            self.meaning_label.configure(text="")
            self.review_label.configure(text="")
        else:
            self.glyph_label.configure(text=prompt.text or "?")
            self.pinyin_label.configure(text=prompt.pinyin)
            self.meaning_label.configure(text=prompt.meaning)
            self.review_label.configure(text="REVIEW" if prompt.is_retry else "")

        if [id(s) for s in session.slots] != [id(s) for s in self._shown_slots]:
            self._rebuild_canvases()
        for canvas in self.canvases:
            canvas.refresh()
        self._refresh_feedback()
        self._refresh_buttons()

    def _rebuild_canvases(self) -> None:
        for child in self.canvas_frame.winfo_children():
            child.destroy()
        self.canvases = []
        self.feedback_labels = []
        self.hint_buttons = []
        self.appeal_buttons = []
        self._shown_slots = list(self.session.slots)

        for slot in self._shown_slots:
            cell = ttk.Frame(self.canvas_frame)
            cell.pack(side="left", padx=4)
            canvas = InkCanvas(cell, slot, on_ink=self._refresh_buttons)
            canvas.pack()
            label = ttk.Label(cell, text="", wraplength=slot.surface.width, justify="center")
            label.pack()
            buttons = ttk.Frame(cell)
            buttons.pack(pady=(2, 0))
            hint = ttk.Button(buttons, text="Hint", width=6,
                              command=lambda s=slot: self._hint(s))
            appeal = ttk.Button(buttons, text="Appeal", width=7,
                                command=lambda s=slot: self._appeal(s))
            hint.pack(side="left", padx=2)
            appeal.pack(side="left", padx=2)
            self.canvases.append(canvas)
            self.feedback_labels.append(label)
            self.hint_buttons.append(hint)
            self.appeal_buttons.append(appeal)

    def _refresh_feedback(self) -> None:
        for slot, label in zip(self._shown_slots, self.feedback_labels):
            if slot.appealing:
                label.configure(text="Appeal under review…", foreground=MUTED_FG)
            elif slot.grading:
                label.configure(text="Checking…", foreground=MUTED_FG)
            elif slot.result is None:
                label.configure(text="")
            else:
                verdict = "Excellent!" if slot.passed else "Needs Work"
                label.configure(text=f"{verdict} {slot.result.score}/100\n{slot.result.feedback}",
                                foreground=PASS_FG if slot.passed else FAIL_FG)

        session = self.session
        if session.state == SessionState.CORRECT:
            self.status_label.configure(text="All done! Continue with Next.", foreground=PASS_FG)
        elif session.state == SessionState.CHECKING:
            self.status_label.configure(text="Checking your handwriting…", foreground=MUTED_FG)
        else:
            self.status_label.configure(text="")

        result = session.audio_result
        if result is not None:
            self.audio_label.configure(
                text=f"Pronunciation {result.score}/100: {result.feedback}\n"
                     f"Heard: {result.heard_pinyin}\n{result.pronunciation_tips}")
        elif self.recorder.error:
            self.audio_label.configure(text=self.recorder.error)
        else:
            self.audio_label.configure(text="")

    def _refresh_buttons(self) -> None:
        session = self.session

        def enable(button: ttk.Button, on: bool) -> None:
            button.configure(state="normal" if on else "disabled")

        enable(self.check_button, session.can_check)
        enable(self.retry_button, session.state == SessionState.NEEDS_WORK)
        enable(self.next_button, session.can_advance)
        enable(self.skip_button, session.can_skip and not session.is_complete)
        for slot, hint, appeal in zip(self._shown_slots, self.hint_buttons, self.appeal_buttons):
            enable(hint, session.item is not None)
            enable(appeal, slot.can_appeal)
        is_sentence = session.scope == ContentScope.SENTENCE and session.item is not None
        enable(self.record_button, is_sentence and self.recorder.state != RecorderState.UNAVAILABLE)
        self.record_button.configure(
            text="⏹ Stop" if self.recorder.is_recording else "🎤 Record")

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _on_source_selected(self) -> None:
        label = self.source_var.get()
        for level in HSKLevel:
            if label == f"HSK {int(level)}":
                self.controller.run_async("set_source", lambda: self.session.set_source(HskSource(level)))
                return
        for palette in self.session.palettes:
            if palette.name == label:
                self.controller.run_async("set_source",
                                          lambda: self.session.set_source(PaletteSource(palette)))
                return

    def _on_scope_changed(self) -> None:
        scope = ContentScope(self.scope_var.get())
        self.recorder.reset()
        self.controller.run_async("set_scope", lambda: self.session.set_scope(scope))

    def _on_mode_changed(self) -> None:
        self.session.set_mode(PracticeMode(self.mode_var.get()))
        self.refresh()

    def _new_palette(self) -> None:
        def submit(name: str, chars: str) -> None:
            self.controller.run_async("create_palette", lambda: self.session.create_palette(name, chars))

        TextPromptDialog(self, "Create Palette", "Palette name, then paste Chinese characters below:",
                         with_name=True, on_submit=submit)

    def _delete_palette(self) -> None:
        source = self.session.source
        if not isinstance(source, PaletteSource):
            messagebox.showinfo("Delete Palette", "Select a custom palette first.")
            return
        if messagebox.askyesno("Delete Palette", f"Delete palette {source.palette.name!r}?"):
            self.controller.run_async("delete_palette",
                                      lambda: self.session.delete_palette(source.palette.id))

    def _check(self) -> None:
        self.controller.run_async("check", self.session.check)

    def _try_again(self) -> None:
        self.controller.guard(self.session.try_again)

    def _advance(self) -> None:
        self.recorder.reset()
        self.controller.run_async("advance", self.session.advance)

    def _skip(self) -> None:
        self.recorder.reset()
        self.controller.run_async("skip", self.session.skip)

    def _show_profile(self) -> None:
        ProfileWindow(self, self.session)

    def _hint(self, slot: ItemSlot) -> None:
        HintWindow(self, slot.character.char)

    def _appeal(self, slot: ItemSlot) -> None:
        if not slot.can_appeal:
            return

        def submit(_name: str, justification: str) -> None:
            self.controller.run_async("appeal", lambda: self.session.appeal(slot.index, justification))

        TextPromptDialog(
            self, f"Appeal: {slot.character.char}",
            f"Original feedback: {slot.result.feedback}\nWhy should this pass?",
            with_name=False, on_submit=submit,
        )

    def _toggle_recording(self) -> None:
        if self.recorder.is_recording:
            audio = self.recorder.stop()
            if audio:
                self.controller.run_async("pronunciation",
                                          lambda: self.session.evaluate_pronunciation(audio))
        else:
            self.recorder.start()
        self.refresh()


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

class ZenHanziApp(tk.Tk):
    def __init__(self) -> None:
        super().__init__()
        logger.ui("Initializing ZenHanziApp window...")
        self.title("ZenHanzi")
        self.geometry("900x860")
        self.configure(bg=BG)

        style = ttk.Style()
        style.theme_use("clam")
        style.configure("TFrame", background=BG)
        style.configure("TLabel", background=BG, foreground=FG, font=("Helvetica", 14))
        style.configure("TButton", background="#2d2d2d", foreground=FG, font=("Helvetica", 13))
        style.map("TButton", background=[("active", "#3d3d3d")])
        style.configure("TRadiobutton", background=BG, foreground=FG)

        self.store = UserDataStore(create_store())
        self.session = PracticeSession(store=self.store)

        container = ttk.Frame(self)
        container.pack(fill="both", expand=True)
        container.rowconfigure(0, weight=1)
        container.columnconfigure(0, weight=1)

        self.cards = {}
        for CardClass in (LoginCard, PracticeCard):
            card = CardClass(parent=container, controller=self)
            self.cards[CardClass.__name__] = card
            card.grid(row=0, column=0, sticky="nsew")

        self.protocol("WM_DELETE_WINDOW", self._on_close)

        remembered = self.store.remembered_user()
        if remembered:
            self.login(remembered)
        else:
            self.show("LoginCard")

    def show(self, name: str) -> None:
        logger.ui(f"Showing {name}")
        self.cards[name].tkraise()

    def refresh(self) -> None:
        self.cards["PracticeCard"].refresh()

    def guard(self, action: Callable[[], Any]) -> None:
        """Run a quick action on the UI thread, reporting validation errors."""
        try:
            action()
        except PracticeError as e:
            messagebox.showinfo("ZenHanzi", str(e))
        self.refresh()

    def run_async(self, name: str, action: Callable[[], Any]) -> None:
        """Run a slow session action in a background thread, then refresh."""
        logger.task_start(name)

        def work():
            try:
                action()
                logger.task_complete(name)
                self.after(0, self.refresh)
            except PracticeError as e:
                message = str(e)
                self.after(0, lambda: (messagebox.showinfo("ZenHanzi", message), self.refresh()))
            except Exception as e:
                logger.task_error(name, str(e), exc_info=True)
                self.after(0, self.refresh)

        threading.Thread(target=work, daemon=True).start()
        # Show LOADING / CHECKING right away
        self.after(50, self.refresh)

    def login(self, username: str) -> None:
        try:
            self.session.login(username)
        except PracticeError as e:
            messagebox.showinfo("ZenHanzi", str(e))
            return
        self.show("PracticeCard")
        self.refresh()
        self.run_async("load", self.session.load)

    def logout(self) -> None:
        self.session.logout()
        self.show("LoginCard")

    def _on_close(self) -> None:
        logger.ui("Closing window...")
        try:
            self.store.shutdown()
        finally:
            self.destroy()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logger.separator("Application Starting")
    app = ZenHanziApp()
    logger.success("Application window created, entering main loop")
    app.mainloop()
    logger.separator("Application Closed")
