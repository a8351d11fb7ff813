"""Pygame UI shell for the Lexiscan screening run.

The screen is a thin PresentationAdapter: it draws whatever the orchestrator
last asked for and forwards key presses/clicks back. Timing, input locking
and scoring live in lexiscan/orchestrator.py.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

import pygame

from .catalog import NO, YES
from .clock import RealClock
from .orchestrator import ScreeningOrchestrator, ScreeningState, build_screening_session
from .presenters import StimulusView
from .report import export_filename
from .speech import OfflineTtsSpeech

log = logging.getLogger(__name__)

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)
OPTION_BG = (9, 20, 106)
OPTION_BORDER = (62, 84, 152)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def update(self) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def update(self) -> None:
        if self._screens:
            self._screens[-1].update()

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


class ScreeningScreen:
    """Draws the current screening view and implements the PresentationAdapter calls."""

    def __init__(
        self,
        app: App,
        *,
        engine_factory: Callable[["ScreeningScreen"], ScreeningOrchestrator],
        export_dir: Path | None = None,
    ) -> None:
        self._app = app
        self._export_dir = export_dir or Path.cwd()

        self._title_font = pygame.font.Font(None, 42)
        self._stim_font = pygame.font.Font(None, 140)
        self._option_font = pygame.font.Font(None, 64)
        self._small_font = pygame.font.Font(None, 26)

        self._instructions: tuple[str, str] | None = None
        self._progress: tuple[int, int] | None = None
        self._stimulus: StimulusView | None = None
        self._options: tuple[str, ...] = ()
        self._finished = False
        self._status = ""
        self._option_hitboxes: list[tuple[pygame.Rect, str]] = []

        self._engine = engine_factory(self)

    # -- PresentationAdapter ---------------------------------------------------

    def render_instructions(self, title: str, text: str) -> None:
        self._instructions = (title, text)
        self._stimulus = None
        self._options = ()

    def render_progress(self, current: int, total: int) -> None:
        self._instructions = None
        self._progress = (current, total)

    def render_stimulus(self, view: StimulusView) -> None:
        self._stimulus = view

    def render_options(self, values: tuple[str, ...]) -> None:
        self._options = tuple(values)

    def render_binary_choice(self) -> None:
        self._options = (YES, NO)

    def clear_presentation(self) -> None:
        self._stimulus = None
        self._options = ()
        self._option_hitboxes = []

    def on_session_finished(self) -> None:
        self._finished = True
        self._instructions = None
        self._progress = None

    # -- Screen ----------------------------------------------------------------

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN:
            self._handle_key(event)
        elif event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
            for rect, value in self._option_hitboxes:
                if rect.collidepoint(event.pos):
                    self._engine.submit_selection(value)
                    return

    def _handle_key(self, event: pygame.event.Event) -> None:
        key = event.key
        state = self._engine.state
        if key == pygame.K_ESCAPE:
            self._app.quit()
            return
        if key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            if state is ScreeningState.IDLE:
                self._engine.begin_session()
            elif state is ScreeningState.INSTRUCTIONS:
                self._engine.acknowledge_instructions()
            return

        if state is ScreeningState.FINISHED:
            if key == pygame.K_c:
                self._write_export("csv", self._engine.export_csv())
            elif key == pygame.K_j:
                self._write_export("json", self._engine.export_json())
            elif key == pygame.K_r:
                self._finished = False
                self._status = ""
                self._engine.restart()
            return

        if key == pygame.K_y:
            self._engine.submit_selection(YES)
        elif key == pygame.K_n:
            self._engine.submit_selection(NO)
        elif pygame.K_1 <= key <= pygame.K_9:
            idx = key - pygame.K_1
            if idx < len(self._options):
                self._engine.submit_selection(self._options[idx])

    def _write_export(self, ext: str, text: str) -> None:
        path = self._export_dir / export_filename(self._engine.session_snapshot(), ext)
        try:
            path.write_text(text, encoding="utf-8")
        except OSError:
            log.exception("could not write %s", path)
            self._status = f"Could not write {path.name}"
            return
        self._status = f"Saved {path.name}"

    def update(self) -> None:
        self._engine.update()

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)
        frame = pygame.Rect(16, 16, max(260, w - 32), max(220, h - 32))
        pygame.draw.rect(surface, PANEL_BG, frame)
        pygame.draw.rect(surface, BORDER, frame, 2)

        if self._engine.state is ScreeningState.IDLE:
            self._render_lines(surface, frame, "Lexiscan", ["Press Enter to begin."])
        elif self._finished:
            lines = [
                "All tasks complete. Thank you!",
                "",
                "C: save CSV report   J: save JSON report   R: restart   Esc: quit",
            ]
            if self._status:
                lines.append(self._status)
            self._render_lines(surface, frame, "Finished", lines)
        elif self._instructions is not None:
            title, text = self._instructions
            self._render_lines(surface, frame, title, [text, "", "Press Enter to continue."])
        else:
            self._render_trial(surface, frame)

    def _render_lines(self, surface: pygame.Surface, frame: pygame.Rect, title: str, lines: list[str]) -> None:
        head = self._title_font.render(title, True, TEXT_MAIN)
        surface.blit(head, head.get_rect(midtop=(frame.centerx, frame.y + 30)))
        y = frame.y + 110
        for line in lines:
            text = self._small_font.render(line, True, TEXT_MUTED)
            surface.blit(text, text.get_rect(midtop=(frame.centerx, y)))
            y += 32

    def _render_trial(self, surface: pygame.Surface, frame: pygame.Rect) -> None:
        if self._progress is not None:
            current, total = self._progress
            prog = self._small_font.render(f"{current} / {total}", True, TEXT_MUTED)
            surface.blit(prog, (frame.right - prog.get_width() - 16, frame.y + 12))

        view = self._stimulus
        if view is not None:
            if view.audio_cue:
                label, color = "(listen)", TEXT_MUTED
            elif view.masked:
                label, color = "#" * max(1, len(view.text)), TEXT_MUTED
            else:
                label, color = view.text, TEXT_MAIN
            stim = self._stim_font.render(label, True, color)
            surface.blit(stim, stim.get_rect(center=(frame.centerx, frame.y + frame.h // 3)))

        self._option_hitboxes = []
        if not self._options:
            return
        n = len(self._options)
        gap = 16
        box_w = min(160, (frame.w - gap * (n + 1)) // n)
        box_h = 96
        total_w = n * box_w + (n - 1) * gap
        x = frame.centerx - total_w // 2
        y = frame.bottom - box_h - 60
        for i, value in enumerate(self._options):
            rect = pygame.Rect(x, y, box_w, box_h)
            pygame.draw.rect(surface, OPTION_BG, rect)
            pygame.draw.rect(surface, OPTION_BORDER, rect, 2)
            text = self._option_font.render(value, True, TEXT_MAIN)
            surface.blit(text, text.get_rect(center=rect.center))
            key = self._small_font.render(str(i + 1), True, TEXT_MUTED)
            surface.blit(key, (rect.x + 6, rect.y + 4))
            self._option_hitboxes.append((rect, value))
            x += box_w + gap


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    pygame.init()

    pygame.display.set_caption("Lexiscan")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    app = App(surface=surface, font=font)
    real_clock = RealClock()
    speech = OfflineTtsSpeech()
    seed = _new_seed()

    app.push(
        ScreeningScreen(
            app,
            engine_factory=lambda screen: build_screening_session(
                clock=real_clock,
                adapter=screen,
                speech=speech,
                seed=seed,
            ),
        )
    )

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.update()
            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        speech.cancel()
        pygame.quit()

    return 0
