"""Smoke tests for the pygame UI.

These tests verify that the application's main loop can initialise and
execute a handful of frames without crashing when the SDL dummy video
driver is used, and that the screening screen forwards key presses to the
orchestrator. Rendering correctness is not checked.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

# Use the dummy drivers before importing pygame or the application
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _key(key: int):
    import pygame

    return pygame.event.Event(pygame.KEYDOWN, {"key": key, "unicode": ""})


def test_app_runs_headless() -> None:
    """Ensure the application can start and run a few frames headlessly."""
    # Import inside the test so that environment variables take effect
    from lexiscan.app import run

    exit_code = run(max_frames=3)
    assert exit_code == 0


def test_app_smoke_begin_and_answer_practice_trial() -> None:
    import pygame

    from lexiscan.app import run

    def inject(frame: int) -> None:
        # Welcome -> practice instructions -> first trial -> pick option 1
        if frame in (1, 2):
            pygame.event.post(_key(pygame.K_RETURN))
        elif frame == 4:
            pygame.event.post(_key(pygame.K_1))

    assert run(max_frames=12, event_injector=inject) == 0


def test_screening_screen_drives_orchestrator_and_writes_exports(tmp_path) -> None:
    import pygame

    from lexiscan.app import App, ScreeningScreen
    from lexiscan.catalog import TaskDefinition, TaskType, TrialConfig, TrialSpec
    from lexiscan.orchestrator import OrchestratorConfig, ScreeningState, build_screening_session

    pygame.init()
    try:
        surface = pygame.Surface((960, 540))
        app = App(surface=surface, font=pygame.font.Font(None, 36))
        clock = FakeClock()
        task = TaskDefinition(
            id="letters",
            type=TaskType.VISUAL_DISCRIMINATION,
            title="Letters",
            instruction="Pick the letter.",
            trial_config=TrialConfig(timeout_ms=2000),
            trials=(TrialSpec(target="b", distractors=("d",)),),
        )
        engines = []

        def factory(s: ScreeningScreen):
            engine = build_screening_session(
                clock=clock,
                adapter=s,
                catalog=[task],
                seed=5,
                config=OrchestratorConfig(transition_pause_ms=0),
            )
            engines.append(engine)
            return engine

        screen = ScreeningScreen(app, engine_factory=factory, export_dir=tmp_path)
        engine = engines[0]
        app.push(screen)
        app.render()

        app.handle_event(_key(pygame.K_RETURN))
        assert engine.state is ScreeningState.INSTRUCTIONS
        app.render()
        app.handle_event(_key(pygame.K_RETURN))
        assert engine.state is ScreeningState.AWAITING_RESPONSE
        app.render()

        clock.advance(0.3)
        slot = engine.current_options.index("b")
        app.handle_event(_key(pygame.K_1 + slot))
        app.update()
        app.render()
        assert engine.state is ScreeningState.FINISHED
        assert engine.session_snapshot().tasks[0].summary.correct_count == 1
        assert list(tmp_path.iterdir()) == []

        app.handle_event(_key(pygame.K_c))
        app.handle_event(_key(pygame.K_j))
        names = sorted(p.name for p in tmp_path.iterdir())
        assert len(names) == 2
        assert names[0].endswith(".csv") and names[1].endswith(".json")
        assert "Detailed Trial Log" in (tmp_path / names[0]).read_text(encoding="utf-8")
        app.render()

        app.handle_event(_key(pygame.K_r))
        assert engine.state is ScreeningState.IDLE
        app.update()
        app.render()

        app.handle_event(_key(pygame.K_ESCAPE))
        assert app.running is False
    finally:
        pygame.quit()
