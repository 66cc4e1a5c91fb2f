"""Pygame UI shell for the N-Back trainer.

Two screens sit on a small screen stack:
- Settings (mode, N-level, timing, match keys; persisted as JSON)
- Session (3x3 grid, spoken letters, per-channel feedback, results)

Deterministic sequence/timing/scoring/state lives in nback_trainer/* (core
modules); this module only renders snapshots and forwards key presses.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import replace
from typing import Protocol

import pygame

from .clock import RealClock
from .cognitive_core import Channel, ChannelMetrics, FeedbackKind, GameMode, SessionSnapshot, Status
from .driver import NBackSessionDriver, build_nback_session
from .settings import (
    GRID_SIZE,
    MAX_ISI_MS,
    MAX_N_LEVEL,
    MAX_SESSION_DURATION_S,
    MAX_STIMULUS_DURATION_MS,
    MIN_ISI_MS,
    MIN_N_LEVEL,
    MIN_SESSION_DURATION_S,
    MIN_STIMULUS_DURATION_MS,
    NBackSettings,
    normalize_key,
)
from .settings_store import SettingsStore
from .speech import Speaker, build_speaker

logger = logging.getLogger(__name__)

WINDOW_SIZE = (960, 640)
TARGET_FPS = 60

BG = (10, 10, 14)
PANEL_BG = (22, 24, 32)
TEXT_MAIN = (235, 235, 245)
TEXT_MUTED = (160, 164, 178)
CELL_IDLE = (40, 44, 58)
CELL_ACTIVE = (70, 140, 235)

FEEDBACK_COLORS: dict[FeedbackKind, tuple[int, int, int]] = {
    FeedbackKind.CORRECT: (60, 200, 110),
    FeedbackKind.MISS: (235, 170, 40),
    FeedbackKind.FALSE_ALARM: (225, 70, 70),
}

CHANNEL_LABELS: dict[Channel, str] = {
    Channel.VISUAL: "Position",
    Channel.AUDIO: "Audio",
}


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


class App:
    def __init__(self, surface: pygame.Surface) -> None:
        self._surface = surface
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the root screen; it handles its own quit.
        if len(self._screens) > 1:
            self._screens.pop()

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


class SettingsScreen:
    """Root screen: adjust settings, then start a session."""

    _ROWS = ("mode", "n_level", "stimulus", "interval", "session", "visual_key", "audio_key", "start", "quit")

    def __init__(
        self,
        app: App,
        *,
        store: SettingsStore,
        open_session: Callable[[NBackSettings], None],
    ) -> None:
        self._app = app
        self._store = store
        self._open_session = open_session
        self._selected = 0
        self._capturing: Channel | None = None
        self._message: str | None = None

        self._title_font = pygame.font.Font(None, 48)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return

        if self._capturing is not None:
            self._capture_key(event)
            return

        if event.key in (pygame.K_UP, pygame.K_w):
            self._selected = (self._selected - 1) % len(self._ROWS)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._selected = (self._selected + 1) % len(self._ROWS)
        elif event.key == pygame.K_LEFT:
            self._adjust(-1)
        elif event.key == pygame.K_RIGHT:
            self._adjust(1)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            self._activate()
        elif event.key == pygame.K_ESCAPE:
            self._app.quit()

    def _capture_key(self, event: pygame.event.Event) -> None:
        channel = self._capturing
        self._capturing = None
        if event.key == pygame.K_ESCAPE or channel is None:
            return
        current = self._store.settings
        key = normalize_key(getattr(event, "unicode", ""), fallback=current.match_key(channel))
        if channel is Channel.VISUAL:
            self._store.update(replace(current, visual_match_key=key))
        else:
            self._store.update(replace(current, audio_match_key=key))

    def _adjust(self, delta: int) -> None:
        s = self._store.settings
        row = self._ROWS[self._selected]
        if row == "mode":
            modes = list(GameMode)
            s = replace(s, game_mode=modes[(modes.index(s.game_mode) + delta) % len(modes)])
        elif row == "n_level":
            s = replace(s, n_level=s.n_level + delta)
        elif row == "stimulus":
            s = replace(s, stimulus_duration_ms=s.stimulus_duration_ms + 100 * delta)
        elif row == "interval":
            s = replace(s, inter_stimulus_interval_ms=s.inter_stimulus_interval_ms + 100 * delta)
        elif row == "session":
            s = replace(s, session_duration_s=s.session_duration_s + 30 * delta)
        else:
            return
        self._message = None
        self._store.update(s)

    def _activate(self) -> None:
        row = self._ROWS[self._selected]
        if row == "visual_key":
            self._capturing = Channel.VISUAL
        elif row == "audio_key":
            self._capturing = Channel.AUDIO
        elif row == "start":
            settings = self._store.settings
            problems = settings.problems()
            if problems:
                self._message = problems[0]
                return
            self._message = None
            self._open_session(settings)
        elif row == "quit":
            self._app.quit()

    def _row_text(self, row: str, s: NBackSettings) -> str:
        if row == "mode":
            return f"Mode: {s.game_mode.value}"
        if row == "n_level":
            return f"N-Level: {s.n_level}  ({MIN_N_LEVEL}-{MAX_N_LEVEL})"
        if row == "stimulus":
            return f"Stimulus: {s.stimulus_duration_ms} ms  ({MIN_STIMULUS_DURATION_MS}-{MAX_STIMULUS_DURATION_MS})"
        if row == "interval":
            return f"Interval: {s.inter_stimulus_interval_ms} ms  ({MIN_ISI_MS}-{MAX_ISI_MS})"
        if row == "session":
            return f"Session: {s.session_duration_s} s  ({MIN_SESSION_DURATION_S}-{MAX_SESSION_DURATION_S})"
        if row == "visual_key":
            waiting = self._capturing is Channel.VISUAL
            return "Position key: press a key..." if waiting else f"Position key: {s.visual_match_key.upper()}"
        if row == "audio_key":
            waiting = self._capturing is Channel.AUDIO
            return "Audio key: press a key..." if waiting else f"Audio key: {s.audio_match_key.upper()}"
        if row == "start":
            return "Start"
        return "Quit"

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)
        s = self._store.settings

        title = self._title_font.render("N-Back Training", True, TEXT_MAIN)
        surface.blit(title, title.get_rect(midtop=(w // 2, 30)))

        row_h = 40
        y = 110
        for idx, row in enumerate(self._ROWS):
            rect = pygame.Rect(w // 2 - 260, y, 520, row_h - 6)
            selected = idx == self._selected
            pygame.draw.rect(surface, (244, 248, 255) if selected else PANEL_BG, rect)
            color = (14, 26, 74) if selected else TEXT_MAIN
            text = self._item_font.render(self._row_text(row, s), True, color)
            surface.blit(text, (rect.x + 12, rect.y + (rect.h - text.get_height()) // 2))
            y += row_h

        if self._message:
            msg = self._hint_font.render(self._message, True, FEEDBACK_COLORS[FeedbackKind.FALSE_ALARM])
            surface.blit(msg, msg.get_rect(midtop=(w // 2, y + 8)))

        footer = "Up/Down: Select  |  Left/Right: Adjust  |  Enter: Start / Set key  |  Esc: Quit"
        foot = self._hint_font.render(footer, True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(w // 2, h - 12)))


class NBackSessionScreen:
    """Runs one session driver; shows the grid while running and results after."""

    def __init__(self, app: App, *, driver_factory: Callable[[], NBackSessionDriver]) -> None:
        self._app = app
        self._driver = driver_factory()
        self._driver.start()

        self._big_font = pygame.font.Font(None, 64)
        self._mid_font = pygame.font.Font(None, 36)
        self._small_font = pygame.font.Font(None, 26)

    @property
    def driver(self) -> NBackSessionDriver:
        return self._driver

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        status = self._driver.status

        if event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._exit()
            return

        if status is Status.FINISHED:
            if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                self._driver.start()
            return

        if status in (Status.RUNNING, Status.PAUSED) and event.key == pygame.K_SPACE:
            self._driver.toggle_pause()
            return

        if status is Status.RUNNING:
            self._driver.handle_key(getattr(event, "unicode", ""))

    def _exit(self) -> None:
        self._driver.stop()
        self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        self._driver.update()
        snap = self._driver.snapshot()
        settings = self._driver.settings

        surface.fill(BG)
        w, h = surface.get_size()

        if snap.status is Status.FINISHED and snap.results is not None:
            self._render_results(surface, snap)
            return

        if snap.setup_error is not None or snap.status is Status.SETTINGS:
            err = snap.setup_error or "No session is running."
            text = self._mid_font.render(err, True, FEEDBACK_COLORS[FeedbackKind.FALSE_ALARM])
            surface.blit(text, text.get_rect(center=(w // 2, h // 2)))
            hint = self._small_font.render("Esc: Back to settings", True, TEXT_MUTED)
            surface.blit(hint, hint.get_rect(midtop=(w // 2, h // 2 + 40)))
            return

        self._render_status(surface, snap, settings)
        self._render_grid(surface, snap)
        self._render_channel_buttons(surface, snap, settings)

    def _render_status(self, surface: pygame.Surface, snap: SessionSnapshot, settings: NBackSettings) -> None:
        w, _ = surface.get_size()
        trial = max(0, snap.trial_index + 1)
        left = self._small_font.render(
            f"{settings.game_mode.value}  N={settings.n_level}   Trial {trial}/{snap.total_trials}",
            True,
            TEXT_MAIN,
        )
        surface.blit(left, (30, 20))

        remaining = "--:--"
        if snap.time_remaining_s is not None:
            rem = int(round(snap.time_remaining_s))
            remaining = f"{rem // 60:02d}:{rem % 60:02d}"
        right = self._small_font.render(f"Score {snap.score}   {remaining}", True, TEXT_MAIN)
        surface.blit(right, right.get_rect(topright=(w - 30, 20)))

        if snap.status is Status.PAUSED:
            paused = self._mid_font.render("Paused (Space to resume)", True, (235, 170, 40))
            surface.blit(paused, paused.get_rect(midtop=(w // 2, 50)))

    def _render_grid(self, surface: pygame.Surface, snap: SessionSnapshot) -> None:
        w, h = surface.get_size()
        cell = max(60, min(120, (h - 220) // GRID_SIZE))
        gap = 8
        total = cell * GRID_SIZE + gap * (GRID_SIZE - 1)
        x0 = (w - total) // 2
        y0 = 90
        for idx in range(GRID_SIZE * GRID_SIZE):
            row, col = divmod(idx, GRID_SIZE)
            rect = pygame.Rect(x0 + col * (cell + gap), y0 + row * (cell + gap), cell, cell)
            active = snap.active_visual == idx
            pygame.draw.rect(surface, CELL_ACTIVE if active else CELL_IDLE, rect, border_radius=6)

    def _render_channel_buttons(
        self,
        surface: pygame.Surface,
        snap: SessionSnapshot,
        settings: NBackSettings,
    ) -> None:
        w, h = surface.get_size()
        channels = settings.enabled_channels
        box_w = 220
        spacing = 40
        total = box_w * len(channels) + spacing * (len(channels) - 1)
        x = (w - total) // 2
        y = h - 100
        for channel in channels:
            rect = pygame.Rect(x, y, box_w, 56)
            kind = snap.feedback.get(channel)
            fill = FEEDBACK_COLORS[kind] if kind is not None else PANEL_BG
            pygame.draw.rect(surface, fill, rect, border_radius=6)
            pygame.draw.rect(surface, (78, 102, 170), rect, 2, border_radius=6)
            label = f"{CHANNEL_LABELS[channel]} ({settings.match_key(channel).upper()})"
            text = self._small_font.render(label, True, TEXT_MAIN)
            surface.blit(text, text.get_rect(center=rect.center))
            x += box_w + spacing

        hint = self._small_font.render("Space: Pause  |  Esc: Stop", True, TEXT_MUTED)
        surface.blit(hint, hint.get_rect(midbottom=(w // 2, h - 10)))

    def _render_results(self, surface: pygame.Surface, snap: SessionSnapshot) -> None:
        results = snap.results
        assert results is not None
        w, h = surface.get_size()

        title = self._big_font.render("Last Set", True, TEXT_MAIN)
        surface.blit(title, title.get_rect(midtop=(w // 2, 40)))

        rate = self._mid_font.render(
            f"Success Rate: {results.overall_success_rate:.0f}%",
            True,
            TEXT_MAIN,
        )
        surface.blit(rate, rate.get_rect(midtop=(w // 2, 120)))

        cols = (w // 2 - 260, w // 2 - 40, w // 2 + 140)
        y = 190
        for col, header in zip(cols, ("Mode", "Total Matches", "Errors (Rate)")):
            text = self._small_font.render(header, True, TEXT_MUTED)
            surface.blit(text, (col, y))
        y += 36

        for channel in (Channel.VISUAL, Channel.AUDIO):
            metrics: ChannelMetrics | None = results.metrics(channel)
            if metrics is None:
                continue
            cells = (
                CHANNEL_LABELS[channel],
                str(metrics.total_matches),
                f"{metrics.errors} ({metrics.rate:.0f}%)",
            )
            for col, value in zip(cols, cells):
                text = self._small_font.render(value, True, TEXT_MAIN)
                surface.blit(text, (col, y))
            y += 32

        score = self._small_font.render(f"Score: {snap.score}", True, TEXT_MUTED)
        surface.blit(score, (cols[0], y + 12))

        hint = self._small_font.render("Enter: Play again  |  Esc: Back", True, TEXT_MUTED)
        surface.blit(hint, hint.get_rect(midbottom=(w // 2, h - 20)))


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    store: SettingsStore | None = None,
    speaker: Speaker | None = None,
) -> int:
    pygame.init()

    pygame.display.set_caption("N-Back Trainer")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    clock = pygame.time.Clock()

    app = App(surface=surface)

    settings_store = store if store is not None else SettingsStore(SettingsStore.default_path())
    tts = speaker if speaker is not None else build_speaker()
    real_clock = RealClock()

    def open_session(settings: NBackSettings) -> None:
        seed = _new_seed()
        logger.info("Opening session with seed %d", seed)
        app.push(
            NBackSessionScreen(
                app,
                driver_factory=lambda: build_nback_session(
                    clock=real_clock,
                    settings=settings,
                    seed=seed,
                    speaker=tts,
                ),
            )
        )

    app.push(SettingsScreen(app, store=settings_store, open_session=open_session))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        tts.cancel()
        pygame.quit()

    return 0
