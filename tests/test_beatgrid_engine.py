import asyncio

import pytest
from conftest import FakeFetcher

from beatgrid.config import EngineSettings, Project, SequencerModel
from beatgrid.engine import Engine
from beatgrid.errors import EngineNotReadyError
from beatgrid.graph import Oscillator, VoiceGraph
from beatgrid.render import Renderer

BLOCK = 512


def _ready_engine() -> tuple[Engine, list[VoiceGraph]]:
    engine = Engine(EngineSettings(), fetcher=FakeFetcher())
    asyncio.run(engine.init())
    submitted: list[VoiceGraph] = []
    renderer = engine.renderer
    original = renderer.submit

    def _spy(graph: VoiceGraph) -> int:
        submitted.append(graph)
        return original(graph)

    renderer.submit = _spy  # type: ignore[method-assign]
    return engine, submitted


def _play_for(engine: Engine, seconds: float) -> None:
    renderer = engine.renderer
    while renderer.current_time < seconds:
        engine.tick(until=seconds)
        renderer.render(BLOCK)


def test_uninitialized_engine_refuses_playback() -> None:
    engine = Engine(fetcher=FakeFetcher())
    assert not engine.is_ready
    with pytest.raises(EngineNotReadyError):
        engine.start(Project())
    with pytest.raises(EngineNotReadyError):
        engine.play_sound("bd")
    with pytest.raises(EngineNotReadyError):
        engine.play_note("c4", "sine")
    with pytest.raises(EngineNotReadyError):
        engine.tick()
    with pytest.raises(EngineNotReadyError):
        _ = engine.renderer
    engine.stop()


def test_init_is_idempotent() -> None:
    fetcher = FakeFetcher()
    engine = Engine(EngineSettings(sample_map_url="https://samples.test/map.json"), fetcher=fetcher)

    async def _run() -> None:
        await engine.init()
        renderer = engine.renderer
        await engine.init()
        assert engine.renderer is renderer

    asyncio.run(_run())
    assert engine.is_ready
    assert fetcher.calls == ["https://samples.test/map.json"]
    assert not engine.samples.initialized


def test_concurrent_init_builds_one_renderer(monkeypatch: pytest.MonkeyPatch) -> None:
    warmups: list[object] = []
    original = Engine._warmup

    def _spy(renderer: Renderer) -> None:
        warmups.append(renderer)
        original(renderer)

    monkeypatch.setattr(Engine, "_warmup", staticmethod(_spy))
    gate = asyncio.Event()
    fetcher = FakeFetcher(gate=gate)
    engine = Engine(EngineSettings(sample_map_url="https://samples.test/map.json"), fetcher=fetcher)

    async def _run() -> None:
        both = asyncio.gather(engine.init(), engine.init())
        await asyncio.sleep(0)
        gate.set()
        await both

    asyncio.run(_run())
    assert fetcher.calls == ["https://samples.test/map.json"]
    assert warmups == [engine.renderer]


def test_kick_once_per_bar() -> None:
    engine, submitted = _ready_engine()
    project = Project(bpm=120.0)
    kick = project.add_track("bd")
    kick.pattern = [True] + [False] * 15

    engine.start(project, autorun=False)
    _play_for(engine, 8.0)
    engine.stop()

    assert [graph.label for graph in submitted] == ["kick"] * 4
    assert [graph.when for graph in submitted] == pytest.approx([0.0, 2.0, 4.0, 6.0], abs=1e-6)
    assert not engine.is_playing


def test_melodic_track_plays_on_even_steps() -> None:
    engine, submitted = _ready_engine()
    project = Project(bpm=120.0)
    lead = project.add_track("sine", "synth")
    lead.notes = ["c4", "~", "e4", "~", "~", "~", "~", "a4"]

    engine.start(project, autorun=False)
    _play_for(engine, 2.0)

    whens = [graph.when for graph in submitted]
    assert whens == pytest.approx([0.0, 0.5, 1.75], abs=1e-6)
    frequencies = [graph.nodes_of(Oscillator)[0].frequency.value for graph in submitted]
    assert frequencies == pytest.approx([261.6256, 329.6276, 440.0], rel=1e-4)


def test_solo_and_mute() -> None:
    engine, submitted = _ready_engine()
    project = Project()
    kick = project.add_track("bd")
    snare = project.add_track("sd")
    hat = project.add_track("hh")
    for track in (kick, snare, hat):
        track.pattern = [True] * 16
    hat.muted = True

    engine.start(project, autorun=False)
    engine.tick(until=0.01)
    assert sorted(graph.label for graph in submitted) == ["kick", "snare"]

    engine.stop()
    submitted.clear()
    snare.solo = True
    engine.start(project, autorun=False)
    engine.tick(until=engine.renderer.current_time + 0.01)
    assert [graph.label for graph in submitted] == ["snare"]


def test_start_applies_master_volume_and_reports_steps() -> None:
    engine, _ = _ready_engine()
    project = Project(master_volume=0.7)
    assert isinstance(project, SequencerModel)

    engine.start(project, autorun=False)
    assert engine.renderer.master_gain == pytest.approx(0.7)
    _play_for(engine, 0.3)
    assert project.current_step == 2

    engine.set_master_volume(1.4)
    assert engine.renderer.master_gain == 1.0


def test_play_sound_uses_track_params() -> None:
    engine, submitted = _ready_engine()
    voice_id = engine.play_sound("cp", when=0.25)
    assert voice_id is not None
    assert submitted[0].label == "clap"
    assert submitted[0].when == 0.25
    assert engine.play_note("~", "sine") is None


def test_dispose_releases_everything() -> None:
    engine, _ = _ready_engine()
    engine.start(Project(), autorun=False)
    asyncio.run(engine.dispose())
    assert not engine.is_ready
    assert not engine.is_playing
    with pytest.raises(EngineNotReadyError):
        engine.play_sound("bd")
    asyncio.run(engine.dispose())
