"""Tests for the render pipeline: config parsing, planning, invocation, execution."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest


def _job(config: dict, rid: str = "job000000001"):
    from beatsync.db.store import RenderRecord
    return RenderRecord(
        id=rid, project_id="p", status="running", progress=0, output_path=None,
        error=None, config=config, created_at="", updated_at="",
    )


# ── Config parsing ───────────────────────────────────────────────────────────

class TestParseRenderConfig:

    def test_aliases_and_defaults(self):
        from beatsync.render.pipeline import parse_render_config
        c = parse_render_config({"cutTimes": [1, 2], "audioDuration": 3, "transitionMaxDuration": 0.2})
        assert c.cut_times == [1, 2]
        assert c.audio_duration == 3
        assert c.transition_max_duration == 0.2
        assert c.width is None
        assert c.transition == "fade"

    @pytest.mark.parametrize("raw", [
        {},
        {"audioDuration": 0},
        {"audioDuration": -1},
        {"audioDuration": "abc"},
        {"audioDuration": float("nan")},
        {"audioDuration": 10, "width": 0},
    ])
    def test_invalid_is_invalid_config(self, raw):
        from beatsync.render.errors import InvalidConfig
        from beatsync.render.pipeline import parse_render_config
        with pytest.raises(InvalidConfig) as exc:
            parse_render_config(raw)
        assert exc.value.describe().startswith("InvalidConfig: ")

    def test_missing_duration_names_field(self):
        from beatsync.render.errors import InvalidConfig
        from beatsync.render.pipeline import parse_render_config
        with pytest.raises(InvalidConfig, match="audioDuration"):
            parse_render_config({"cutTimes": [1]})


# ── Planning ─────────────────────────────────────────────────────────────────

class TestPlanRender:

    def test_uses_configured_defaults(self, cfg):
        from beatsync.render.pipeline import parse_render_config, plan_render
        cfg.render.width = 1280
        cfg.render.height = 720
        cfg.render.fps = 25
        plan = plan_render(parse_render_config({"cutTimes": [2, 4], "audioDuration": 6}), "seed", cfg)
        assert plan.cut_times == [0.0, 2.0, 4.0, 6.0]
        assert plan.segments == 3
        assert (plan.fmt.width, plan.fmt.height, plan.fmt.fps) == (1280, 720, 25)
        assert [s.name.value for s in plan.transitions] == ["fade", "fade"]
        assert all(s.duration == pytest.approx(0.35) for s in plan.transitions)
        assert plan.effects == []

    def test_request_overrides_defaults(self, cfg):
        from beatsync.render.pipeline import parse_render_config, plan_render
        config = parse_render_config({
            "cutTimes": [2], "audioDuration": 4, "width": 640, "height": 360, "fps": 24,
            "transition": "wipeleft", "transitionMaxDuration": 0.1, "effects": {"hue": 10},
        })
        plan = plan_render(config, "seed", cfg)
        assert (plan.fmt.width, plan.fmt.height, plan.fmt.fps) == (640, 360, 24)
        assert [(s.name.value, s.duration) for s in plan.transitions] == [("wipeleft", 0.1)]
        assert [op.name for op in plan.effects] == ["hue"]

    def test_collapsed_schedule(self, cfg):
        from beatsync.render.errors import InvalidSchedule
        from beatsync.render.pipeline import parse_render_config, plan_render
        with pytest.raises(InvalidSchedule):
            plan_render(parse_render_config({"audioDuration": 0.01}), "s", cfg)

    def test_random_plan_is_seeded_by_job(self, cfg):
        from beatsync.render.pipeline import parse_render_config, plan_render
        config = parse_render_config({"cutTimes": list(range(1, 20)), "audioDuration": 20, "transition": "random"})
        a = plan_render(config, "job-a", cfg).transitions
        assert plan_render(config, "job-a", cfg).transitions == a


# ── Invocation ───────────────────────────────────────────────────────────────

class TestBuildInvocation:

    def _plan(self, cfg, cut_times=(1, 2), duration=3):
        from beatsync.render.pipeline import parse_render_config, plan_render
        return plan_render(parse_render_config({"cutTimes": list(cut_times), "audioDuration": duration}), "s", cfg)

    def test_missing_audio_file(self, cfg, assets, tmp_path):
        from beatsync.render.errors import MissingAsset
        from beatsync.render.pipeline import build_invocation
        _, images = assets
        with pytest.raises(MissingAsset, match="audio"):
            build_invocation(self._plan(cfg), tmp_path / "gone.mp3", images, tmp_path / "o.mp4", cfg)

    def test_no_audio(self, cfg, assets, tmp_path):
        from beatsync.render.errors import MissingAsset
        from beatsync.render.pipeline import build_invocation
        _, images = assets
        with pytest.raises(MissingAsset, match="no audio"):
            build_invocation(self._plan(cfg), None, images, tmp_path / "o.mp4", cfg)

    def test_no_images(self, cfg, assets, tmp_path):
        from beatsync.render.errors import MissingAsset
        from beatsync.render.pipeline import build_invocation
        audio, _ = assets
        with pytest.raises(MissingAsset, match="no images"):
            build_invocation(self._plan(cfg), audio, [], tmp_path / "o.mp4", cfg)

    def test_explicit_hint_wins(self, cfg, assets, tmp_path):
        from beatsync.render.command import ResourceHint, Strategy
        from beatsync.render.pipeline import build_invocation
        audio, images = assets
        inv = build_invocation(
            self._plan(cfg), audio, images, tmp_path / "o.mp4", cfg,
            hint=ResourceHint(force_low_mem=True),
        )
        assert inv.strategy is Strategy.concat
        assert inv.concat_list_path == tmp_path / "o.ffconcat"

    def test_small_host_uses_concat(self, cfg, assets, tmp_path):
        from types import SimpleNamespace
        from beatsync.render.command import Strategy
        from beatsync.render.pipeline import build_invocation
        audio, images = assets
        with patch("beatsync.render.command.psutil.virtual_memory",
                   return_value=SimpleNamespace(total=512 * 1024 ** 2)):
            inv = build_invocation(self._plan(cfg), audio, images, tmp_path / "o.mp4", cfg)
        assert inv.strategy is Strategy.concat


# ── render_job ───────────────────────────────────────────────────────────────

class TestRenderJob:

    def test_direct_render(self, cfg, project, fake_encoder, big_host):
        from beatsync.render.pipeline import render_job
        out = render_job(_job({"cutTimes": [1, 2], "audioDuration": 3}), project, cfg)
        assert out == cfg.storage.renders_dir / "job000000001.mp4"
        assert out.is_file()
        cmd = fake_encoder.call_args.args[0]
        assert "-filter_complex" in cmd
        assert cmd.count("-loop") == 3
        assert cmd[-1] == str(out)
        assert project.audio.path in cmd

    def test_forced_low_mem_uses_concat_and_removes_list(self, cfg, project, fake_encoder):
        from beatsync.render.pipeline import render_job
        cfg.low_mem.force = True
        seen = {}

        def capture(cmd, **kwargs):
            list_path = Path(cmd[cmd.index("-i") + 1])
            seen["list"] = list_path
            seen["text"] = list_path.read_text(encoding="utf-8")
            Path(cmd[-1]).write_bytes(b"mp4")
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

        fake_encoder.side_effect = capture
        render_job(_job({"cutTimes": [1, 2], "audioDuration": 3}), project, cfg)
        cmd = fake_encoder.call_args.args[0]
        assert "concat" in cmd
        assert "-filter_complex" not in cmd
        assert seen["text"].startswith("ffconcat version 1.0\n")
        assert seen["text"].count("duration 1.000") == 3
        assert not seen["list"].exists()

    def test_concat_list_removed_after_failure(self, cfg, project, fake_encoder):
        from beatsync.render.errors import EncoderFailed
        from beatsync.render.pipeline import render_job
        cfg.low_mem.force = True
        fake_encoder.side_effect = lambda cmd, **kw: subprocess.CompletedProcess(cmd, 1, stdout="", stderr="boom")
        with pytest.raises(EncoderFailed):
            render_job(_job({"cutTimes": [1, 2], "audioDuration": 3}), project, cfg)
        assert list(cfg.storage.renders_dir.glob("*.ffconcat")) == []

    def test_stale_output_removed_before_run(self, cfg, project, fake_encoder, big_host):
        from beatsync.render.pipeline import render_job
        stale = cfg.storage.renders_dir / "job000000001.mp4"
        stale.write_bytes(b"old")

        def check(cmd, **kwargs):
            assert not stale.exists()
            stale.write_bytes(b"new")
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

        fake_encoder.side_effect = check
        render_job(_job({"cutTimes": [1], "audioDuration": 2}), project, cfg)
        assert stale.read_bytes() == b"new"

    def test_clean_exit_without_output_is_failure(self, cfg, project, fake_encoder, big_host):
        from beatsync.render.errors import EncoderFailed
        from beatsync.render.pipeline import render_job
        fake_encoder.side_effect = lambda cmd, **kw: subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")
        with pytest.raises(EncoderFailed, match="no output"):
            render_job(_job({"cutTimes": [1], "audioDuration": 2}), project, cfg)

    def test_project_without_audio(self, cfg, db, fake_encoder):
        from beatsync.db import store
        from beatsync.render.errors import MissingAsset
        from beatsync.render.pipeline import render_job
        p = store.create_project()
        store.add_project_images(p.id, [{"path": "/x.jpg"}])
        with pytest.raises(MissingAsset, match="no audio"):
            render_job(_job({"audioDuration": 2}), store.get_project(p.id), cfg)
        fake_encoder.assert_not_called()

    def test_project_without_images(self, cfg, db, assets, fake_encoder):
        from beatsync.db import store
        from beatsync.render.errors import MissingAsset
        from beatsync.render.pipeline import render_job
        audio, _ = assets
        p = store.create_project()
        store.set_project_audio(p.id, str(audio), "track.mp3", "audio/mpeg", 1)
        with pytest.raises(MissingAsset, match="no images"):
            render_job(_job({"audioDuration": 2}), store.get_project(p.id), cfg)
        fake_encoder.assert_not_called()

    def test_too_many_segments_never_spawns(self, cfg, project, fake_encoder):
        from beatsync.render.errors import TooManySegments
        from beatsync.render.pipeline import render_job
        config = {"cutTimes": [i * 0.1 for i in range(1, 301)], "audioDuration": 30.1}
        with pytest.raises(TooManySegments) as exc:
            render_job(_job(config), project, cfg)
        assert exc.value.segments == 301
        fake_encoder.assert_not_called()

    def test_images_cycle_when_fewer_than_segments(self, cfg, project, fake_encoder, big_host):
        from beatsync.render.pipeline import render_job
        render_job(_job({"cutTimes": [1, 2, 3, 4], "audioDuration": 5}), project, cfg)
        cmd = fake_encoder.call_args.args[0]
        inputs = [cmd[i + 1] for i, a in enumerate(cmd) if a == "-i"][:-1]
        paths = [i.path for i in project.images]
        assert inputs == [paths[0], paths[1], paths[2], paths[0], paths[1]]
