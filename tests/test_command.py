"""Tests for encoder command synthesis (direct graph and concat strategies)."""

from __future__ import annotations

from pathlib import Path

import pytest

DIRECT = dict(total_memory_bytes=16 * 1024 ** 3)


def _arg_after(args, flag, start=0):
    return args[args.index(flag, start) + 1]


def _plan(displays, name="fade", max_d=0.35):
    from beatsync.render.transitions import plan_transitions
    return plan_transitions(name, displays, max_d, seed="t")


# ── Strategy choice ───────────────────────────────────────────────────────────

class TestResourceHint:

    def test_direct_when_host_is_big_and_few_segments(self):
        from beatsync.render.command import ResourceHint, Strategy
        assert ResourceHint(**DIRECT).choose(30) is Strategy.direct

    def test_concat_above_segment_threshold(self):
        from beatsync.render.command import ResourceHint, Strategy
        assert ResourceHint(**DIRECT).choose(31) is Strategy.concat

    def test_concat_on_small_host(self):
        from beatsync.render.command import ResourceHint, Strategy
        assert ResourceHint(total_memory_bytes=512 * 1024 ** 2).choose(3) is Strategy.concat

    def test_concat_when_forced(self):
        from beatsync.render.command import ResourceHint, Strategy
        assert ResourceHint(force_low_mem=True, **DIRECT).choose(2) is Strategy.concat

    def test_unknown_memory_does_not_force_concat(self):
        from beatsync.render.command import ResourceHint, Strategy
        assert ResourceHint(total_memory_bytes=None).choose(5) is Strategy.direct

    def test_detect_uses_config(self):
        from unittest.mock import patch
        from types import SimpleNamespace
        from beatsync.render.command import detect_resource_hint
        from beatsync.utils.config import LowMemConfig
        with patch("beatsync.render.command.psutil.virtual_memory",
                   return_value=SimpleNamespace(total=123)):
            hint = detect_resource_hint(LowMemConfig(force=True, memory_threshold_mb=2, segment_threshold=9))
        assert hint.total_memory_bytes == 123
        assert hint.force_low_mem is True
        assert hint.memory_threshold_bytes == 2 * 1024 * 1024
        assert hint.segment_threshold == 9


# ── Concat list ───────────────────────────────────────────────────────────────

class TestConcatList:

    def test_format(self):
        from beatsync.render.command import build_concat_list
        text = build_concat_list([("/a/one.jpg", 1.0), ("/a/two.jpg", 0.25)])
        assert text == (
            "ffconcat version 1.0\n"
            "file '/a/one.jpg'\n"
            "duration 1.000\n"
            "file '/a/two.jpg'\n"
            "duration 0.250\n"
            "file '/a/two.jpg'\n"
        )

    def test_single_quotes_escaped(self):
        from beatsync.render.command import build_concat_list
        text = build_concat_list([("/tmp/it's.jpg", 2.0)])
        assert "file '/tmp/it\\'s.jpg'" in text


# ── Direct graph ──────────────────────────────────────────────────────────────

class TestDirectGraph:

    def _synth(self, tmp_path, cut_times, images=None, effects=None, **kw):
        from beatsync.render.command import ResourceHint, synthesize
        from beatsync.render.cuts import segment_durations
        from beatsync.render.effects import compile_effects
        images = images or ["/img/a.jpg", "/img/b.jpg", "/img/c.jpg"]
        plan = kw.pop("plan", None) or _plan(segment_durations(cut_times))
        return synthesize(
            cut_times, plan, compile_effects(effects), images, "/snd/track.mp3",
            tmp_path / "out.mp4", ResourceHint(**DIRECT), **kw,
        )

    def test_inputs_trimmed_to_display_plus_overlap(self, tmp_path):
        inv = self._synth(tmp_path, [0.0, 1.0, 2.0, 3.0])
        assert inv.strategy.value == "direct"
        assert inv.args[0] == "-y"
        assert inv.args.count("-loop") == 3
        t_values = [inv.args[i + 1] for i, a in enumerate(inv.args) if a == "-t"]
        assert t_values == ["1.350", "1.350", "1.000"]

    def test_audio_is_last_input_and_mapped(self, tmp_path):
        inv = self._synth(tmp_path, [0.0, 1.0, 2.0, 3.0])
        inputs = [inv.args[i + 1] for i, a in enumerate(inv.args) if a == "-i"]
        assert inputs == ["/img/a.jpg", "/img/b.jpg", "/img/c.jpg", "/snd/track.mp3"]
        maps = [inv.args[i + 1] for i, a in enumerate(inv.args) if a == "-map"]
        assert maps == ["[vout]", "3:a:0"]

    def test_xfade_offsets_are_cumulative_cut_times(self, tmp_path):
        inv = self._synth(tmp_path, [0.0, 1.0, 2.5, 4.0])
        graph = _arg_after(inv.args, "-filter_complex")
        assert "[v0][v1]xfade=transition=fade:duration=0.350:offset=1.000,format=rgba[x1]" in graph
        assert "[x1][v2]xfade=transition=fade:duration=0.350:offset=2.500,format=rgba[x2]" in graph
        assert graph.endswith("[x2]format=yuv420p[vout]")

    def test_per_input_geometry(self, tmp_path):
        from beatsync.render.command import OutputFormat
        inv = self._synth(tmp_path, [0.0, 1.0, 2.0], fmt=OutputFormat(1280, 720, 24))
        graph = _arg_after(inv.args, "-filter_complex")
        assert graph.startswith(
            "[0:v]scale=1280:720:force_original_aspect_ratio=decrease,"
            "pad=1280:720:(ow-iw)/2:(oh-ih)/2,fps=24,format=rgba,setsar=1,setpts=PTS-STARTPTS[v0]"
        )

    def test_effects_applied_before_final_format(self, tmp_path):
        inv = self._synth(tmp_path, [0.0, 1.0, 2.0, 3.0], effects={"hue": 45})
        graph = _arg_after(inv.args, "-filter_complex")
        assert graph.endswith("[x2]hue=h=45.000,format=yuv420p[vout]")

    def test_single_segment_has_no_xfade(self, tmp_path):
        inv = self._synth(tmp_path, [0.0, 5.0])
        graph = _arg_after(inv.args, "-filter_complex")
        assert "xfade" not in graph
        assert graph.endswith("[v0]format=yuv420p[vout]")
        assert _arg_after(inv.args, "-t") == "5.000"

    def test_images_cycle(self, tmp_path):
        inv = self._synth(tmp_path, [0.0, 1.0, 2.0, 3.0, 4.0, 5.0], images=["/i/0.jpg", "/i/1.jpg"])
        inputs = [p for p, _ in inv.inputs]
        assert inputs == ["/i/0.jpg", "/i/1.jpg", "/i/0.jpg", "/i/1.jpg", "/i/0.jpg"]

    def test_named_transitions_in_graph(self, tmp_path):
        from beatsync.render.cuts import segment_durations
        cuts = [0.0, 1.0, 2.0, 3.0]
        plan = _plan(segment_durations(cuts), name=["circleopen", "radial"])
        inv = self._synth(tmp_path, cuts, plan=plan)
        assert "xfade=transition=circleopen:" in inv.filter_graph
        assert "xfade=transition=radial:" in inv.filter_graph

    def test_common_output_args(self, tmp_path):
        inv = self._synth(tmp_path, [0.0, 1.0, 2.0])
        tail = inv.args[inv.args.index("-c:v"):]
        assert tail == [
            "-c:v", "libx264", "-preset", "veryfast", "-crf", "18",
            "-c:a", "aac", "-b:a", "192k", "-pix_fmt", "yuv420p",
            "-movflags", "+faststart", "-shortest", str(tmp_path / "out.mp4"),
        ]

    def test_encoder_config_respected(self, tmp_path):
        from beatsync.utils.config import EncoderConfig
        inv = self._synth(tmp_path, [0.0, 1.0, 2.0], encoder=EncoderConfig(crf=23, x264_preset="slow"))
        assert _arg_after(inv.args, "-crf") == "23"
        assert _arg_after(inv.args, "-preset") == "slow"


# ── Concat strategy ───────────────────────────────────────────────────────────

class TestConcatStrategy:

    def _synth(self, tmp_path, cut_times, effects=None):
        from beatsync.render.command import ResourceHint, synthesize
        from beatsync.render.cuts import segment_durations
        from beatsync.render.effects import compile_effects
        return synthesize(
            cut_times, _plan(segment_durations(cut_times)), compile_effects(effects),
            ["/img/a.jpg", "/img/b.jpg"], "/snd/track.mp3", tmp_path / "job1.mp4",
            ResourceHint(force_low_mem=True, **DIRECT),
        )

    def test_args(self, tmp_path):
        inv = self._synth(tmp_path, [0.0, 1.0, 2.0, 3.0])
        assert inv.strategy.value == "concat"
        assert inv.concat_list_path == tmp_path / "job1.ffconcat"
        a = inv.args
        i = a.index("-f")
        assert a[i:i + 6] == ["-f", "concat", "-safe", "0", "-i", str(tmp_path / "job1.ffconcat")]
        assert _arg_after(a, "-i", i + 5) == "/snd/track.mp3"
        assert _arg_after(a, "-vf") == (
            "scale=1920:1080:force_original_aspect_ratio=decrease,"
            "pad=1920:1080:(ow-iw)/2:(oh-ih)/2,fps=30,format=yuv420p,setsar=1"
        )
        maps = [a[k + 1] for k, v in enumerate(a) if v == "-map"]
        assert maps == ["0:v:0", "1:a:0"]
        assert "-filter_complex" not in a
        assert "xfade" not in " ".join(a)

    def test_effects_in_vf(self, tmp_path):
        inv = self._synth(tmp_path, [0.0, 1.0, 2.0], effects={"preset": "bw"})
        vf = _arg_after(inv.args, "-vf")
        assert ",fps=30,eq=brightness=0.000:contrast=1.150:saturation=0.000,format=yuv420p,setsar=1" in vf

    def test_list_uses_display_durations_and_cycles(self, tmp_path):
        inv = self._synth(tmp_path, [0.0, 1.0, 2.5, 3.0])
        assert inv.concat_list.splitlines() == [
            "ffconcat version 1.0",
            "file '/img/a.jpg'", "duration 1.000",
            "file '/img/b.jpg'", "duration 1.500",
            "file '/img/a.jpg'", "duration 0.500",
            "file '/img/a.jpg'",
        ]


# ── Guards and side effects ───────────────────────────────────────────────────

class TestGuards:

    def test_too_many_segments_fails_fast(self, tmp_path):
        from beatsync.render.command import ResourceHint, synthesize
        from beatsync.render.errors import TooManySegments
        cuts = [i * 0.1 for i in range(302)]
        with pytest.raises(TooManySegments):
            synthesize(cuts, [], [], ["/a.jpg"], "/a.mp3", tmp_path / "o.mp4", ResourceHint())

    def test_no_images(self, tmp_path):
        from beatsync.render.command import ResourceHint, synthesize
        from beatsync.render.errors import MissingAsset
        with pytest.raises(MissingAsset):
            synthesize([0.0, 1.0], [], [], [], "/a.mp3", tmp_path / "o.mp4", ResourceHint())

    def test_no_audio(self, tmp_path):
        from beatsync.render.command import ResourceHint, synthesize
        from beatsync.render.errors import MissingAsset
        with pytest.raises(MissingAsset):
            synthesize([0.0, 1.0], [], [], ["/a.jpg"], None, tmp_path / "o.mp4", ResourceHint())

    def test_degenerate_schedule(self, tmp_path):
        from beatsync.render.command import ResourceHint, synthesize
        from beatsync.render.errors import InvalidSchedule
        with pytest.raises(InvalidSchedule):
            synthesize([0.0], [], [], ["/a.jpg"], "/a.mp3", tmp_path / "o.mp4", ResourceHint())

    def test_prepare_removes_old_output_and_writes_list(self, tmp_path):
        from beatsync.render.command import ResourceHint, synthesize
        out = tmp_path / "renders" / "r1.mp4"
        out.parent.mkdir()
        out.write_bytes(b"stale")
        inv = synthesize([0.0, 1.0, 2.0], _plan([1.0, 1.0]), [], ["/a.jpg"], "/a.mp3", out,
                         ResourceHint(force_low_mem=True))
        inv.prepare()
        assert not out.exists()
        assert Path(inv.concat_list_path).read_text(encoding="utf-8") == inv.concat_list
