"""Tests for highlight candidate generation, scoring and suppression."""
import pytest

from clipforge.services.highlights import (
    KEYWORDS,
    EnergySample,
    HighlightSegment,
    build_energy_candidates,
    build_fixed_windows,
    build_transcript_candidates,
    detect_from_transcript,
    detect_highlights,
    duration_range,
    fallback_segment,
    merge_segments,
    non_max_suppression,
    overlap_ratio,
    rank_segments,
    tokenize,
    transcript_score,
    trim_silence,
)
from tests.conftest import make_transcript


def _energy(values, start=0):
    return [EnergySample(t=float(start + i), value=v) for i, v in enumerate(values)]


class TestDurationRange:
    @pytest.mark.parametrize("preset,expected", [
        ("short", {"min": 12, "max": 22}),
        ("normal", {"min": 18, "max": 32}),
        ("long", {"min": 30, "max": 45}),
    ])
    def test_exact_bounds(self, preset, expected):
        assert duration_range(preset) == expected

    def test_returns_copy(self):
        bounds = duration_range("short")
        bounds["min"] = 0
        assert duration_range("short")["min"] == 12


class TestMergeSegments:
    def test_overlapping_pair(self):
        merged = merge_segments([HighlightSegment(0, 10), HighlightSegment(9, 18)])
        assert len(merged) == 1
        assert (merged[0].start, merged[0].end) == (0, 18)

    def test_within_gap_tolerance(self):
        merged = merge_segments([HighlightSegment(0, 10, 0.2), HighlightSegment(11, 20, 0.7)])
        assert len(merged) == 1
        assert merged[0].end == 20
        assert merged[0].score == 0.7

    def test_separate_segments_kept(self):
        merged = merge_segments([HighlightSegment(20, 30), HighlightSegment(0, 10)])
        assert [(s.start, s.end) for s in merged] == [(0, 10), (20, 30)]

    def test_inputs_not_mutated(self):
        first = HighlightSegment(0, 10)
        merge_segments([first, HighlightSegment(5, 15)])
        assert first.end == 10

    def test_empty(self):
        assert merge_segments([]) == []


class TestNonMaxSuppression:
    def test_higher_score_wins(self):
        kept = non_max_suppression([HighlightSegment(2, 9, 0.5), HighlightSegment(0, 10, 0.9)])
        assert [(s.start, s.end) for s in kept] == [(0, 10)]

    def test_pairwise_overlap_below_threshold(self):
        segments = [
            HighlightSegment(start, start + length, score)
            for start, length, score in [
                (0, 20, 0.4), (5, 20, 0.9), (12, 18, 0.6), (30, 15, 0.7),
                (33, 20, 0.3), (50, 12, 0.8), (58, 20, 0.5), (70, 15, 0.65),
            ]
        ]
        for threshold in (0.25, 0.3):
            kept = non_max_suppression(segments, threshold)
            for i, a in enumerate(kept):
                for b in kept[i + 1:]:
                    assert overlap_ratio(a, b) < threshold

    def test_output_sorted_by_score(self):
        kept = non_max_suppression([
            HighlightSegment(0, 10, 0.2),
            HighlightSegment(20, 30, 0.9),
            HighlightSegment(40, 50, 0.5),
        ])
        assert [s.score for s in kept] == [0.9, 0.5, 0.2]


class TestOverlapRatio:
    def test_identical(self):
        assert overlap_ratio(HighlightSegment(0, 10), HighlightSegment(0, 10)) == 1.0

    def test_disjoint(self):
        assert overlap_ratio(HighlightSegment(0, 10), HighlightSegment(20, 30)) == 0.0

    def test_partial(self):
        assert overlap_ratio(HighlightSegment(0, 10), HighlightSegment(5, 15)) == pytest.approx(5 / 15)


class TestCandidates:
    def test_transcript_windows(self):
        transcript = make_transcript((0, 5, "a"), (5, 12, "b"), (12, 20, "c"), (20, 30, "d"))
        cands = build_transcript_candidates(transcript, 12, 22)
        spans = [(c.start, c.end) for c in cands]
        assert (0, 12) in spans
        assert (0, 20) in spans
        assert (5, 20) in spans
        assert all(c.end - c.start >= 12 for c in cands)

    def test_energy_run_kept_whole(self):
        energy = _energy([0.1] + [0.8] * 15 + [0.1])
        cands = build_energy_candidates(energy, 12, 22)
        assert [(c.start, c.end) for c in cands] == [(1, 16)]

    def test_short_energy_run_dropped(self):
        energy = _energy([0.8] * 5 + [0.1])
        assert build_energy_candidates(energy, 12, 22) == []

    def test_long_energy_run_chopped(self):
        energy = _energy([0.9] * 50 + [0.0])
        cands = build_energy_candidates(energy, 12, 22)
        assert [(c.start, c.end) for c in cands] == [(0, 22), (12, 34), (24, 46)]

    def test_fixed_windows(self):
        transcript = make_transcript((0, 40, "texto"))
        windows = build_fixed_windows(transcript, "normal")
        assert [(w.start, w.end) for w in windows] == [(0, 18), (9, 27), (18, 36)]


class TestScoring:
    def test_tokenize(self):
        assert tokenize("¡Hola, MUNDO! 3 veces?") == ["hola", "mundo", "3", "veces"]

    def test_transcript_score_weights(self):
        transcript = make_transcript((0, 10, "clave importante secreto historia idea tip!!!"))
        score = transcript_score(HighlightSegment(0, 10), transcript)
        # density 0.6 w/s, 6 keywords, 3 marks
        assert score == pytest.approx(min(1, 0.6 / 3) * 0.5 + 0.3 + 0.2)

    def test_reason_parts(self):
        transcript = make_transcript((0, 12, "esto es clave"))
        energy = _energy([0.9] * 13)
        ranked = rank_segments([HighlightSegment(0, 12)], transcript, energy)
        assert ranked[0].reason == "audio peak + keyword: clave"

    def test_default_reason(self):
        ranked = rank_segments([HighlightSegment(0, 12)], make_transcript((0, 12, "nada")), [])
        assert ranked[0].reason == "balanced energy"

    def test_keyword_list_is_fixed(self):
        transcript = make_transcript((0, 12, "now the key secret story"))
        ranked = rank_segments([HighlightSegment(0, 12)], transcript, [])
        assert ranked[0].reason == "balanced energy"
        assert "now" not in KEYWORDS
        assert len(KEYWORDS) == 14

    def test_ranked_descending(self):
        energy = _energy([0.2] * 20 + [0.9] * 20)
        ranked = rank_segments([HighlightSegment(0, 15), HighlightSegment(22, 37)], None, energy)
        assert ranked[0].start == 22
        assert ranked[0].score > ranked[1].score


class TestTrimSilence:
    def test_trims_quiet_edges(self):
        energy = _energy([0.05] * 3 + [0.7] * 10 + [0.05] * 3)
        trimmed = trim_silence(HighlightSegment(0, 15, 0.5, "x"), energy)
        assert (trimmed.start, trimmed.end) == (3, 12)
        assert trimmed.score == 0.5

    def test_keeps_bounds_when_too_short(self):
        energy = _energy([0.05] * 5 + [0.7] * 3 + [0.05] * 5)
        seg = HighlightSegment(0, 12)
        assert trim_silence(seg, energy) == seg

    def test_no_energy(self):
        seg = HighlightSegment(0, 12)
        assert trim_silence(seg, []) is seg


class TestDetectHighlights:
    TRANSCRIPT = make_transcript(
        (0, 6, "hola a todos"),
        (6, 14, "hoy una historia importante!"),
        (14, 22, "el secreto es simple"),
        (22, 30, "pausa"),
        (30, 41, "otro ejemplo clave?"),
        (41, 52, "gracias"),
    )
    ENERGY = _energy([0.1, 0.1] + [0.8] * 20 + [0.1] * 8 + [0.6] * 15 + [0.1] * 8)

    def test_bounded_by_clip_count(self):
        segments = detect_highlights(self.TRANSCRIPT, self.ENERGY, 2, "short")
        assert 1 <= len(segments) <= 2

    def test_durations_within_preset(self):
        for seg in detect_highlights(self.TRANSCRIPT, self.ENERGY, 5, "short"):
            assert 12 <= seg.duration <= 22
            assert seg.end > seg.start

    def test_deterministic(self):
        first = detect_highlights(self.TRANSCRIPT, self.ENERGY, 4, "short")
        second = detect_highlights(self.TRANSCRIPT, self.ENERGY, 4, "short")
        assert first == second

    def test_pairwise_overlap(self):
        segments = detect_highlights(self.TRANSCRIPT, self.ENERGY, 10, "short")
        for i, a in enumerate(segments):
            for b in segments[i + 1:]:
                assert overlap_ratio(a, b) < 0.25

    def test_no_inputs(self):
        assert detect_highlights(None, [], 3, "normal") == []

    def test_transcript_only(self):
        segments = detect_from_transcript(self.TRANSCRIPT, 3, "normal")
        assert segments
        assert all(s.duration == 18 for s in segments)
        assert detect_from_transcript(None, 3, "normal") == []


class TestFallbackSegment:
    def test_clamped_to_max(self):
        seg = fallback_segment(make_transcript((0, 40, "x")), "normal")
        assert (seg.start, seg.end, seg.score, seg.reason) == (0, 32, 0.5, "fallback")

    def test_short_transcript_uses_min(self):
        seg = fallback_segment(make_transcript((0, 5, "x")), "short")
        assert seg.end == 12

    def test_no_transcript(self):
        assert fallback_segment(None, "long").end == 30
