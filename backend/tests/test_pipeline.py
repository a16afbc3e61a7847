"""End-to-end tests for the pitch tracking pipeline."""
import threading
import pytest
import numpy as np
from harmonisync.audio.models import AudioFrame, StabilizerState
from harmonisync.audio.notes import frequency_to_note
from harmonisync.audio.pipeline import PitchPipeline, sanitize_samples
from harmonisync.core.config import ConfigurationError, PipelineConfig

SAMPLE_RATE = 44100
FRAME_SIZE = 2048


def tone_frames(frequency, count, amplitude=0.5, noise_sigma=0.0, seed=0, start=0):
    """Phase-continuous sine frames with optional Gaussian noise."""
    rng = np.random.default_rng(seed)
    frames = []
    for i in range(start, start + count):
        t = (np.arange(FRAME_SIZE) + i * FRAME_SIZE) / SAMPLE_RATE
        samples = amplitude * np.sin(2 * np.pi * frequency * t)
        if noise_sigma > 0:
            samples = samples + rng.normal(0.0, noise_sigma, FRAME_SIZE)
        frames.append(AudioFrame(samples=samples, sample_rate=SAMPLE_RATE, timestamp=i * 0.05))
    return frames


def silence_frames(count):
    return [AudioFrame(samples=np.zeros(FRAME_SIZE), sample_rate=SAMPLE_RATE) for _ in range(count)]


def session_frames():
    """200 frames of A4 at 20 dB SNR followed by 50 frames of silence."""
    # Signal power 0.125, noise power 0.00125
    return tone_frames(440.0, 200, noise_sigma=np.sqrt(0.00125), seed=42) + silence_frames(50)


def test_clean_tone_tracks_frequency():
    """Test that a clean A4 is tracked within 1% after warm-up."""
    pipeline = PitchPipeline()

    results = [pipeline.process_frame(frame) for frame in tone_frames(440.0, 30)]

    assert all(r.voice.is_voiced for r in results)
    assert results[-1].pitch.emitted_hz == pytest.approx(440.0, rel=0.01)
    assert results[-1].pitch.locked_note == "A4"


def test_noisy_session_end_to_end():
    """Test a sung note at 20 dB SNR followed by silence."""
    pipeline = PitchPipeline()

    results = [pipeline.process_frame(frame) for frame in session_frames()]
    stats = pipeline.statistics()

    voiced_ratio = stats.classifier["voice_frames"] / stats.classifier["total_frames"]
    assert voiced_ratio == pytest.approx(0.8, abs=0.02)
    assert stats.stabilizer["outlier_count"] < 0.1 * stats.stabilizer["total_processed"]

    # Locked on A4 before the silence starts
    assert results[199].pitch.state is StabilizerState.LOCKED
    assert results[199].pitch.locked_note == "A4"
    assert stats.pipeline["frames_processed"] == 250


def test_silence_holds_last_stable_pitch():
    """Test that unvoiced frames neither update nor unlock the stabilizer."""
    pipeline = PitchPipeline()
    for frame in tone_frames(440.0, 30):
        locked = pipeline.process_frame(frame)
    processed = pipeline.statistics().stabilizer["total_processed"]

    for frame in silence_frames(20):
        held = pipeline.process_frame(frame)

    assert not held.voice.is_voiced
    assert held.pitch.emitted_hz == locked.pitch.emitted_hz
    assert held.pitch.locked_note == "A4"
    assert pipeline.statistics().stabilizer["total_processed"] == processed


def test_white_noise_is_mostly_unvoiced():
    """Test that stationary white noise is classified unvoiced."""
    rng = np.random.default_rng(11)
    pipeline = PitchPipeline()

    results = [
        pipeline.process_frame(AudioFrame(samples=rng.normal(0.0, 0.1, FRAME_SIZE), sample_rate=SAMPLE_RATE))
        for _ in range(100)
    ]

    unvoiced = sum(1 for r in results if not r.voice.is_voiced)
    assert unvoiced >= 95
    # Noise-only frames feed the noise profile
    assert pipeline.noise_suppressor.initialized


def test_octave_spike_is_rejected():
    """Test that a single octave jump does not move the emitted pitch."""
    pipeline = PitchPipeline()
    for frame in tone_frames(440.0, 20):
        before = pipeline.process_frame(frame)

    spike = pipeline.process_frame(tone_frames(880.0, 1, start=20)[0])

    assert spike.voice.is_voiced
    assert spike.candidate.frequency_hz == pytest.approx(880.0, rel=0.01)
    assert spike.pitch.outlier
    assert spike.pitch.emitted_hz == before.pitch.emitted_hz
    assert pipeline.statistics().stabilizer["outlier_count"] == 1


def test_deterministic_given_same_frames():
    """Test that two fresh pipelines produce identical outputs."""
    frames = session_frames()
    first = PitchPipeline()
    second = PitchPipeline()

    first_results = [first.process_frame(frame) for frame in frames]
    second_results = [second.process_frame(frame) for frame in frames]

    assert [r.pitch for r in first_results] == [r.pitch for r in second_results]
    assert [r.voice for r in first_results] == [r.voice for r in second_results]
    assert first.statistics().as_dict() == second.statistics().as_dict()


def test_non_finite_samples_are_sanitized():
    """Test that NaN and inf samples never break processing."""
    pipeline = PitchPipeline()
    samples = tone_frames(440.0, 1)[0].samples.copy()
    samples[::100] = np.nan
    samples[1::100] = np.inf

    result = pipeline.process_frame(AudioFrame(samples=samples, sample_rate=SAMPLE_RATE))
    nan_result = pipeline.process_frame(
        AudioFrame(samples=np.full(FRAME_SIZE, np.nan), sample_rate=SAMPLE_RATE)
    )

    assert result is not None
    assert not nan_result.voice.is_voiced
    assert pipeline.statistics().pipeline["processing_errors"] == 0


def test_sanitize_samples():
    """Test NaN/inf replacement and clipping."""
    cleaned = sanitize_samples(np.array([np.nan, np.inf, -np.inf, 2.0, -3.0, 0.25]))

    assert list(cleaned) == [0.0, 0.0, 0.0, 1.0, -1.0, 0.25]


def test_stage_error_yields_neutral_result(monkeypatch):
    """Test that an error inside a stage is counted instead of raised."""
    pipeline = PitchPipeline()

    def broken(samples, sample_rate):
        raise RuntimeError("estimator failure")

    monkeypatch.setattr(pipeline.estimator, "estimate", broken)
    result = pipeline.process_frame(tone_frames(440.0, 1)[0])

    assert not result.voice.is_voiced
    assert not result.candidate.has_pitch
    stats = pipeline.statistics()
    assert stats.pipeline["processing_errors"] == 1
    assert stats.pipeline["frames_processed"] == 1


def test_failed_frame_never_feeds_noise_profile():
    """Test that a frame failing in the stabilizer leaves the pipeline consistent."""
    calls = {"count": 0}

    def flaky_converter(frequency):
        calls["count"] += 1
        if calls["count"] == 3:
            raise RuntimeError("note lookup failed")
        return frequency_to_note(frequency)

    pipeline = PitchPipeline(note_converter=flaky_converter)

    results = [pipeline.process_frame(frame) for frame in tone_frames(440.0, 10)]

    stats = pipeline.statistics()
    assert stats.pipeline["processing_errors"] == 1
    # The voiced tone must not end up in the noise estimate
    assert not pipeline.noise_suppressor.initialized
    assert stats.noise_suppressor["noise_reduction_percent"] == 0.0
    # Only the nine successful candidates entered the window
    assert len(pipeline.stabilizer.window) == 9
    assert results[-1].voice.is_voiced
    assert results[-1].pitch.emitted_hz == pytest.approx(440.0, rel=0.01)


def test_statistics_snapshot_is_immutable():
    """Test that published snapshots cannot be modified by readers."""
    pipeline = PitchPipeline()
    pipeline.process_frame(tone_frames(440.0, 1)[0])

    snapshot = pipeline.statistics()

    with pytest.raises(TypeError):
        snapshot.stabilizer["outlier_count"] = 99
    with pytest.raises(AttributeError):
        snapshot.pipeline = {}


def test_statistics_consistent_across_threads():
    """Test that a polling thread always sees one complete snapshot."""
    pipeline = PitchPipeline()
    frames = tone_frames(440.0, 60, noise_sigma=0.02, seed=9)
    done = threading.Event()
    observed = []

    def poll():
        while not done.is_set():
            snapshot = pipeline.statistics()
            observed.append(
                (snapshot.classifier["total_frames"], snapshot.pipeline["frames_processed"])
            )

    poller = threading.Thread(target=poll)
    poller.start()
    try:
        for frame in frames:
            pipeline.process_frame(frame)
    finally:
        done.set()
        poller.join()

    assert observed
    assert all(classified == processed for classified, processed in observed)
    assert pipeline.statistics().pipeline["frames_processed"] == 60


def test_dropped_frames_are_counted():
    """Test the dropped-frame counter in the pipeline statistics."""
    pipeline = PitchPipeline()

    pipeline.record_dropped_frame()
    pipeline.record_dropped_frame()

    assert pipeline.statistics().pipeline["frames_dropped"] == 2


def test_update_tempo_changes_required_frames():
    """Test that a fast short-note exercise locks after a single frame."""
    pipeline = PitchPipeline()
    assert pipeline.stabilizer.required_frames == 3

    required = pipeline.update_tempo(200.0, 0.5)

    assert required == 1
    assert pipeline.statistics().stabilizer["required_frames"] == 1


def test_reset_starts_fresh_session():
    """Test that reset clears every component."""
    pipeline = PitchPipeline()
    for frame in tone_frames(440.0, 20):
        pipeline.process_frame(frame)

    pipeline.reset()

    stats = pipeline.statistics()
    assert stats.pipeline["frames_processed"] == 0
    assert stats.classifier["total_frames"] == 0
    assert stats.stabilizer["state"] == StabilizerState.WARMING_UP.value
    assert pipeline.latest is None


def test_latest_result_is_published():
    """Test that the most recent result can be polled."""
    pipeline = PitchPipeline()
    assert pipeline.latest is None

    result = pipeline.process_frame(tone_frames(440.0, 1)[0])

    assert pipeline.latest is result


@pytest.mark.parametrize("overrides", [
    {"min_samples": 0},
    {"smoothing_factor": 0.0},
    {"filter_strength": 1.5},
    {"min_frequency_hz": 500.0, "max_frequency_hz": 400.0},
    {"yin_threshold": float("nan")},
    {"required_stable_frames": 0},
])
def test_invalid_config_rejected_at_construction(overrides):
    """Test that invalid tunables fail before any frame is processed."""
    with pytest.raises(ConfigurationError):
        PitchPipeline(PipelineConfig(**overrides))


def test_audio_frame_validation():
    """Test that malformed frames are rejected by the frame type."""
    with pytest.raises(ValueError):
        AudioFrame(samples=np.zeros((2, 10)), sample_rate=SAMPLE_RATE)
    with pytest.raises(ValueError):
        AudioFrame(samples=np.zeros(10), sample_rate=0)

    frame = AudioFrame(samples=np.zeros(FRAME_SIZE), sample_rate=SAMPLE_RATE)
    assert frame.duration == pytest.approx(FRAME_SIZE / SAMPLE_RATE)
    assert not frame.samples.flags.writeable
