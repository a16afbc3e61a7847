"""Helper functions for streaming pitch results to clients."""
from typing import Optional
from harmonisync.audio.models import PitchTrackingResult
from harmonisync.audio.notes import (
    NoteTarget,
    cents_difference,
    is_equivalent_note,
    is_in_singing_range,
    note_confidence,
)


def _round(value: Optional[float], digits: int) -> Optional[float]:
    return None if value is None else round(value, digits)


def _target_fields(result: PitchTrackingResult, target: Optional[NoteTarget]) -> dict:
    """Comparison of the stable pitch against the note the singer should hold."""
    fields = {
        "expected_note": None,
        "is_correct": None,
        "cents_off": None,
        "note_confidence": None,
        "in_singing_range": None,
    }
    if target is None:
        return fields

    fields["expected_note"] = target.note
    pitch = result.pitch
    if pitch.emitted_hz is None or pitch.note is None:
        fields["is_correct"] = False
        return fields

    reference_hz = target.reference_hz(pitch.note)
    fields.update(
        is_correct=is_equivalent_note(pitch.note, target.note, target.is_male),
        cents_off=round(cents_difference(reference_hz, pitch.emitted_hz), 1),
        note_confidence=note_confidence(pitch.emitted_hz, target.note),
        in_singing_range=is_in_singing_range(pitch.emitted_hz, target.is_male),
    )
    return fields


def result_to_message(result: PitchTrackingResult, target: Optional[NoteTarget] = None) -> dict:
    """
    Convert a pipeline result to the JSON message sent over the websocket.

    Args:
        result: Result of one processed frame
        target: Expected note for the stream, if the client set one

    Returns:
        JSON-serialisable dictionary
    """
    pitch = result.pitch
    message = {
        "stream_id": result.stream_id,
        "timestamp": result.timestamp,
        "voiced": result.voice.is_voiced,
        "voice_confidence": round(result.voice.confidence, 3),
        "frequency_hz": _round(pitch.emitted_hz, 2),
        "raw_frequency_hz": round(result.candidate.frequency_hz, 2),
        "note": pitch.note,
        "locked_note": pitch.locked_note,
        "state": pitch.state.value,
        "stable_frames": pitch.consecutive_stable_frames,
        "required_frames": pitch.required_frames,
        "snr_db": round(result.snr_db, 1),
    }
    message.update(_target_fields(result, target))
    return message
