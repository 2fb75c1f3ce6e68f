import numpy as np
import pytest
import soundfile as sf

from streamscribe.audio.encoder import FlacEncoder, Mp3Encoder, create_encoder, decode_audio
from streamscribe.exceptions import EncodeError

from .conftest import make_tone

mp3_supported = pytest.mark.skipif(
    "MP3" not in sf.available_formats(),
    reason="libsndfile built without MP3 support",
)


def test_flac_chunk_carries_filename_and_mime_type() -> None:
    encoded = FlacEncoder().encode(make_tone(1.0), filename_stem="chunk_0001")

    assert encoded.filename == "chunk_0001.flac"
    assert encoded.mime_type == "audio/flac"
    assert len(encoded) > 0


def test_flac_decodes_back_to_16k_mono() -> None:
    samples = make_tone(0.5)

    decoded = decode_audio(FlacEncoder().encode(samples).data)

    assert decoded.ndim == 1
    assert len(decoded) == len(samples)
    np.testing.assert_allclose(decoded, samples, atol=1e-3)


@mp3_supported
def test_mp3_encoding_produces_mpeg_payload() -> None:
    encoded = Mp3Encoder().encode(make_tone(1.0))

    assert encoded.filename == "audio.mp3"
    assert encoded.mime_type == "audio/mpeg"
    assert len(encoded.data) > 0


@mp3_supported
def test_mp3_payload_is_smaller_than_flac_for_long_audio() -> None:
    samples = make_tone(10.0)

    assert len(Mp3Encoder(compression_level=1.0).encode(samples)) < len(FlacEncoder().encode(samples))


def test_out_of_range_samples_are_normalized() -> None:
    loud = make_tone(0.5) * 4

    decoded = decode_audio(FlacEncoder().encode(loud).data)

    assert np.max(np.abs(decoded)) <= 1.0


def test_empty_chunk_cannot_be_encoded() -> None:
    with pytest.raises(EncodeError):
        FlacEncoder().encode(np.zeros(0, dtype=np.float32))


def test_garbage_payload_cannot_be_decoded() -> None:
    with pytest.raises(EncodeError):
        decode_audio(b"definitely not audio")


def test_empty_payload_cannot_be_decoded() -> None:
    with pytest.raises(EncodeError):
        decode_audio(b"")


def test_create_encoder_by_name() -> None:
    assert isinstance(create_encoder("MP3"), Mp3Encoder)
    assert isinstance(create_encoder("flac"), FlacEncoder)


def test_unknown_encoder_format_is_rejected() -> None:
    with pytest.raises(ValueError):
        create_encoder("ogg")


def test_mp3_compression_level_is_validated() -> None:
    with pytest.raises(ValueError):
        Mp3Encoder(compression_level=2.0)
