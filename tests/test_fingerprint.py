import hashlib

import numpy as np
import pytest

from poep_pipeline.constants import BN254_SCALAR_MODULUS, FEATURE_LAYOUT, LANDMARK_COUNT
from poep_pipeline.data_models import FeatureBlock, FeatureVector, LandmarkSet
from poep_pipeline.feature_extraction import extract
from poep_pipeline.fingerprint import FingerprintHasher, HashScheme, hash_fingerprint, serialize


def _synthetic_inputs(offset: float = 0.0):
    blocks = tuple(
        FeatureBlock(name=name, values=np.linspace(0.0, 1.0, length) + offset)
        for name, length in FEATURE_LAYOUT
    )
    landmarks = LandmarkSet(points=np.full((LANDMARK_COUNT, 3), 0.5))
    return FeatureVector(blocks=blocks), landmarks


def test_hash_is_deterministic_and_in_field(face_image):
    features, landmarks = extract(face_image)

    first = hash_fingerprint(features, landmarks)
    second = hash_fingerprint(*extract(face_image))

    assert first == second
    assert 0 <= first < BN254_SCALAR_MODULUS


def test_hash_matches_documented_construction():
    features, landmarks = _synthetic_inputs()

    buffer = (
        features.values.astype(">f8").tobytes()
        + landmarks.values.astype(">f8").tobytes()
        + b"POEP_BIOMETRIC_SALT_V2"
    )
    expected = int.from_bytes(hashlib.sha256(buffer).digest()[:31], "big") % BN254_SCALAR_MODULUS

    assert serialize(features, landmarks, b"POEP_BIOMETRIC_SALT_V2") == buffer
    assert hash_fingerprint(features, landmarks) == expected


# Features i/8 for i in 0..273 and every landmark coordinate 0.25; all exact in float64
GOLDEN_FACE_HASH = 252143209636302127613946322923901936829106200378129768992252773885970014925


def test_golden_face_hash_for_fixed_inputs():
    values = np.arange(sum(length for _, length in FEATURE_LAYOUT)) / 8.0
    blocks = []
    offset = 0
    for name, length in FEATURE_LAYOUT:
        blocks.append(FeatureBlock(name=name, values=values[offset:offset + length]))
        offset += length
    features = FeatureVector(blocks=tuple(blocks))
    landmarks = LandmarkSet(points=np.full((LANDMARK_COUNT, 3), 0.25))

    assert len(serialize(features, landmarks, b"POEP_BIOMETRIC_SALT_V2")) == 2790
    assert hash_fingerprint(features, landmarks) == GOLDEN_FACE_HASH


def test_different_inputs_give_different_hashes(face_image, other_face_image):
    assert hash_fingerprint(*extract(face_image)) != hash_fingerprint(*extract(other_face_image))


def test_salt_change_changes_every_hash():
    features, landmarks = _synthetic_inputs()

    default = FingerprintHasher().hash(features, landmarks)
    resalted = FingerprintHasher(HashScheme(salt=b"OTHER_SALT")).hash(features, landmarks)

    assert default != resalted


def test_sha512_scheme_truncates_into_field():
    features, landmarks = _synthetic_inputs(offset=0.25)
    value = FingerprintHasher(HashScheme(digest="sha512")).hash(features, landmarks)

    assert value.bit_length() <= 31 * 8


@pytest.mark.parametrize(
    "kwargs",
    [
        {"digest": "md5"},
        {"salt": b""},
        {"salt": "POEP".encode("utf-16")},
        {"truncate_bytes": 32},
        {"truncate_bytes": 0},
    ],
)
def test_invalid_schemes_rejected(kwargs):
    with pytest.raises(ValueError):
        HashScheme(**kwargs)
