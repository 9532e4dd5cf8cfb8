import numpy as np
import pytest

from facefind.types import BoundingBox, freeze_embedding


def test_bbox_from_xyxy_clips_to_image():
    bbox = BoundingBox.from_xyxy((-4.0, -2.0, 120.0, 50.0), image_shape=(40, 100, 3))
    assert bbox == BoundingBox(x=0.0, y=0.0, width=100.0, height=40.0)


def test_bbox_from_xyxy_rejects_empty_boxes():
    assert BoundingBox.from_xyxy((10.0, 10.0, 10.0, 30.0)) is None
    assert BoundingBox.from_xyxy((-20.0, 0.0, -5.0, 10.0)) is None


def test_freeze_embedding_is_flat_normalized_and_read_only():
    vec = freeze_embedding([[0.0, 3.0], [4.0, 0.0]])
    assert vec.shape == (4,)
    assert vec.dtype == np.float32
    assert np.linalg.norm(vec) == pytest.approx(1.0)
    with pytest.raises(ValueError):
        vec[0] = 1.0
