import numpy as np
import pytest

from panostitch.imageref import ImageRef
from panostitch.multiband import MultiBandBlender


def _identity(t):
    return (float(t[0]), float(t[1]))


def _random_image(h, w, seed=0):
    rng = np.random.default_rng(seed)
    return rng.random((h, w, 3)).astype(np.float32)


def test_single_band_reproduces_image():
    img = _random_image(6, 8)
    blender = MultiBandBlender(1)
    blender.add_image((0, 0), (8, 6), ImageRef("mem", img=img), _identity)
    out = blender.run()
    assert out.shape == (6, 8, 3)
    np.testing.assert_allclose(out, img, atol=1e-5)


@pytest.mark.parametrize("bands", [2, 3])
def test_bands_telescope_to_image(bands):
    img = _random_image(7, 9, seed=bands)
    blender = MultiBandBlender(bands)
    blender.add_image((0, 0), (9, 7), ImageRef("mem", img=img), _identity)
    out = blender.run()
    np.testing.assert_allclose(out, img, atol=1e-4)


def test_uncovered_pixels_are_negative():
    img = _random_image(4, 4)
    blender = MultiBandBlender(1)
    blender.add_image((0, 0), (6, 4), ImageRef("mem", img=img), _identity)
    out = blender.run()
    assert out.shape == (4, 6, 3)
    assert np.all(out[:, 4:] == -1)
    np.testing.assert_allclose(out[:, :4], img, atol=1e-5)


def test_tie_in_weights_goes_to_first_image():
    a = np.full((5, 5, 3), 0.2, dtype=np.float32)
    b = np.full((5, 5, 3), 0.8, dtype=np.float32)
    blender = MultiBandBlender(1)
    blender.add_image((0, 0), (5, 5), ImageRef("a", img=a), _identity)
    blender.add_image((0, 0), (5, 5), ImageRef("b", img=b), _identity)
    out = blender.run()
    np.testing.assert_allclose(out, a, atol=1e-6)


def test_output_is_clamped_to_unit_range():
    img = _random_image(10, 10, seed=7)
    img[::2] = 0.0
    img[1::2] = 1.0
    blender = MultiBandBlender(4)
    blender.add_image((0, 0), (10, 10), ImageRef("mem", img=img), _identity)
    out = blender.run()
    assert out.min() >= 0.0
    assert out.max() <= 1.0


def test_image_is_released_after_run():
    ref = ImageRef("mem", img=_random_image(3, 3))
    blender = MultiBandBlender(1)
    blender.add_image((0, 0), (3, 3), ref, _identity)
    blender.run()
    assert ref.img is None
    assert blender.target_size == (3, 3)