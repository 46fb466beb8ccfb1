import numpy as np
import pytest

from panostitch.blender import ImageToAdd, LinearBlender, Range
from panostitch.imageref import ImageRef


def _ref(value, size=4):
    return ImageRef("unused", img=np.full((size, size, 3), value, dtype=np.float32))


def test_range_contain_and_size():
    r = Range((1, 2), (3, 5))
    assert r.contain(2, 1) and r.contain(5, 3)
    assert not r.contain(6, 3) and not r.contain(2, 0)
    assert r.width() == 3 and r.height() == 4


def test_map_coor_outside_is_none():
    item = ImageToAdd(Range((0, 0), (4, 4)), _ref(0.5), lambda c: (c[0] + 10, c[1]))
    assert item.map_coor(0, 0) is None
    inside = ImageToAdd(Range((0, 0), (4, 4)), _ref(0.5), lambda c: c)
    assert inside.map_coor(1, 2) == (2, 1)


@pytest.mark.parametrize("lazy", [False, True])
def test_single_image(lazy):
    blender = LinearBlender(lazy_read=lazy)
    blender.add_image((0, 0), (4, 4), _ref(0.3), lambda c: c)
    out = blender.run()
    assert out.shape == (4, 4, 3)
    assert np.allclose(out[1, 1], 0.3)
    assert np.all(out[0, 0] == -1)


def test_two_images_blend_between():
    blender = LinearBlender()
    blender.add_image((0, 0), (4, 4), _ref(0.2), lambda c: c)
    blender.add_image((0, 0), (4, 4), _ref(0.8), lambda c: c)
    out = blender.run()
    assert np.allclose(out[2, 2], 0.5)
    valid = out[..., 0] >= 0
    assert np.all((out[valid] >= 0.2 - 1e-6) & (out[valid] <= 0.8 + 1e-6))


def test_lazy_read_releases():
    ref = _ref(0.4)
    blender = LinearBlender(lazy_read=True)
    blender.add_image((0, 0), (4, 4), ref, lambda c: c)
    blender.run()
    assert ref.img is None