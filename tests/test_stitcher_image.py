import numpy as np
import pytest

from panostitch.homography import Homography
from panostitch.imageref import ImageRef
from panostitch.projection import ProjectionMethod
from panostitch.stitcher_image import (
    ConnectedImages,
    ImageComponent,
    ProjRange,
    StitchingError,
)


def _ref(w, h, seed=0):
    rng = np.random.default_rng(seed)
    return ImageRef("mem", img=rng.random((h, w, 3)).astype(np.float32))


def test_proj_range_size():
    r = ProjRange((-1.0, 2.0), (3.0, 7.0))
    assert r.size() == (4.0, 5.0)


def test_shift_all_homo_leaves_identity_and_shifts_others():
    comps = [ImageComponent(_ref(10, 20)), ImageComponent(_ref(30, 40))]
    bundle = ConnectedImages(component=comps, identity_idx=1)
    bundle.shift_all_homo()
    assert comps[1].homo == Homography.identity()
    x, y = comps[0].homo.trans2d((0.0, 0.0))
    assert x == pytest.approx(10.0)
    assert y == pytest.approx(10.0)


def test_calc_inverse_homo():
    comp = ImageComponent(_ref(4, 4), homo=Homography([2, 0, 1, 0, 3, 2, 0, 0, 1]))
    bundle = ConnectedImages(component=[comp])
    bundle.calc_inverse_homo()
    prod = (comp.homo @ comp.homo_inv).to_matrix()
    np.testing.assert_allclose(prod, np.eye(3), atol=1e-12)


def test_update_proj_range_flat_identity():
    bundle = ConnectedImages(component=[ImageComponent(_ref(10, 20))])
    bundle.update_proj_range()
    assert bundle.proj_range.min == pytest.approx((-5.0, -10.0))
    assert bundle.proj_range.max == pytest.approx((5.0, 10.0))
    assert bundle.component[0].range.min == pytest.approx((-5.0, -10.0))


def test_update_proj_range_spherical_covers_components():
    comps = [
        ImageComponent(_ref(10, 10), homo=Homography([0.1, 0, 0, 0, 0.1, 0, 0, 0, 1])),
        ImageComponent(_ref(10, 10), homo=Homography([0.1, 0, 0.3, 0, 0.1, 0, 0, 0, 1])),
    ]
    bundle = ConnectedImages(component=comps, proj_method=ProjectionMethod.SPHERICAL)
    bundle.update_proj_range()
    for comp in comps:
        assert bundle.proj_range.min[0] <= comp.range.min[0]
        assert bundle.proj_range.min[1] <= comp.range.min[1]
        assert bundle.proj_range.max[0] >= comp.range.max[0]
        assert bundle.proj_range.max[1] >= comp.range.max[1]
    assert comps[1].range.min[0] > comps[0].range.min[0]


def test_final_resolution_flat_identity():
    bundle = ConnectedImages(component=[ImageComponent(_ref(10, 20))])
    bundle.update_proj_range()
    assert bundle.get_final_resolution() == pytest.approx((1.0, 1.0))


def test_final_resolution_is_scaled_to_max_output_size():
    bundle = ConnectedImages(component=[ImageComponent(_ref(10, 20))], max_output_size=5)
    bundle.update_proj_range()
    assert bundle.get_final_resolution() == pytest.approx((4.0, 4.0))


def test_too_large_target_raises():
    comps = [
        ImageComponent(_ref(10, 20)),
        ImageComponent(_ref(10, 20), homo=Homography.translation(1e6, 0)),
    ]
    bundle = ConnectedImages(component=comps, identity_idx=0)
    bundle.update_proj_range()
    with pytest.raises(StitchingError):
        bundle.get_final_resolution()


@pytest.mark.parametrize("multiband", [0, 1])
def test_blend_single_image_reproduces_it(multiband):
    ref = _ref(10, 20, seed=3)
    original = ref.img.copy()
    bundle = ConnectedImages(component=[ImageComponent(ref)], multiband=multiband)
    bundle.calc_inverse_homo()
    bundle.update_proj_range()
    out = bundle.blend()
    assert out.shape == (20, 10, 3)
    np.testing.assert_allclose(out, original, atol=1e-5)