import numpy as np
import pytest

from panostitch.projection import (
    ProjectionMethod,
    cylindrical_homo2proj,
    cylindrical_proj2homo,
    flat_gradproj,
    flat_homo2proj,
    flat_proj2homo,
    spherical_gradproj,
    spherical_homo2proj,
    spherical_proj2homo,
)

POINTS = [(0.3, -0.2), (-1.0, 0.7), (0.0, 0.0)]


def _numeric_grad(f, homo, grad, eps=1e-6):
    homo = np.asarray(homo, dtype=float)
    grad = np.asarray(grad, dtype=float)
    plus = f(homo + eps * grad)
    minus = f(homo - eps * grad)
    return ((plus[0] - minus[0]) / (2 * eps), (plus[1] - minus[1]) / (2 * eps))


@pytest.mark.parametrize("p", POINTS)
def test_flat_round_trip(p):
    assert flat_homo2proj(flat_proj2homo(p)) == pytest.approx(p)


def test_flat_scale_invariant():
    assert flat_homo2proj((2.0, 3.0, 4.0)) == pytest.approx(flat_homo2proj((4.0, 6.0, 8.0)))


@pytest.mark.parametrize("p", POINTS)
def test_cylindrical_round_trip(p):
    assert cylindrical_homo2proj(cylindrical_proj2homo(p)) == pytest.approx(p, abs=1e-12)


@pytest.mark.parametrize("p", POINTS)
def test_spherical_round_trip(p):
    assert spherical_homo2proj(spherical_proj2homo(p)) == pytest.approx(p, abs=1e-12)


def test_enum_dispatch():
    homo = (0.4, -0.3, 1.2)
    assert ProjectionMethod.FLAT.homo2proj(homo) == flat_homo2proj(homo)
    assert ProjectionMethod.CYLINDRICAL.homo2proj(homo) == cylindrical_homo2proj(homo)
    assert ProjectionMethod.SPHERICAL.proj2homo((0.1, 0.2)) == spherical_proj2homo((0.1, 0.2))


def test_enum_values_select_method():
    homo = (0.4, -0.3, 1.2)
    assert ProjectionMethod(0).homo2proj(homo) == flat_homo2proj(homo)
    assert ProjectionMethod(1).homo2proj(homo) == cylindrical_homo2proj(homo)
    assert ProjectionMethod(2).homo2proj(homo) == spherical_homo2proj(homo)


def test_flat_gradproj_matches_finite_difference():
    homo, grad = (0.4, -0.3, 1.2), (0.7, 0.2, -0.5)
    assert flat_gradproj(homo, grad) == pytest.approx(
        _numeric_grad(flat_homo2proj, homo, grad), rel=1e-5
    )


def test_spherical_gradproj_matches_finite_difference():
    homo, grad = (0.4, -0.3, 1.2), (0.7, 0.2, -0.5)
    assert spherical_gradproj(homo, grad) == pytest.approx(
        _numeric_grad(spherical_homo2proj, homo, grad), rel=1e-5
    )


def test_vectorized_matches_pointwise():
    homos = np.array([[0.4, -1.0], [-0.3, 0.5], [1.2, 2.0]])
    xs, ys = spherical_homo2proj(homos)
    single = spherical_homo2proj(tuple(homos[:, 1]))
    assert xs[1] == pytest.approx(single[0])
    assert ys[1] == pytest.approx(single[1])