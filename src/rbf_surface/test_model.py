"""
Test RBF model building and field evaluation.

Validates:
1. Unbuilt / Built state handling
2. Empty sample sets and empty center sets
3. Exact cancellation for a single antipodal sample pair
4. Least-squares fit properties on a sphere (lengths, determinism,
   on-surface residuals, linearity in the target values)
5. Solver failures, rank deficiency and cancellation
6. Field gradient
7. Kernel shape parameter and concurrent evaluation
"""

import threading
import warnings
from concurrent.futures import ThreadPoolExecutor
import numpy as np
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rbf_surface import (
    RBFModel,
    Sample,
    SampleSet,
    generate_samples,
    assemble_design_matrix,
    extract_centers,
    InvalidStateError,
    DegenerateInputError,
    NumericalFailureError,
    BuildCancelledError,
)


def sphere_points(n: int = 40, radius: float = 1.0) -> np.ndarray:
    """Oriented points on a sphere (Fibonacci lattice) with outward normals."""
    i = np.arange(n) + 0.5
    polar = np.arccos(1 - 2 * i / n)
    azimuth = np.pi * (1 + 5 ** 0.5) * i
    normals = np.column_stack([
        np.cos(azimuth) * np.sin(polar),
        np.sin(azimuth) * np.sin(polar),
        np.cos(polar),
    ])
    return np.hstack([radius * normals, normals])


def _sphere_model(value: float = 0.01, **kwargs):
    samples = generate_samples(sphere_points(), offset=0.01, value=value)
    model = RBFModel(**kwargs)
    result = model.build(samples)
    return model, result, samples


def _evaluation_slack(model) -> float:
    # Rounding bound for sum_j lambda_j phi_j with phi <= (diameter)^3 = 8
    return 1e-12 * (1.0 + 8.0 * np.abs(model.coefficients).sum())


def test_unbuilt_model():
    """Every evaluation entry point rejects an unbuilt model."""
    print("\n" + "=" * 60)
    print("Test 1: Unbuilt Model")
    print("=" * 60)

    model = RBFModel()
    assert not model.is_built

    calls = [
        ("evaluate", lambda: model.evaluate([0, 0, 0])),
        ("evaluate_batch", lambda: model.evaluate_batch(np.zeros((2, 3)))),
        ("gradient", lambda: model.gradient([0, 0, 0])),
        ("centers", lambda: model.centers),
        ("coefficients", lambda: model.coefficients),
    ]
    for name, call in calls:
        try:
            call()
        except InvalidStateError as e:
            print(f"  {name}: {e}")
        else:
            raise AssertionError(f"{name} should fail on an unbuilt model")
    print("  Status: PASS")


def test_empty_samples():
    """Zero samples is a DegenerateInputError and leaves the model unbuilt."""
    print("\n" + "=" * 60)
    print("Test 2: Empty Sample Set")
    print("=" * 60)

    model = RBFModel()
    for empty in (SampleSet.from_samples([]), []):
        try:
            model.build(empty)
        except DegenerateInputError as e:
            print(f"  Rejected: {e}")
        else:
            raise AssertionError("empty sample set should be rejected")
        assert not model.is_built
    print("  Status: PASS")


def test_zero_centers():
    """Without on-surface samples the model is built and identically zero."""
    print("\n" + "=" * 60)
    print("Test 3: Empty Center Set")
    print("=" * 60)

    samples = [
        Sample((0.0, 0.0, 0.01), 0.01),
        Sample((0.0, 0.0, -0.01), -0.01),
    ]
    model = RBFModel()
    result = model.build(samples)

    assert model.is_built
    assert result.n_centers == 0
    assert model.centers.shape == (0, 3)
    assert model.coefficients.shape == (0,)
    assert len(model.centers) == len(model.coefficients)

    for p in ([0, 0, 0], [1.5, -2.0, 3.0], [1e6, 0, 0]):
        value = model.evaluate(p)
        assert value == 0.0, value
    np.testing.assert_array_equal(model.evaluate_batch(np.ones((4, 3))), np.zeros(4))
    np.testing.assert_array_equal(model.gradient([1, 2, 3]), np.zeros(3))
    print(f"  Residual norm: {result.residual_norm:.6e}")
    print("  Status: PASS")


def test_single_center_cancellation():
    """One point at the origin: antipodal off-surface pair cancels to lambda = 0."""
    print("\n" + "=" * 60)
    print("Test 4: Single Center Cancellation")
    print("=" * 60)

    samples = generate_samples([[0, 0, 0, 0, 0, 1]], offset=0.01, value=0.01)
    centers = extract_centers(samples.positions, samples.values)
    np.testing.assert_array_equal(centers, [[0.0, 0.0, 0.0]])

    A = assemble_design_matrix(samples.positions, centers)
    print(f"  A = {A.ravel()}")
    assert A.shape == (3, 1)
    assert A[0, 0] == 0.0
    np.testing.assert_allclose(A[1:, 0], [1e-6, 1e-6], rtol=1e-12)
    assert A[1, 0] == A[2, 0]

    model = RBFModel()
    result = model.build(samples)
    lam = model.coefficients[0]
    print(f"  lambda = {lam:.3e}")
    assert result.n_centers == 1
    assert abs(lam) < 1e-9

    for p in ([0, 0, 0], [0, 0, 0.01], [1, 1, 1], [-3, 2, 0.5]):
        assert abs(model.evaluate(p)) < 1e-8
    print("  Status: PASS")


def test_sphere_fit_properties():
    """Lock-step lengths, on-surface residuals and sign of the fit on a sphere."""
    print("\n" + "=" * 60)
    print("Test 5: Sphere Fit Properties")
    print("=" * 60)

    model, result, samples = _sphere_model()
    K = model.centers.shape[0]

    print(f"  Samples: {result.n_samples}, centers: {result.n_centers}, rank: {result.rank}")
    print(f"  Residual norm: {result.residual_norm:.6e}")
    assert result.n_samples == 120
    assert K == 40 == result.n_centers
    assert len(model.centers) == len(model.coefficients)
    assert np.all(np.isfinite(model.coefficients))

    # Centers keep sample order
    np.testing.assert_array_equal(model.centers, samples.positions[0::3])

    slack = _evaluation_slack(model)

    # On-surface values are bounded by the solve residual
    on_surface = np.abs(model.evaluate_batch(model.centers))
    print(f"  Max |f| at centers: {on_surface.max():.6e}")
    assert on_surface.max() <= result.max_abs_residual + slack

    # Least squares never does worse than lambda = 0
    assert result.residual_norm <= np.linalg.norm(samples.values) + slack

    # r = b - A lambda is orthogonal to A lambda, so b . A lambda >= 0
    f_out = model.evaluate_batch(samples.positions[1::3])
    f_in = model.evaluate_batch(samples.positions[2::3])
    print(f"  Mean f outside: {f_out.mean():.6e}, inside: {f_in.mean():.6e}")
    assert f_out.sum() - f_in.sum() >= -slack

    residuals = model.residuals(samples)
    np.testing.assert_allclose(np.abs(residuals).max(), result.max_abs_residual, rtol=1e-6, atol=slack)
    print("  Status: PASS")


def test_determinism():
    """Same samples give the same coefficients; same point gives the same value."""
    print("\n" + "=" * 60)
    print("Test 6: Determinism")
    print("=" * 60)

    model_a, _, _ = _sphere_model()
    model_b, _, _ = _sphere_model()

    scale = np.abs(model_a.coefficients).max()
    np.testing.assert_allclose(model_a.coefficients, model_b.coefficients,
                               rtol=1e-12, atol=1e-12 * scale)

    p = [0.3, -0.2, 0.9]
    assert model_a.evaluate(p) == model_a.evaluate(p)
    np.testing.assert_array_equal(
        model_a.evaluate_batch(np.tile(p, (3, 1))),
        model_a.evaluate_batch(np.tile(p, (3, 1))),
    )
    print("  Status: PASS")


def test_value_scaling():
    """Doubling the off-surface value doubles the coefficients."""
    print("\n" + "=" * 60)
    print("Test 7: Linearity in Target Values")
    print("=" * 60)

    model_1, _, _ = _sphere_model(value=0.01)
    model_2, _, _ = _sphere_model(value=0.02)

    np.testing.assert_array_equal(model_1.centers, model_2.centers)
    scale = np.abs(model_1.coefficients).max()
    np.testing.assert_allclose(model_2.coefficients, 2.0 * model_1.coefficients,
                               rtol=1e-9, atol=1e-12 * scale)
    print(f"  max |lambda|: {scale:.6e} -> {np.abs(model_2.coefficients).max():.6e}")
    print("  Status: PASS")


def test_build_lifecycle():
    """A built model refuses a second build until reset."""
    print("\n" + "=" * 60)
    print("Test 8: Build Lifecycle")
    print("=" * 60)

    samples = generate_samples(sphere_points(12), offset=0.01, value=0.01)
    model = RBFModel()
    model.build(samples)
    centers = model.centers

    try:
        model.build(samples)
    except InvalidStateError as e:
        print(f"  Second build: {e}")
    else:
        raise AssertionError("second build should be rejected")
    assert model.centers is centers

    model.reset()
    assert not model.is_built
    model.build(list(samples))
    np.testing.assert_array_equal(model.centers, centers)
    print("  Status: PASS")


def test_solvers_agree():
    """All least-squares drivers fit the same field on a full-rank system."""
    print("\n" + "=" * 60)
    print("Test 9: Solver Agreement")
    print("=" * 60)

    samples = generate_samples(sphere_points(20), offset=0.05, value=0.05)
    fields = {}
    for solver in ('svd', 'gelsd', 'gelsy'):
        model = RBFModel(solver=solver)
        result = model.build(samples)
        fields[solver] = model.evaluate_batch(samples.positions)
        print(f"  {solver}: rank={result.rank}, residual={result.residual_norm:.6e}")

    np.testing.assert_allclose(fields['gelsd'], fields['svd'], atol=1e-6)
    np.testing.assert_allclose(fields['gelsy'], fields['svd'], atol=1e-6)

    try:
        RBFModel(solver='cholesky')
    except ValueError:
        pass
    else:
        raise AssertionError("unknown solver should be rejected")
    print("  Status: PASS")


def test_rank_deficient():
    """Duplicate centers give the minimum-norm split and a warning, not a failure."""
    print("\n" + "=" * 60)
    print("Test 10: Rank-Deficient System")
    print("=" * 60)

    points = [
        [0, 0, 0, 0, 0, 1],
        [0, 0, 0, 0, 0, 1],
        [1, 0, 0, 1, 0, 0],
    ]
    samples = generate_samples(points, offset=0.01, value=0.01)
    model = RBFModel()
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        result = model.build(samples)

    print(f"  Centers: {result.n_centers}, rank: {result.rank}")
    assert result.rank < result.n_centers
    assert any(issubclass(w.category, RuntimeWarning) for w in caught)
    assert np.all(np.isfinite(model.coefficients))
    np.testing.assert_allclose(model.coefficients[0], model.coefficients[1], rtol=1e-6)
    print("  Status: PASS")


def test_numerical_failure():
    """Overflowing distances are reported instead of stored."""
    print("\n" + "=" * 60)
    print("Test 11: Numerical Failure")
    print("=" * 60)

    samples = [
        Sample((0.0, 0.0, 0.0), 0.0),
        Sample((1e200, 0.0, 0.0), 0.0),
        Sample((0.0, 0.0, 0.01), 0.01),
    ]
    model = RBFModel()
    try:
        model.build(samples)
    except NumericalFailureError as e:
        print(f"  Reported: {e}")
    else:
        raise AssertionError("non-finite system should be reported")
    assert not model.is_built
    print("  Status: PASS")


def test_cancel_and_threads():
    """Threaded assembly matches serial assembly; a set event aborts the build."""
    print("\n" + "=" * 60)
    print("Test 12: Threaded Assembly and Cancellation")
    print("=" * 60)

    samples = generate_samples(sphere_points(30), offset=0.01, value=0.01)
    centers = extract_centers(samples.positions, samples.values)

    serial = assemble_design_matrix(samples.positions, centers, block_size=2048)
    threaded = assemble_design_matrix(samples.positions, centers, block_size=7, n_workers=4)
    np.testing.assert_array_equal(serial, threaded)

    event = threading.Event()
    event.set()
    model = RBFModel(block_size=7, n_workers=4)
    try:
        model.build(samples, cancel_event=event)
    except BuildCancelledError as e:
        print(f"  Cancelled: {e}")
    else:
        raise AssertionError("build should be cancelled")
    assert not model.is_built

    model.build(samples, cancel_event=threading.Event())
    assert model.is_built
    print("  Status: PASS")


def test_evaluate_and_gradient():
    """Evaluation and gradient match closed forms for the cubic kernel."""
    print("\n" + "=" * 60)
    print("Test 13: Evaluation and Gradient")
    print("=" * 60)

    centers = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 2.0, 0.0]])
    coefficients = np.array([1.0, -2.0, 0.5])
    model = RBFModel.from_coefficients(centers, coefficients)
    assert model.is_built

    x = np.array([0.5, 0.5, 0.25])
    diff = x - centers
    r = np.linalg.norm(diff, axis=1)
    f_expected = float(np.sum(coefficients * r ** 3))
    g_expected = np.sum((3.0 * coefficients * r)[:, np.newaxis] * diff, axis=0)

    assert np.isclose(model.evaluate(x), f_expected, rtol=1e-13)
    np.testing.assert_allclose(model.gradient(x), g_expected, rtol=1e-12)

    h = 1e-6
    g_fd = np.array([
        (model.evaluate(x + h * e) - model.evaluate(x - h * e)) / (2 * h)
        for e in np.eye(3)
    ])
    np.testing.assert_allclose(model.gradient(x), g_fd, rtol=1e-6, atol=1e-8)

    # Gradient at a center: that center contributes nothing
    np.testing.assert_allclose(model.gradient(centers[0]),
                               model.gradient_batch(centers)[0])
    assert np.all(np.isfinite(model.gradient(centers[0])))

    try:
        model.evaluate([0, 0])
    except ValueError:
        pass
    else:
        raise AssertionError("2D point should be rejected")

    try:
        RBFModel.from_coefficients(centers, coefficients[:2])
    except ValueError:
        pass
    else:
        raise AssertionError("mismatched lengths should be rejected")
    print(f"  f(x) = {model.evaluate(x):.6f}, grad = {model.gradient(x)}")
    print("  Status: PASS")


def test_escalated_warning_leaves_unbuilt():
    """A rank-deficiency warning raised as an error must not commit the build."""
    print("\n" + "=" * 60)
    print("Test 14: Escalated Rank Warning")
    print("=" * 60)

    points = [
        [0, 0, 0, 0, 0, 1],
        [0, 0, 0, 0, 0, 1],
        [1, 0, 0, 1, 0, 0],
    ]
    samples = generate_samples(points, offset=0.01, value=0.01)
    model = RBFModel()
    with warnings.catch_warnings():
        warnings.simplefilter('error')
        try:
            model.build(samples)
        except RuntimeWarning as e:
            print(f"  Raised: {e}")
        else:
            raise AssertionError("rank warning should have been raised as an error")

    assert not model.is_built

    with warnings.catch_warnings():
        warnings.simplefilter('ignore')
        model.build(samples)
    assert model.is_built
    print("  Status: PASS")


def test_shape_parameter():
    """eps reaches the gaussian/mq/imq kernels and is ignored by the cubic one."""
    print("\n" + "=" * 60)
    print("Test 15: Kernel Shape Parameter")
    print("=" * 60)

    centers = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
    coefficients = np.array([1.0, -0.5])
    x = np.array([0.3, 0.4, 0.0])
    r = np.linalg.norm(x - centers, axis=1)

    for eps in (0.5, 2.0):
        expected = {
            'gaussian': np.exp(-eps ** 2 * r ** 2),
            'mq': np.sqrt(1 + eps ** 2 * r ** 2),
            'imq': 1.0 / np.sqrt(1 + eps ** 2 * r ** 2),
        }
        for kernel, phi in expected.items():
            model = RBFModel.from_coefficients(centers, coefficients, kernel=kernel, eps=eps)
            assert np.isclose(model.evaluate(x), float(phi @ coefficients), rtol=1e-13)

    cubic_a = RBFModel.from_coefficients(centers, coefficients, eps=0.5)
    cubic_b = RBFModel.from_coefficients(centers, coefficients, eps=3.0)
    assert cubic_a.evaluate(x) == cubic_b.evaluate(x)

    samples = generate_samples(sphere_points(20), offset=0.05, value=0.05)
    positions = samples.positions
    built_centers = extract_centers(positions, samples.values)
    A = assemble_design_matrix(positions, built_centers, kernel='gaussian', eps=3.0)
    d = np.linalg.norm(positions[:, np.newaxis, :] - built_centers[np.newaxis, :, :], axis=2)
    np.testing.assert_allclose(A, np.exp(-9.0 * d ** 2), rtol=1e-12)

    try:
        RBFModel(kernel='gaussian', eps=0.0)
    except ValueError:
        pass
    else:
        raise AssertionError("non-positive eps should be rejected")

    assert RBFModel.get_default_args()['eps'] == 1.0
    print("  Status: PASS")


def test_concurrent_evaluation():
    """A built model evaluated from several threads matches serial evaluation."""
    print("\n" + "=" * 60)
    print("Test 16: Concurrent Evaluation")
    print("=" * 60)

    model, _, _ = _sphere_model(block_size=5)
    queries = np.random.default_rng(3).uniform(-1.5, 1.5, size=(8, 40, 3))

    serial_batch = [model.evaluate_batch(q) for q in queries]
    serial_point = [[model.evaluate(p) for p in q] for q in queries]

    with ThreadPoolExecutor(max_workers=4) as pool:
        threaded_batch = list(pool.map(model.evaluate_batch, queries))
        threaded_point = list(pool.map(lambda q: [model.evaluate(p) for p in q], queries))

    for expected, got in zip(serial_batch, threaded_batch):
        np.testing.assert_array_equal(expected, got)
    assert serial_point == threaded_point
    print(f"  Queries: {queries.shape[0]} x {queries.shape[1]} on 4 threads")
    print("  Status: PASS")


def main():
    """Run all model tests."""
    print("\n" + "=" * 60)
    print("RBF Model Tests")
    print("=" * 60)

    tests = [
        ("Unbuilt Model", test_unbuilt_model),
        ("Empty Sample Set", test_empty_samples),
        ("Empty Center Set", test_zero_centers),
        ("Single Center Cancellation", test_single_center_cancellation),
        ("Sphere Fit Properties", test_sphere_fit_properties),
        ("Determinism", test_determinism),
        ("Linearity in Target Values", test_value_scaling),
        ("Build Lifecycle", test_build_lifecycle),
        ("Solver Agreement", test_solvers_agree),
        ("Rank-Deficient System", test_rank_deficient),
        ("Numerical Failure", test_numerical_failure),
        ("Threaded Assembly and Cancellation", test_cancel_and_threads),
        ("Evaluation and Gradient", test_evaluate_and_gradient),
        ("Escalated Rank Warning", test_escalated_warning_leaves_unbuilt),
        ("Kernel Shape Parameter", test_shape_parameter),
        ("Concurrent Evaluation", test_concurrent_evaluation),
    ]

    results = []
    for name, fn in tests:
        try:
            fn()
            results.append((name, True))
        except AssertionError as e:
            print(f"  FAIL: {e}")
            results.append((name, False))

    print("\n" + "=" * 60)
    print("SUMMARY")
    print("=" * 60)

    all_passed = True
    for name, passed in results:
        print(f"  {name}: {'PASS' if passed else 'FAIL'}")
        all_passed = all_passed and passed

    print("\n" + ("All tests passed!" if all_passed else "Some tests failed."))
    return all_passed


if __name__ == '__main__':
    success = main()
    sys.exit(0 if success else 1)
