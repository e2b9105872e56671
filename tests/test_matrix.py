import pytest

from matrixci.errors import MatrixSpecError
from matrixci.matrix import expand, unit_count, validate_matrix
from matrixci.model import MatrixSpec


def as_set(units):
    return {frozenset(u.items()) for u in units}


AXES = {"toolchain": ("nightly", "stable"), "os": ("ubuntu", "windows", "macos")}


def test_non_matrix_job_expands_to_one_empty_unit():
    assert expand(None) == [{}]
    assert expand(MatrixSpec()) == [{}]


def test_cross_product_of_two_axes():
    units = expand(MatrixSpec(axes=AXES))
    assert len(units) == 6
    assert {"toolchain": "stable", "os": "macos"} in units
    assert len(as_set(units)) == 6


def test_axis_order_only_changes_display_order():
    forward = expand(MatrixSpec(axes=AXES))
    backward = expand(MatrixSpec(axes=dict(reversed(list(AXES.items())))))
    assert forward != backward
    assert as_set(forward) == as_set(backward)


def test_extras_are_added_verbatim():
    spec = MatrixSpec(
        axes=AXES,
        include=(
            {"toolchain": "nightly-gnu", "os": "windows"},
            {"toolchain": "stable-gnu", "os": "windows"},
        ),
    )
    units = expand(spec)
    assert len(units) == 8
    assert units[-2:] == [
        {"toolchain": "nightly-gnu", "os": "windows"},
        {"toolchain": "stable-gnu", "os": "windows"},
    ]


def test_extra_equal_to_generated_combination_collapses():
    spec = MatrixSpec(
        axes=AXES,
        include=({"os": "windows", "toolchain": "stable"}, {"toolchain": "beta", "os": "ubuntu"}),
    )
    assert unit_count(spec) == 7


def test_repeated_extras_collapse():
    extra = {"toolchain": "beta", "os": "ubuntu"}
    assert unit_count(MatrixSpec(axes=AXES, include=(extra, dict(extra)))) == 7


def test_repeated_axis_values_collapse():
    assert expand(MatrixSpec(axes={"os": ("ubuntu", "ubuntu")})) == [{"os": "ubuntu"}]
    spec = MatrixSpec(axes={"os": ("ubuntu", "windows", "ubuntu"), "toolchain": ("stable", "stable")})
    assert expand(spec) == [
        {"os": "ubuntu", "toolchain": "stable"},
        {"os": "windows", "toolchain": "stable"},
    ]


def test_extra_with_different_keys_is_a_distinct_unit():
    spec = MatrixSpec(axes=AXES, include=({"os": "windows", "toolchain": "stable", "arch": "arm"},))
    assert unit_count(spec) == 7


def test_empty_axis_yields_zero_units():
    assert expand(MatrixSpec(axes={"os": ("ubuntu",), "toolchain": ()})) == []


def test_empty_axis_with_extras_runs_only_extras():
    spec = MatrixSpec(axes={"os": ()}, include=({"os": "freebsd"},))
    assert expand(spec) == [{"os": "freebsd"}]


def test_include_only_matrix():
    assert expand(MatrixSpec(include=({"os": "a"}, {"os": "b"}))) == [{"os": "a"}, {"os": "b"}]


def test_expand_is_pure():
    spec = MatrixSpec(axes=AXES, include=({"toolchain": "beta", "os": "ubuntu"},))
    first = expand(spec)
    first.append({"mutated": True})
    assert expand(spec) == expand(spec)
    assert len(expand(spec)) == 7


def test_bool_and_int_values_stay_distinct():
    spec = MatrixSpec(axes={"flag": (True, 1)})
    assert unit_count(spec) == 2


@pytest.mark.parametrize(
    "spec",
    [
        MatrixSpec(axes={"os": "ubuntu"}),
        MatrixSpec(axes={"os": (["nested"],)}),
        MatrixSpec(axes={"": ("x",)}),
        MatrixSpec(axes={"os": ("x",)}, include=("not-a-mapping",)),
        MatrixSpec(axes={"os": ("x",)}, include=({},)),
        MatrixSpec(axes={"os": ("x",)}, include=({"os": {"deep": 1}},)),
    ],
)
def test_validate_rejects_malformed_specs(spec):
    with pytest.raises(MatrixSpecError) as exc:
        validate_matrix(spec, job="arch-test")
    assert exc.value.jobs == ["arch-test"]


def test_validate_accepts_well_formed_specs():
    validate_matrix(None)
    validate_matrix(MatrixSpec(axes=AXES, include=({"os": "x"},)))
