# matrix.py
from __future__ import annotations

from itertools import product
from typing import Any, Dict, FrozenSet, List, Mapping, Set, Tuple

from .errors import MatrixSpecError
from .model import MatrixSpec

# ---------------------------------------------------------------------
# Matrix expansion
# ---------------------------------------------------------------------
# units = cross-product(axes) U include
#
#   - zero axes, no include      -> [{}]  (non-matrix job: one unit)
#   - any axis with no values    -> cross-product is empty, only include runs
#   - include entries are added verbatim (no merging into generated combos);
#     an entry equal to a generated combination is collapsed, as are
#     repeated axis values
# ---------------------------------------------------------------------

SCALARS = (str, int, float, bool)


def _key(params: Mapping[str, Any]) -> FrozenSet[Tuple[str, Any]]:
    # bool is a subclass of int; tag the type so True and 1 stay distinct
    return frozenset((k, (type(v).__name__, v)) for k, v in params.items())


def validate_matrix(spec: Any, *, job: str = "?") -> None:
    """Raise MatrixSpecError if `spec` cannot be expanded."""
    if spec is None:
        return
    if not isinstance(spec, MatrixSpec):
        raise MatrixSpecError(job, f"expected MatrixSpec, got {type(spec).__name__}")

    if not isinstance(spec.axes, Mapping):
        raise MatrixSpecError(job, "axes must be a mapping of axis name -> values")
    for axis, values in spec.axes.items():
        if not isinstance(axis, str) or not axis:
            raise MatrixSpecError(job, f"axis names must be non-empty strings, got {axis!r}")
        if isinstance(values, (str, bytes)) or not isinstance(values, (list, tuple)):
            raise MatrixSpecError(job, f"axis '{axis}' must list its values")
        for v in values:
            if not isinstance(v, SCALARS):
                raise MatrixSpecError(job, f"axis '{axis}' has non-scalar value {v!r}")

    for i, extra in enumerate(spec.include):
        if not isinstance(extra, Mapping) or not extra:
            raise MatrixSpecError(job, f"include[{i}] must be a non-empty mapping")
        for k, v in extra.items():
            if not isinstance(k, str) or not k:
                raise MatrixSpecError(job, f"include[{i}] has a bad key {k!r}")
            if not isinstance(v, SCALARS):
                raise MatrixSpecError(job, f"include[{i}].{k} has non-scalar value {v!r}")


def expand(spec: MatrixSpec | None) -> List[Dict[str, Any]]:
    """
    Expand a matrix into concrete parameter sets.

    Pure: the same spec always yields the same list, in axis declaration
    order followed by the include entries.
    """
    if spec is None:
        return [{}]

    axes = list(spec.axes.items())
    candidates: List[Dict[str, Any]] = []
    if axes or not spec.include:
        names = [name for name, _ in axes]
        for combo in product(*(tuple(values) for _, values in axes)):
            candidates.append(dict(zip(names, combo)))
    candidates.extend(dict(extra) for extra in spec.include)

    # repeated axis values and extras both collapse to the first occurrence
    seen: Set[FrozenSet[Tuple[str, Any]]] = set()
    out: List[Dict[str, Any]] = []
    for params in candidates:
        k = _key(params)
        if k not in seen:
            seen.add(k)
            out.append(params)
    return out


def unit_count(spec: MatrixSpec | None) -> int:
    return len(expand(spec))
