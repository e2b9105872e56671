from matrixci.expressions import interpolate, interpolate_map

CTX = {
    "matrix": {"os": "ubuntu-latest", "debug": True, "py": 3.12},
    "secrets": {"TOKEN": "t0k"},
    "event": {"branch": "main", "commit": None},
}


def test_spacing_is_optional():
    assert interpolate("${{matrix.os}}-${{ matrix.py }}", CTX) == "ubuntu-latest-3.12"


def test_booleans_and_none():
    assert interpolate("${{ matrix.debug }}", CTX) == "true"
    assert interpolate("[${{ event.commit }}]", CTX) == "[]"


def test_unknown_references_are_empty():
    assert interpolate("a${{ matrix.nope }}b${{ github.sha }}c", CTX) == "abc"


def test_text_without_expressions_is_untouched():
    assert interpolate("echo ${HOME} {{ x }}", CTX) == "echo ${HOME} {{ x }}"


def test_interpolate_map():
    assert interpolate_map({"token": "${{ secrets.TOKEN }}", "n": 2}, CTX) == {"token": "t0k", "n": "2"}
