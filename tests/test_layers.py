import pytest

from streambuild.layers import extract_layer


@pytest.mark.parametrize(
    "line, expected",
    [
        ("---> a1b2c3d4e5f67890", "a1b2c3d4e5f67890"),
        (" ---> 3b4e1c0b9a7f\n", "3b4e1c0b9a7f"),
        ("-> 0123456789ab", "0123456789ab"),
        ("  --->   Using cache 0123456789abcdef", "0123456789abcdef"),
        (" ---> Running in 0123456789ab", "0123456789ab"),
    ],
)
def test_extract_layer_from_arrow_lines(line, expected):
    assert extract_layer(line) == expected


@pytest.mark.parametrize(
    "line",
    [
        "Step 2/5 : RUN echo hi",
        "Successfully built 3b4e1c0b9a7f",
        "",
        "---> ABCDEF0123456789",
        "---> abc123",
        "--- 3b4e1c0b9a7f",
        "> 3b4e1c0b9a7f",
    ],
)
def test_extract_layer_returns_none(line):
    assert extract_layer(line) is None


def test_extract_layer_first_run_wins():
    assert extract_layer("---> aaaaaaaaaaaa bbbbbbbbbbbbbbbbbbbb") == "aaaaaaaaaaaa"


def test_extract_layer_is_idempotent():
    line = "---> a1b2c3d4e5f67890"
    assert extract_layer(line) == extract_layer(line)
