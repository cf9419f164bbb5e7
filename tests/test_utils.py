from pathlib import Path

import pytest

from repospace.settings import _flatten_config
from repospace.utils import format_file_size


@pytest.mark.parametrize(
    "size, expected",
    [
        (0, "0 Bytes"),
        (-5, "0 Bytes"),
        (19, "19 Bytes"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (1024**2, "1 MB"),
        (3 * 1024**3, "3 GB"),
        (1024**5, "1024 TB"),
    ],
)
def test_format_file_size(size: int, expected: str) -> None:
    assert format_file_size(size) == expected


def test_flatten_config_maps_sections() -> None:
    data = _flatten_config(
        {
            "archive": {"root": "/srv/repos", "index_path": "", "default_category": "inbox"},
            "github": {"token": " ", "request_timeout": "5", "search_per_page": 50, "max_files": 200},
            "api": {"host": "0.0.0.0", "port": "9000"},
            "general": {"api_key": "secret"},
        }
    )

    assert data == {
        "archive_root": Path("/srv/repos"),
        "index_path": None,
        "default_category": "inbox",
        "github_token": None,
        "request_timeout": 5.0,
        "search_per_page": 50,
        "max_files": 200,
        "api_host": "0.0.0.0",
        "api_port": 9000,
        "api_key": "secret",
    }

