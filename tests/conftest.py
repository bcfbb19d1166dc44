import argparse
import sys
import xml.etree.ElementTree as ET
from collections.abc import Callable
from pathlib import Path

import pytest

PACKAGE_DIR = Path(__file__).resolve().parent.parent
if str(PACKAGE_DIR) not in sys.path:
    sys.path.insert(0, str(PACKAGE_DIR))

import split_config  # noqa: E402

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def sample_config_path() -> Path:
    return FIXTURES_DIR / "post_process.xml"


@pytest.fixture
def collecting_diag() -> split_config.CollectingDiagnostics:
    return split_config.CollectingDiagnostics()


@pytest.fixture
def make_config_xml() -> Callable[..., str]:
    def _make_config_xml(
        *, groups: str = "", artifacts: str = "", namespace: str | None = None
    ) -> str:
        xmlns = f' xmlns="{namespace}"' if namespace is not None else ""
        return (
            f"<post-process{xmlns}>"
            f"<groups>{groups}</groups>"
            f"<artifacts>{artifacts}</artifacts>"
            f"</post-process>"
        )

    return _make_config_xml


@pytest.fixture
def make_element() -> Callable[[str], ET.Element]:
    def _make_element(xml_text: str) -> ET.Element:
        return ET.fromstring(xml_text)

    return _make_element


@pytest.fixture
def empty_config() -> split_config.PostProcessingConfiguration:
    return split_config.PostProcessingConfiguration()


@pytest.fixture
def existing_paths(tmp_path: Path, sample_config_path: Path) -> dict[str, Path]:
    config_xml = tmp_path / "post_process.xml"
    config_xml.write_text(sample_config_path.read_text(encoding="utf-8"), encoding="utf-8")
    return {"config_xml": config_xml}


@pytest.fixture
def missing_path(tmp_path: Path) -> Path:
    return tmp_path / "missing.xml"


@pytest.fixture
def make_args(existing_paths: dict[str, Path]) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "config": existing_paths["config_xml"],
            "apk": "build/app.apk",
            "verbose": False,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args
