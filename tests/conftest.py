"""
Pytest configuration file.

Puts the python/ directory on sys.path and provides fixtures shared by the
credential, registry and distribution tests.
"""
import os
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

# Add python directory to path for all tests
_python_dir = Path(__file__).parent.parent / 'python'
_python_dir_abs = str(_python_dir.absolute())
if _python_dir_abs not in sys.path:
    sys.path.insert(0, _python_dir_abs)


@pytest.fixture(autouse=True)
def skip_config_validation():
    """Keep the module-level config_manager from validating the developer's config on import"""
    with patch.dict(os.environ, {"SKIP_CONFIG_VALIDATION": "true"}):
        yield


@pytest.fixture
def mock_config(tmp_path):
    """ConfigManager stand-in with distribution defaults and a temporary work dir"""
    config = MagicMock()
    config.get_skopeo_binary.return_value = "skopeo"
    config.get_source_transport.return_value = "docker-daemon"
    config.get_dest_tls_verify.return_value = True
    config.get_distribution_timeout.return_value = 600
    config.get_work_dir.return_value = str(tmp_path / "work")
    return config
