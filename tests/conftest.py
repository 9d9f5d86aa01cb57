"""Root conftest for the kcert test suite."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import yaml
from cryptography.hazmat.primitives.asymmetric import ec

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

# Fixed scalar so thumbprints and key authorizations are stable across runs
_ACCOUNT_KEY_SCALAR = 0x5EED_CAFE_F00D_1234_5678_9ABC_DEF0_0FED_CBA9_8765_4321


# ---------------------------------------------------------------------------
# Minimal config data shared by multiple test modules
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_config_data() -> dict:
    """Return a dict containing the minimum config for a working controller."""
    return {
        "acme": {
            "directory_url": "https://acme.test/directory",
            "email": "ops@example.com",
            "terms_accepted": True,
        },
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


@pytest.fixture()
def account_key() -> ec.EllipticCurvePrivateKey:
    """A deterministic P-256 account key."""
    return ec.derive_private_key(_ACCOUNT_KEY_SCALAR, ec.SECP256R1())


# ---------------------------------------------------------------------------
# Config singleton cleanup, autouse so every test gets a fresh slate
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the KCertConfig singleton before and after every test."""
    from kcert.config.kcert_config import KCertConfig

    KCertConfig.reset()
    yield
    KCertConfig.reset()


@pytest.fixture(autouse=True)
def restore_kcert_logger():
    """Undo ``configure_logging`` so caplog keeps seeing kcert records."""
    import logging

    logger = logging.getLogger("kcert")
    saved = (logger.level, list(logger.handlers), logger.propagate)
    yield
    logger.setLevel(saved[0])
    logger.handlers[:] = saved[1]
    logger.propagate = saved[2]
