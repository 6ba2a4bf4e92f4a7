"""
YAML configuration loader with SOPS support.

Plain YAML files are read directly; files named `*.enc.yaml` are decrypted
with the SOPS CLI first.
"""

import subprocess
from pathlib import Path
from typing import Any

import yaml


def decrypt_sops_file(file_path: Path) -> dict[str, Any]:
    """
    Decrypt a SOPS-encrypted file and return parsed YAML.

    Args:
        file_path: Path to the encrypted file

    Returns:
        Decrypted configuration as dictionary

    Raises:
        FileNotFoundError: If file doesn't exist
        RuntimeError: If SOPS decryption fails
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Encrypted config file not found: {file_path}")

    try:
        result = subprocess.run(
            ["sops", "-d", str(file_path)],
            capture_output=True,
            text=True,
            check=True,
        )
        return yaml.safe_load(result.stdout) or {}
    except subprocess.CalledProcessError as e:
        raise RuntimeError(f"SOPS decryption failed: {e.stderr}") from e
    except FileNotFoundError:
        raise RuntimeError(
            "SOPS not installed. Install with: brew install sops (macOS) "
            "or download from https://github.com/getsops/sops/releases"
        )


def load_config_file(file_path: Path) -> dict[str, Any]:
    """
    Load a YAML configuration file, decrypting it when SOPS-encrypted.

    Args:
        file_path: Path to `config.yaml` or `config.enc.yaml`

    Returns:
        Configuration dictionary (empty when the file is empty)

    Raises:
        FileNotFoundError: If file doesn't exist
        RuntimeError: If SOPS decryption fails
        ValueError: If the document is not a mapping
    """
    if ".enc." in file_path.name:
        config = decrypt_sops_file(file_path)
    else:
        with open(file_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"Config file {file_path} must contain a mapping")
    return config
