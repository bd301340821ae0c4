"""Load and validate policy files (YAML or JSON)."""

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from imagegate.errors import PolicyError
from imagegate.models.model_policy import Policy

logger = logging.getLogger(__name__)


def policy_from_dict(data: Any, source: str = "<dict>") -> Policy:
    """Validate raw policy data.

    Raises:
        PolicyError: If the data is not a valid policy
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise PolicyError(f"Policy must be a mapping, got {type(data).__name__}", source=source)

    try:
        return Policy.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in e.errors()
        )
        raise PolicyError(f"Invalid policy: {problems}", source=source) from e


def load_policy(path: Path | str) -> Policy:
    """Load a policy file.

    ``.json`` files are parsed as JSON; everything else as YAML.

    Example:
        name: production
        fail_closed: true
        allow_list: [CVE-2023-0001]
        rules:
          - name: no-high
            min_severity: high
          - name: stale-fixable
            action: warn
            fixable_only: true
            max_age_days: 30

    Raises:
        PolicyError: If the file is missing, unparseable or invalid
    """
    path = Path(path)
    if not path.is_file():
        raise PolicyError(f"Policy file not found: {path}", source=str(path))

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise PolicyError(f"Cannot read policy file: {e}", source=str(path)) from e

    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise PolicyError(f"Cannot parse policy file: {e}", source=str(path)) from e

    policy = policy_from_dict(data, source=str(path))
    logger.info(f"Loaded policy '{policy.name}' from {path} ({len(policy.rules)} rule(s))")
    return policy
