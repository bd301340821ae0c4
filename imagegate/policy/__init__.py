"""Policy evaluation and loading."""

from imagegate.policy.evaluator import evaluate, rule_matches_finding
from imagegate.policy.loader import load_policy, policy_from_dict

__all__ = [
    "evaluate",
    "load_policy",
    "policy_from_dict",
    "rule_matches_finding",
]
